"""
Token stores: expiry helpers, the memory-only admin vault and file persistence.
"""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from access_control.models import AccessToken, RefreshToken
from access_control.stores import (
    AdminTokenVault,
    FileTokenStore,
    MemoryTokenStore,
    is_token_expired,
    is_token_expiring_soon,
    time_until_expiration,
)
from utils.fake_auth import FakeClock


def test_expiry_helpers():
    assert is_token_expired(None, now=100) is False
    assert is_token_expired(100, now=100) is True
    assert is_token_expired(101, now=100) is False
    assert time_until_expiration(160, now=100) == 60
    assert time_until_expiration(50, now=100) == 0
    assert is_token_expiring_soon(350, now=100) is True
    assert is_token_expiring_soon(1000, now=100) is False
    assert is_token_expiring_soon(90, now=100) is False


def test_admin_vault_rejects_bad_input(clock: FakeClock):
    vault = AdminTokenVault(clock)
    with pytest.raises(ValueError) as exc:
        vault.set_admin_token("", 60)
    assert str(exc.value) == "Admin token cannot be empty"
    with pytest.raises(ValueError) as exc:
        vault.set_admin_token("admin-1", 0)
    assert str(exc.value) == "Expiration time must be positive"


def test_admin_vault_expires_lazily(clock: FakeClock):
    vault = AdminTokenVault(clock)
    vault.set_admin_token("admin-1", 60)
    assert vault.get_admin_token() == "admin-1"
    assert vault.get_admin_token_expiry() == clock.now + 60
    clock.advance(45)
    assert vault.time_until_expiration() == 15
    clock.advance(15)
    assert vault.has_admin_token() is False
    assert vault.get_admin_token() is None
    assert vault.time_until_expiration() == 0


def test_memory_store_drops_expired_tokens(clock: FakeClock):
    store = MemoryTokenStore(clock)
    store.set_access_token(AccessToken("at-1", clock.now + 10))
    store.set_refresh_token(RefreshToken("rt-1"))
    clock.advance(10)
    assert store.get_access_token() is None
    assert store.get_refresh_token() == RefreshToken("rt-1")
    store.clear_all_tokens()
    assert store.get_refresh_token() is None


def test_clearing_tokens_keeps_admin_token_separate(clock: FakeClock):
    store = MemoryTokenStore(clock)
    store.set_admin_token("admin-1", 60)
    store.clear_all_tokens()
    assert store.has_admin_token() is True
    store.clear_admin_token()
    assert store.has_admin_token() is False


def test_file_store_persists_across_instances(tmp_path: Path, clock: FakeClock):
    path = tmp_path / "tokens.json"
    store = FileTokenStore(path, clock)
    store.set_access_token(AccessToken("at-1", clock.now + 600))
    store.set_refresh_token(RefreshToken("rt-1", clock.now + 6000))
    store.set_admin_token("admin-secret", 600)

    reopened = FileTokenStore(path, clock)
    assert reopened.get_access_token() == AccessToken("at-1", clock.now + 600)
    assert reopened.get_refresh_token() == RefreshToken("rt-1", clock.now + 6000)
    assert reopened.has_admin_token() is False
    assert "admin-secret" not in path.read_text(encoding="utf-8")


def test_file_store_discards_corrupted_content(tmp_path: Path, clock: FakeClock, caplog: pytest.LogCaptureFixture):
    path = tmp_path / "tokens.json"
    path.write_text("{not json", encoding="utf-8")
    store = FileTokenStore(path, clock)

    with caplog.at_level("WARNING", logger="lms.access.stores"):
        assert store.get_access_token() is None
    assert not path.exists()
    assert "corrupted" in caplog.text

    path.write_text(json.dumps({"access": {"expiresAt": 5}, "refresh": "garbage"}), encoding="utf-8")
    assert store.get_access_token() is None
    assert store.get_refresh_token() is None
    assert not path.exists()


def test_file_store_expiry_and_clear(tmp_path: Path, clock: FakeClock):
    path = tmp_path / "nested" / "tokens.json"
    store = FileTokenStore(path, clock)
    store.set_access_token(AccessToken("at-1", clock.now + 5))
    store.set_refresh_token(RefreshToken("rt-1"))
    clock.advance(5)

    assert store.get_access_token() is None
    assert json.loads(path.read_text(encoding="utf-8")) == {"refresh": {"value": "rt-1", "expiresAt": None}}

    store.clear_all_tokens()
    assert not path.exists()
    assert store.get_refresh_token() is None


def test_file_store_keeps_token_without_lifetime(tmp_path: Path, clock: FakeClock):
    path = tmp_path / "tokens.json"
    FileTokenStore(path, clock).set_access_token(AccessToken("at-1", None))
    clock.advance(86400)

    reopened = FileTokenStore(path, clock)
    assert reopened.get_access_token() == AccessToken("at-1", None)
