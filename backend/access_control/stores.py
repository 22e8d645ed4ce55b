"""
Token stores: durable access/refresh tokens and the volatile admin token.

Why: The session controller only needs a small storage contract. Keeping it
behind a protocol lets tests use the in-memory store while a desktop or CLI
client persists tokens to a file so they survive a restart.

Security:
- The admin (escalation) token is held in process memory only. No store in
  this module ever writes it anywhere; a restart forces re-escalation.
- Token values are never logged.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol
import json
import logging
import time

from .models import AccessToken, RefreshToken

logger = logging.getLogger("lms.access.stores")

Clock = Callable[[], float]


def _now() -> float:
    return time.time()


def is_token_expired(expires_at: Optional[float], now: Optional[float] = None) -> bool:
    if expires_at is None:
        return False
    return expires_at <= (_now() if now is None else now)


def time_until_expiration(expires_at: Optional[float], now: Optional[float] = None) -> float:
    if expires_at is None:
        return 0.0
    return max(0.0, expires_at - (_now() if now is None else now))


def is_token_expiring_soon(expires_at: Optional[float], threshold_seconds: float = 300, now: Optional[float] = None) -> bool:
    remaining = time_until_expiration(expires_at, now)
    return 0 < remaining <= threshold_seconds


class TokenStore(Protocol):
    def set_access_token(self, token: AccessToken) -> None: ...

    def get_access_token(self) -> Optional[AccessToken]: ...

    def set_refresh_token(self, token: RefreshToken) -> None: ...

    def get_refresh_token(self) -> Optional[RefreshToken]: ...

    def clear_all_tokens(self) -> None: ...

    def set_admin_token(self, token: str, expires_in: float) -> None: ...

    def get_admin_token(self) -> Optional[str]: ...

    def clear_admin_token(self) -> None: ...

    def has_admin_token(self) -> bool: ...

    def get_admin_token_expiry(self) -> Optional[float]: ...


@dataclass
class _AdminRecord:
    token: str
    expires_at: float


class AdminTokenVault:
    """Memory-only holder for the elevated token.

    Reads past the expiry clear the token, so an expired token is never
    handed out even if nobody called `clear_admin_token`.
    """

    def __init__(self, clock: Clock = _now):
        self._clock = clock
        self._record: Optional[_AdminRecord] = None

    def set_admin_token(self, token: str, expires_in: float) -> None:
        if not token:
            raise ValueError("Admin token cannot be empty")
        if expires_in <= 0:
            raise ValueError("Expiration time must be positive")
        self._record = _AdminRecord(token=token, expires_at=self._clock() + expires_in)

    def _valid(self) -> Optional[_AdminRecord]:
        rec = self._record
        if rec is None:
            return None
        if rec.expires_at <= self._clock():
            self._record = None
            return None
        return rec

    def get_admin_token(self) -> Optional[str]:
        rec = self._valid()
        return rec.token if rec else None

    def clear_admin_token(self) -> None:
        self._record = None

    def has_admin_token(self) -> bool:
        return self._valid() is not None

    def get_admin_token_expiry(self) -> Optional[float]:
        rec = self._valid()
        return rec.expires_at if rec else None

    def time_until_expiration(self) -> float:
        rec = self._valid()
        return max(0.0, rec.expires_at - self._clock()) if rec else 0.0


class _AdminTokenDelegate:
    """Admin-token half of the `TokenStore` contract, shared by all stores."""

    _admin: AdminTokenVault

    def set_admin_token(self, token: str, expires_in: float) -> None:
        self._admin.set_admin_token(token, expires_in)

    def get_admin_token(self) -> Optional[str]:
        return self._admin.get_admin_token()

    def clear_admin_token(self) -> None:
        self._admin.clear_admin_token()

    def has_admin_token(self) -> bool:
        return self._admin.has_admin_token()

    def get_admin_token_expiry(self) -> Optional[float]:
        return self._admin.get_admin_token_expiry()

    def admin_time_until_expiration(self) -> float:
        return self._admin.time_until_expiration()


class MemoryTokenStore(_AdminTokenDelegate):
    """In-memory store for development and tests."""

    def __init__(self, clock: Clock = _now):
        self._clock = clock
        self._admin = AdminTokenVault(clock)
        self._access: Optional[AccessToken] = None
        self._refresh: Optional[RefreshToken] = None

    def set_access_token(self, token: AccessToken) -> None:
        self._access = token

    def get_access_token(self) -> Optional[AccessToken]:
        tok = self._access
        if tok and is_token_expired(tok.expires_at, self._clock()):
            self._access = None
            return None
        return tok

    def set_refresh_token(self, token: RefreshToken) -> None:
        self._refresh = token

    def get_refresh_token(self) -> Optional[RefreshToken]:
        tok = self._refresh
        if tok and is_token_expired(tok.expires_at, self._clock()):
            self._refresh = None
            return None
        return tok

    def clear_all_tokens(self) -> None:
        self._access = None
        self._refresh = None


class FileTokenStore(_AdminTokenDelegate):
    """JSON-file store for the durable tokens.

    Parameters
    ----------
    path:
        File holding `{"access": {...}, "refresh": {...}}`. Created on first
        write; corrupted content is discarded on read.
    """

    ACCESS_KEY = "access"
    REFRESH_KEY = "refresh"

    def __init__(self, path: str | Path, clock: Clock = _now) -> None:
        self._path = Path(path)
        self._clock = clock
        self._admin = AdminTokenVault(clock)

    def _load(self) -> dict:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding corrupted token file")
            self._path.unlink(missing_ok=True)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict) -> None:
        if not data:
            self._path.unlink(missing_ok=True)
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        tmp.replace(self._path)

    def _put(self, key: str, value: dict) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def _drop(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)

    def set_access_token(self, token: AccessToken) -> None:
        self._put(self.ACCESS_KEY, token.to_dict())

    def get_access_token(self) -> Optional[AccessToken]:
        raw = self._load().get(self.ACCESS_KEY)
        if raw is None:
            return None
        try:
            expires = raw.get("expiresAt")
            tok = AccessToken(
                value=str(raw["value"]),
                expires_at=float(expires) if expires is not None else None,
                type=str(raw.get("type", "Bearer")),
            )
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.warning("Discarding corrupted access token entry")
            self._drop(self.ACCESS_KEY)
            return None
        if is_token_expired(tok.expires_at, self._clock()):
            self._drop(self.ACCESS_KEY)
            return None
        return tok

    def set_refresh_token(self, token: RefreshToken) -> None:
        self._put(self.REFRESH_KEY, token.to_dict())

    def get_refresh_token(self) -> Optional[RefreshToken]:
        raw = self._load().get(self.REFRESH_KEY)
        if raw is None:
            return None
        try:
            expires = raw.get("expiresAt")
            tok = RefreshToken(value=str(raw["value"]), expires_at=float(expires) if expires is not None else None)
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.warning("Discarding corrupted refresh token entry")
            self._drop(self.REFRESH_KEY)
            return None
        if is_token_expired(tok.expires_at, self._clock()):
            self._drop(self.REFRESH_KEY)
            return None
        return tok

    def clear_all_tokens(self) -> None:
        self._path.unlink(missing_ok=True)


__all__ = [
    "TokenStore",
    "AdminTokenVault",
    "MemoryTokenStore",
    "FileTokenStore",
    "is_token_expired",
    "time_until_expiration",
    "is_token_expiring_soon",
]
