"""
Pytest configuration for the access-core tests.

- Puts `backend/` and this directory on `sys.path`, so `access_control` and
  the `utils` test helpers import without installing the package.
- Pins AnyIO's pytest plugin to the asyncio backend.
- Clears `LMS_*` variables from the developer shell before every test, so
  config tests start from the defaults.
- Provides `clock` (manual `FakeClock`) and `transport` (in-memory
  `FakeTransport`) fixtures.
"""
import sys
from pathlib import Path

import pytest

# Ensure modules in backend/ and the test helpers are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

from utils.fake_auth import FakeClock, FakeTransport  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_lms_env(monkeypatch: pytest.MonkeyPatch):
    """Keep `LMS_*` settings from the developer shell out of the tests."""
    for name in (
        "LMS_API_BASE_URL",
        "LMS_HTTP_TIMEOUT_SECONDS",
        "LMS_ESCALATION_TIMEOUT_SECONDS",
        "LMS_ESCALATION_WARNING_SECONDS",
        "LMS_ESCALATION_TICK_SECONDS",
        "LMS_STAFF_ROLES",
        "LMS_LEARNER_ROLES",
        "LMS_TOKEN_FILE",
        "LMS_ENV",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1_000_000.0)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
