"""
Configuration for the access core, parsed from environment variables.

Intent:
    One place that reads the API location, HTTP timeout, escalation timing
    and the role classification overrides, with explicit defaults and range
    checks so misconfiguration fails at startup rather than mid-session.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Optional

from .domain import DEFAULT_LEARNER_ROLES, DEFAULT_STAFF_ROLES, RoleClassification

DEFAULT_API_BASE_URL = "http://localhost:5000/api/v2"


@dataclass(frozen=True)
class AuthConfig:
    api_base_url: str = DEFAULT_API_BASE_URL
    http_timeout_seconds: int = 10
    escalation_timeout_seconds: int = 900
    escalation_warning_seconds: int = 120
    escalation_tick_seconds: float = 1.0
    classification: RoleClassification = field(default_factory=RoleClassification)
    token_file: Optional[str] = None
    environment: str = "dev"

    @property
    def is_prod_like(self) -> bool:
        return _is_prod_like(self.environment)


def _is_prod_like(env: str) -> bool:
    return (env or "").lower() in {"prod", "production", "stage", "staging"}


def _int_env(name: str, default: int, low: int, high: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")
    if value < low or value > high:
        raise ValueError(f"{name} out of range ({low}..{high}), got: {value}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got: {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got: {value}")
    return value


def _roles_env(name: str, default: frozenset[str]) -> frozenset[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    items = {part.strip().lower() for part in raw.split(",")}
    return frozenset(item for item in items if item)


def load_auth_config() -> AuthConfig:
    """Parse and validate `LMS_*` environment variables.

    Behavior:
        - Timeouts are whole seconds with explicit ranges.
        - The warning threshold must be shorter than the escalation timeout.
        - `LMS_STAFF_ROLES` / `LMS_LEARNER_ROLES` replace (not extend) the
          default classification sets; empty entries are ignored.
    """
    base_url = (os.getenv("LMS_API_BASE_URL") or DEFAULT_API_BASE_URL).strip().rstrip("/")
    if not base_url.startswith(("http://", "https://")):
        raise ValueError("LMS_API_BASE_URL must start with http:// or https://")
    timeout = _int_env("LMS_ESCALATION_TIMEOUT_SECONDS", 900, 1, 86400)
    warning = _int_env("LMS_ESCALATION_WARNING_SECONDS", 120, 0, 86400)
    if warning >= timeout:
        raise ValueError("LMS_ESCALATION_WARNING_SECONDS must be lower than LMS_ESCALATION_TIMEOUT_SECONDS")
    return AuthConfig(
        api_base_url=base_url,
        http_timeout_seconds=_int_env("LMS_HTTP_TIMEOUT_SECONDS", 10, 1, 300),
        escalation_timeout_seconds=timeout,
        escalation_warning_seconds=warning,
        escalation_tick_seconds=_float_env("LMS_ESCALATION_TICK_SECONDS", 1.0),
        classification=RoleClassification(
            staff_roles=_roles_env("LMS_STAFF_ROLES", DEFAULT_STAFF_ROLES),
            learner_roles=_roles_env("LMS_LEARNER_ROLES", DEFAULT_LEARNER_ROLES),
        ),
        token_file=(os.getenv("LMS_TOKEN_FILE") or "").strip() or None,
        environment=(os.getenv("LMS_ENV") or "dev").strip().lower(),
    )


def ensure_secure_config(cfg: AuthConfig) -> None:
    """Fail fast on insecure production configuration.

    Development remains permissive. In prod-like environments the API must be
    reached over https, since bearer tokens travel on every call.
    """
    if not cfg.is_prod_like:
        return
    if cfg.api_base_url.lower().startswith("http://"):
        raise SystemExit("Refusing to start: LMS_API_BASE_URL must use https in production (got http).")


__all__ = ["AuthConfig", "load_auth_config", "ensure_secure_config", "DEFAULT_API_BASE_URL"]
