"""
Error taxonomy for the access core.

Every failure carries a stable snake-case `code` so callers (UI adapters,
tests) can branch without parsing messages, plus a readable message that is
safe to show. Messages never contain credentials or token values.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all access-core failures."""

    default_code = "auth_error"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.code = code or self.default_code
        self.message = message or self.code
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    default_code = "invalid_credentials"


class MalformedResponse(AuthError):
    """A success envelope lacked fields the core depends on."""

    default_code = "malformed_response"


class NoRefreshToken(AuthError):
    default_code = "no_refresh_token"


class RefreshFailed(AuthError):
    """Token refresh failed; the session has already been logged out."""

    default_code = "refresh_failed"


class EscalationDenied(AuthError):
    """Admin-mode entry refused.

    Codes: password_required, not_authenticated, invalid_password,
    not_privileged, admin_disabled, escalation_failed.
    """

    default_code = "escalation_failed"


class SessionBusy(AuthError):
    """A lifecycle operation is already in flight on this session owner."""

    default_code = "session_busy"


class TransportError(AuthError):
    """Non-success reply (or network failure) from the auth transport."""

    default_code = "transport_error"

    def __init__(self, message: str | None = None, *, code: str | None = None, status: int | None = None):
        super().__init__(message, code=code)
        self.status = status


__all__ = [
    "AuthError",
    "InvalidCredentials",
    "MalformedResponse",
    "NoRefreshToken",
    "RefreshFailed",
    "EscalationDenied",
    "SessionBusy",
    "TransportError",
]
