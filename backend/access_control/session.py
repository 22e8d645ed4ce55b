"""
Session lifecycle controller: login, logout, token refresh and cold-start
restore, with the failure-recovery policy of each.

Why:
    The session is the single owner of "who is signed in and what may they
    do". Making it an explicitly constructed object (no module singleton)
    lets every test build an isolated instance around fake collaborators.

Behavior:
    - Each operation ends with one whole-state replacement; observers never
      see a half-updated session. `is_authenticated=True` always comes with a
      role hierarchy.
    - Login and escalation-style failures are reported twice on purpose: in
      `state.error` and as a raised exception.
    - Logout never fails from the caller's point of view.
    - A failed refresh always ends in a full logout before the error is
      raised.
    - Login and initialize are rejected with `SessionBusy` while another
      lifecycle operation runs; concurrent refresh callers share one call.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Mapping, Optional, Sequence
import logging
import time

import anyio

from . import permissions as perms
from .domain import DEFAULT_CLASSIFICATION, TOKEN_TYPE, RoleClassification
from .errors import (
    AuthError,
    InvalidCredentials,
    MalformedResponse,
    NoRefreshToken,
    RefreshFailed,
    SessionBusy,
    TransportError,
)
from .hierarchy import build_role_hierarchy, hierarchy_from_dict, roles_payload_from_dict
from .models import (
    EMPTY_SESSION,
    AccessToken,
    PermissionScope,
    RefreshToken,
    RoleHierarchy,
    SessionPhase,
    SessionState,
    User,
)
from .config import AuthConfig
from .stores import FileTokenStore, MemoryTokenStore, TokenStore
from .transport import AuthTransport

logger = logging.getLogger("lms.access.session")

Listener = Callable[[SessionState], None]
TeardownHook = Callable[[], None]


def _data(envelope: Any, message: str) -> Mapping[str, Any]:
    if not isinstance(envelope, Mapping) or not envelope.get("success"):
        raise MalformedResponse(message)
    data = envelope.get("data")
    if not isinstance(data, Mapping):
        raise MalformedResponse(message)
    return data


def _user_from_dict(raw: Optional[Mapping[str, Any]], data: Mapping[str, Any], hierarchy: RoleHierarchy) -> User:
    raw = raw if isinstance(raw, Mapping) else {}
    person = data.get("person") or raw.get("person")
    return User(
        id=raw.get("id") or raw.get("_id"),
        email=raw.get("email"),
        first_name=raw.get("firstName"),
        last_name=raw.get("lastName"),
        person=person if isinstance(person, Mapping) else None,
        user_types=hierarchy.all_user_types,
        default_dashboard=hierarchy.default_dashboard,
        can_escalate_to_admin=hierarchy.can_escalate_to_admin,
        is_active=bool(raw.get("isActive", True)),
        last_login=raw.get("lastLogin"),
        created_at=raw.get("createdAt"),
    )


class _InFlight:
    def __init__(self) -> None:
        self.done = anyio.Event()
        self.error: Optional[BaseException] = None


class SessionController:
    """Owns the base session state.

    Parameters
    ----------
    transport:
        Remote auth authority (`AuthTransport`).
    store:
        Token persistence (`TokenStore`); durable for access/refresh tokens,
        memory-only for the admin token.
    classification:
        Staff/learner role-name sets used by the hierarchy builder.
    clock:
        Wall clock in epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        transport: AuthTransport,
        store: TokenStore,
        *,
        classification: RoleClassification = DEFAULT_CLASSIFICATION,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._store = store
        self._classification = classification
        self._clock = clock
        self._state: SessionState = EMPTY_SESSION
        self._listeners: list[Listener] = []
        self._teardown_hooks: list[TeardownHook] = []
        self._busy: Optional[str] = None
        self._refresh_inflight: Optional[_InFlight] = None
        # Bumped by logout and by each login; results of awaits that started
        # under an older generation are discarded.
        self._generation = 0

    @classmethod
    def from_config(
        cls,
        cfg: AuthConfig,
        transport: AuthTransport,
        *,
        clock: Callable[[], float] = time.time,
    ) -> "SessionController":
        """Build a controller with the configured classification and store.

        `LMS_TOKEN_FILE` selects the file-backed store; without it tokens
        live in memory only.
        """
        store: TokenStore = FileTokenStore(cfg.token_file, clock) if cfg.token_file else MemoryTokenStore(clock)
        return cls(transport, store, classification=cfg.classification, clock=clock)

    # -- state container -------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def store(self) -> TokenStore:
        return self._store

    def _set(self, new_state: SessionState) -> None:
        self._state = new_state
        for listener in list(self._listeners):
            listener(new_state)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener` with every new state; returns the unsubscribe."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def add_teardown_hook(self, hook: TeardownHook) -> Callable[[], None]:
        """Run `hook` on every logout, before tokens are cleared."""
        self._teardown_hooks.append(hook)

        def _remove() -> None:
            if hook in self._teardown_hooks:
                self._teardown_hooks.remove(hook)

        return _remove

    def access_token_value(self) -> Optional[str]:
        tok = self._state.access_token or self._store.get_access_token()
        return tok.value if tok else None

    def clear_error(self) -> None:
        self._set(replace(self._state, error=None))

    def _enter(self, operation: str) -> None:
        if self._busy is not None:
            raise SessionBusy(f"Cannot {operation} while {self._busy} is in progress")
        self._busy = operation

    def _exit(self) -> None:
        self._busy = None

    # -- queries ---------------------------------------------------------

    def has_permission(self, permission: str, scope: Optional[PermissionScope] = None) -> bool:
        return perms.has_permission(self._state.role_hierarchy, permission, scope)

    def has_any_permission(self, permissions: Sequence[str], scope: Optional[PermissionScope] = None) -> bool:
        return perms.has_any_permission(self._state.role_hierarchy, permissions, scope)

    def has_all_permissions(self, permissions: Sequence[str], scope: Optional[PermissionScope] = None) -> bool:
        return perms.has_all_permissions(self._state.role_hierarchy, permissions, scope)

    def has_role(self, role: str, department_id: Optional[str] = None) -> bool:
        return perms.has_role(self._state.role_hierarchy, role, department_id)

    # -- lifecycle -------------------------------------------------------

    def _hierarchy(self, data: Mapping[str, Any]) -> RoleHierarchy:
        return build_role_hierarchy(roles_payload_from_dict(data), self._classification)

    async def login(self, credentials: Mapping[str, Any]) -> SessionState:
        """Authenticate and populate the session in one replacement.

        Raises
        ------
        InvalidCredentials:
            The authority rejected the credentials (HTTP 401).
        MalformedResponse:
            The success envelope lacked session, user or user-type data.
        AuthError:
            Any other transport failure.
        """
        self._enter("login")
        try:
            self._generation += 1
            generation = self._generation
            self._set(replace(self._state, is_loading=True, error=None, phase=SessionPhase.AUTHENTICATING))
            try:
                envelope = await self._transport.login(credentials)
                if self._generation != generation:
                    raise AuthError("Sign-in was interrupted by a logout", code="login_interrupted")
                data = _data(envelope, "Invalid login response format")
                session = data.get("session")
                if (
                    not isinstance(session, Mapping)
                    or not session.get("accessToken")
                    or not isinstance(data.get("user"), Mapping)
                    or not isinstance(data.get("userTypes"), (list, tuple))
                ):
                    raise MalformedResponse("Invalid login response format")
                hierarchy = self._hierarchy(data)
                user = _user_from_dict(data["user"], data, hierarchy)
                access = AccessToken(
                    value=str(session["accessToken"]),
                    expires_at=self._expires_at(session.get("expiresIn")),
                    type=TOKEN_TYPE,
                )
                self._store.set_access_token(access)
                if session.get("refreshToken"):
                    self._store.set_refresh_token(
                        RefreshToken(
                            value=str(session["refreshToken"]),
                            expires_at=self._expires_at(session.get("refreshExpiresIn")),
                        )
                    )
            except Exception as exc:
                failure = self._login_failure(exc)
                self._set(
                    replace(
                        EMPTY_SESSION,
                        is_loading=False,
                        error=failure.message,
                        selected_department_id=self._state.selected_department_id,
                    )
                )
                logger.info("Login failed: %s", failure.code)
                if failure is exc:
                    raise
                raise failure from exc
            self._set(
                SessionState(
                    access_token=access,
                    user=user,
                    role_hierarchy=hierarchy,
                    is_authenticated=True,
                    is_loading=False,
                    error=None,
                    phase=SessionPhase.AUTHENTICATED,
                    selected_department_id=hierarchy.last_selected_department,
                )
            )
            return self._state
        finally:
            self._exit()

    @staticmethod
    def _login_failure(exc: Exception) -> AuthError:
        if isinstance(exc, TransportError) and exc.status == 401:
            server_message = exc.message if exc.code != "http_401" else None
            return InvalidCredentials(server_message or "Invalid credentials")
        if isinstance(exc, AuthError):
            return exc
        return AuthError(str(exc) or exc.__class__.__name__, code="login_failed")

    def _expires_at(self, ttl: Any) -> Optional[float]:
        return self._clock() + float(ttl) if ttl else None

    async def logout(self) -> None:
        """Best-effort remote logout, then an unconditional local reset.

        In-flight login, refresh and restore calls finishing afterwards are
        discarded.
        """
        self._generation += 1
        try:
            await self._transport.logout()
        except Exception as exc:
            logger.warning("Remote logout failed: %s", exc.__class__.__name__)
        for hook in list(self._teardown_hooks):
            try:
                hook()
            except Exception as exc:
                logger.warning("Session teardown hook failed: %s", exc.__class__.__name__)
        self._store.clear_admin_token()
        self._store.clear_all_tokens()
        self._set(EMPTY_SESSION)

    async def refresh_token(self) -> SessionState:
        """Swap in a fresh access token.

        Concurrent callers share the in-flight refresh and see the same
        outcome.

        Raises
        ------
        NoRefreshToken:
            Nothing stored to refresh with; state is left untouched.
        RefreshFailed:
            The refresh call failed and the session has been logged out, or
            a logout/login replaced the session while the call was in flight
            (the result is then dropped and nothing is stored).
        """
        inflight = self._refresh_inflight
        if inflight is not None:
            await inflight.done.wait()
            if inflight.error is not None:
                raise inflight.error
            return self._state

        inflight = self._refresh_inflight = _InFlight()
        try:
            await self._refresh_once()
        except BaseException as exc:
            inflight.error = exc
            raise
        finally:
            self._refresh_inflight = None
            inflight.done.set()
        return self._state

    async def _refresh_once(self) -> None:
        stored = self._store.get_refresh_token()
        if stored is None:
            raise NoRefreshToken("No refresh token available")

        generation = self._generation
        previous = self._state
        self._set(replace(previous, phase=SessionPhase.REFRESHING))
        try:
            envelope = await self._transport.refresh(stored.value)
            if self._generation != generation:
                logger.info("Discarding refresh result: session ended meanwhile")
                raise RefreshFailed("Session ended during refresh")
            data = _data(envelope, "Invalid refresh response format")
            access = self._access_from_refresh(data.get("accessToken"), data)
            rotated = data.get("refreshToken")
            hierarchy_raw = data.get("roleHierarchy")
            hierarchy = hierarchy_from_dict(hierarchy_raw) if hierarchy_raw else previous.role_hierarchy
        except RefreshFailed:
            raise
        except Exception as exc:
            logger.warning("Token refresh failed: %s", exc.__class__.__name__)
            if self._generation == generation:
                await self.logout()
            raise RefreshFailed("Session expired. Please sign in again.") from exc

        self._store.set_access_token(access)
        if rotated:
            self._store.set_refresh_token(self._refresh_from_payload(rotated))
        authenticated = hierarchy is not None
        user = previous.user
        if user is not None and hierarchy is not None and hierarchy is not previous.role_hierarchy:
            user = replace(
                user,
                user_types=hierarchy.all_user_types,
                default_dashboard=hierarchy.default_dashboard,
                can_escalate_to_admin=hierarchy.can_escalate_to_admin,
            )
        self._set(
            replace(
                previous,
                access_token=access,
                user=user,
                role_hierarchy=hierarchy,
                is_authenticated=authenticated and previous.is_authenticated,
                phase=SessionPhase.AUTHENTICATED if authenticated and previous.is_authenticated else previous.phase,
            )
        )

    def _access_from_refresh(self, raw: Any, data: Mapping[str, Any]) -> AccessToken:
        if isinstance(raw, str) and raw:
            return AccessToken(value=raw, expires_at=self._expires_at(data.get("expiresIn")))
        if isinstance(raw, Mapping) and raw.get("value"):
            expires_at = raw.get("expiresAt")
            return AccessToken(
                value=str(raw["value"]),
                expires_at=float(expires_at) if expires_at is not None else self._expires_at(raw.get("expiresIn") or data.get("expiresIn")),
                type=str(raw.get("type") or TOKEN_TYPE),
            )
        raise MalformedResponse("Invalid refresh response format")

    def _refresh_from_payload(self, raw: Any) -> RefreshToken:
        if isinstance(raw, Mapping):
            expires_at = raw.get("expiresAt")
            return RefreshToken(value=str(raw.get("value")), expires_at=float(expires_at) if expires_at is not None else None)
        return RefreshToken(value=str(raw))

    async def initialize_auth(self) -> SessionState:
        """Restore the session on cold start from a stored access token.

        Behavior:
            - No stored token: nothing happens.
            - Fetch failure: one refresh-then-refetch attempt. If that also
              fails, persisted tokens are cleared and the session is reset.
            - Remote failures are logged, never raised.
        """
        token = self._store.get_access_token()
        if token is None:
            return self._state
        self._enter("initialize")
        try:
            generation = self._generation
            self._set(replace(self._state, is_loading=True, error=None, phase=SessionPhase.AUTHENTICATING))
            try:
                data = await self._fetch_current_user()
                if self._generation == generation:
                    self._restore(token, data)
                return self._state
            except Exception as exc:
                logger.info("Session restore failed, trying refresh: %s", exc.__class__.__name__)
            try:
                await self.refresh_token()
                token = self._store.get_access_token()
                if token is None:
                    raise NoRefreshToken("Refresh did not yield an access token")
                data = await self._fetch_current_user()
                if self._generation != generation:
                    return self._state
                self._restore(token, data)
            except Exception as exc:
                logger.warning("Session restore abandoned: %s", exc.__class__.__name__)
                self._store.clear_all_tokens()
                self._set(EMPTY_SESSION)
            return self._state
        finally:
            self._exit()

    async def _fetch_current_user(self) -> Mapping[str, Any]:
        envelope = await self._transport.get_current_user()
        data = _data(envelope, "Invalid current user response format")
        if not isinstance(data.get("userTypes"), (list, tuple)):
            raise MalformedResponse("Invalid current user response format")
        return data

    def _restore(self, token: AccessToken, data: Mapping[str, Any]) -> None:
        hierarchy = self._hierarchy(data)
        self._set(
            SessionState(
                access_token=token,
                user=_user_from_dict(data.get("user"), data, hierarchy),
                role_hierarchy=hierarchy,
                is_authenticated=True,
                is_loading=False,
                error=None,
                phase=SessionPhase.AUTHENTICATED,
                selected_department_id=hierarchy.last_selected_department,
            )
        )

    async def switch_department(self, department_id: str) -> Mapping[str, Any]:
        """Change the active department context.

        Raises
        ------
        AuthError:
            Not authenticated (`not_authenticated`) or the switch was refused.
        """
        if not self._state.is_authenticated:
            raise AuthError("Sign in before switching departments", code="not_authenticated")
        if not department_id:
            raise ValueError("invalid_department_id")
        data = _data(await self._transport.switch_department(department_id), "Invalid switch department response format")
        self._set(replace(self._state, selected_department_id=department_id))
        return data


__all__ = ["SessionController"]
