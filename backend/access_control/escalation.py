"""
Admin-mode escalation with an inactivity countdown.

Why:
    Global admins re-enter a password to reach the admin area. The elevated
    session must be short-lived, die with inactivity, and never outlive the
    base session or the process. This module is that state machine.

Behavior:
    - `escalate(password)` needs an authenticated base session and a
      non-empty password; the elevated token goes to the store's memory-only
      admin vault.
    - While active, a background task ticks every `tick_seconds`. Remaining
      time is `timeout - (now - last_activity)`. Tracked activity resets it.
    - At or below `warning_seconds` the state flags a warning and the warning
      callback fires once per reset.
    - At zero (or when the vault no longer holds the token) the escalation is
      torn down and the exit callback fires with reason `expired`.
    - `de_escalate()`, base-session logout and leaving the controller's
      `async with` block tear down the same way (reasons `manual`, `logout`,
      `disposed`).

Without an open `async with` block no background task exists and the owner
drives `tick()` itself.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Mapping, Optional
import logging
import time

import anyio
from anyio.abc import TaskGroup, TaskStatus

from .config import AuthConfig
from .errors import AuthError, EscalationDenied, MalformedResponse, TransportError
from .models import INACTIVE_ESCALATION, EscalationState
from .session import SessionController
from .transport import AuthTransport

logger = logging.getLogger("lms.access.escalation")

TRACKED_EVENTS = frozenset({"pointerdown", "keydown", "scroll", "touchstart"})

_DENIAL_CODES = {
    "invalid_password": "invalid_password",
    "invalid_escalation_password": "invalid_password",
    "not_privileged": "not_privileged",
    "not_admin": "not_privileged",
    "admin_disabled": "admin_disabled",
    "escalation_disabled": "admin_disabled",
}
_DENIAL_MESSAGES = {
    "invalid_password": "Invalid escalation password",
    "not_privileged": "Your account cannot access admin mode",
    "admin_disabled": "Admin mode is disabled",
}

ActivityListener = Callable[[str], None]


class ActivityMonitor:
    """Fan-out point for user-activity events.

    Adapters call `dispatch(event_type)`; only tracked event types reach the
    listeners.
    """

    def __init__(self, tracked: frozenset[str] = TRACKED_EVENTS) -> None:
        self._tracked = tracked
        self._listeners: list[ActivityListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: ActivityListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ActivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def dispatch(self, event_type: str) -> None:
        if event_type not in self._tracked:
            return
        for listener in list(self._listeners):
            listener(event_type)


def _denial(exc: TransportError) -> EscalationDenied:
    code = _DENIAL_CODES.get((exc.code or "").lower())
    if code is None:
        if exc.status == 401:
            code = "invalid_password"
        elif exc.status == 403:
            code = "not_privileged"
        else:
            return EscalationDenied(exc.message, code="escalation_failed")
    return EscalationDenied(_DENIAL_MESSAGES[code], code=code)


class EscalationController:
    """Elevated-privilege session layered on a `SessionController`.

    Parameters
    ----------
    session:
        The base session; its logout always de-escalates.
    transport:
        Remote authority verifying the escalation password.
    activity:
        Source of user-activity events (one listener while active).
    on_exit:
        Called with the teardown reason; adapters redirect away from the
        admin area here.
    on_warning:
        Called once with the remaining seconds when the warning starts.
    clock:
        Monotonic seconds; injectable for tests.
    """

    def __init__(
        self,
        session: SessionController,
        transport: AuthTransport,
        *,
        config: Optional[AuthConfig] = None,
        activity: Optional[ActivityMonitor] = None,
        on_exit: Optional[Callable[[str], None]] = None,
        on_warning: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        cfg = config or AuthConfig()
        self._session = session
        self._transport = transport
        self._timeout = float(cfg.escalation_timeout_seconds)
        self._warning_at = float(cfg.escalation_warning_seconds)
        self._tick_seconds = float(cfg.escalation_tick_seconds)
        self._activity = activity or ActivityMonitor()
        self._on_exit = on_exit
        self._on_warning = on_warning
        self._clock = clock
        self._state: EscalationState = INACTIVE_ESCALATION
        self._last_activity = 0.0
        self._warned = False
        self._task_group: Optional[TaskGroup] = None
        self._countdown: Optional[anyio.CancelScope] = None
        self._remove_hook = session.add_teardown_hook(lambda: self._deactivate("logout"))

    @property
    def state(self) -> EscalationState:
        return self._state

    @property
    def activity(self) -> ActivityMonitor:
        return self._activity

    @property
    def countdown_running(self) -> bool:
        return self._countdown is not None

    async def __aenter__(self) -> "EscalationController":
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        return self

    async def __aexit__(self, *exc_info: Any) -> Optional[bool]:
        self._deactivate("disposed")
        self._remove_hook()
        task_group, self._task_group = self._task_group, None
        return await task_group.__aexit__(*exc_info) if task_group else None

    async def escalate(self, password: str) -> EscalationState:
        """Enter admin mode.

        Raises
        ------
        EscalationDenied:
            With code `password_required`, `not_authenticated`,
            `invalid_password`, `not_privileged`, `admin_disabled` or
            `escalation_failed`.
        MalformedResponse:
            The success envelope lacked the admin session.
        """
        if not password:
            raise self._fail(EscalationDenied("Escalation password is required", code="password_required"))
        if not self._session.state.is_authenticated:
            raise self._fail(EscalationDenied("Sign in before entering admin mode", code="not_authenticated"))

        generation = self._session.generation
        self._state = replace(self._state, is_loading=True, error=None)
        try:
            envelope = await self._transport.escalate(password)
            # The base session may have ended (or been replaced) meanwhile.
            if self._session.generation != generation or not self._session.state.is_authenticated:
                raise EscalationDenied("Sign in before entering admin mode", code="not_authenticated")
            token, expires_in = self._admin_session(envelope)
            self._session.store.set_admin_token(token, expires_in)
        except TransportError as exc:
            raise self._fail(_denial(exc)) from exc
        except AuthError as exc:
            raise self._fail(exc)
        except (TypeError, ValueError) as exc:
            raise self._fail(MalformedResponse("Invalid escalation response format")) from exc
        except Exception as exc:
            logger.warning("Admin mode request failed: %s", exc.__class__.__name__)
            raise self._fail(EscalationDenied("Admin mode could not be entered", code="escalation_failed")) from exc

        self._activate()
        if self._task_group is not None:
            await self._task_group.start(self._run_countdown)
        logger.info("Admin mode entered")
        return self._state

    def _fail(self, exc: AuthError) -> AuthError:
        if not self._state.is_active:
            self._session.store.clear_admin_token()
        self._state = replace(self._state, is_loading=False, error=exc.message)
        logger.info("Admin mode refused: %s", exc.code)
        return exc

    @staticmethod
    def _admin_session(envelope: Any) -> tuple[str, float]:
        data = envelope.get("data") if isinstance(envelope, Mapping) and envelope.get("success") else None
        admin = data.get("adminSession") if isinstance(data, Mapping) else None
        if not isinstance(admin, Mapping) or not admin.get("adminToken") or admin.get("expiresIn") is None:
            raise MalformedResponse("Invalid escalation response format")
        return str(admin["adminToken"]), float(admin["expiresIn"])

    def _activate(self) -> None:
        self._stop_countdown()
        self._last_activity = self._clock()
        self._warned = False
        self._state = EscalationState(
            is_active=True,
            expiry=self._session.store.get_admin_token_expiry(),
            is_warning=False,
            remaining_seconds=self._timeout,
        )
        self._activity.add_listener(self._on_activity)

    async def _run_countdown(self, *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED) -> None:
        with anyio.CancelScope() as scope:
            self._countdown = scope
            task_status.started()
            try:
                while True:
                    await anyio.sleep(self._tick_seconds)
                    self.tick()
            finally:
                if self._countdown is scope:
                    self._countdown = None

    def _stop_countdown(self) -> None:
        scope, self._countdown = self._countdown, None
        if scope is not None:
            scope.cancel()

    def _on_activity(self, _event_type: str) -> None:
        self.record_activity()

    def record_activity(self) -> None:
        """Reset the countdown to the full duration and clear the warning."""
        if not self._state.is_active:
            return
        self._last_activity = self._clock()
        self._warned = False
        self._state = replace(self._state, remaining_seconds=self._timeout, is_warning=False)

    def time_remaining(self) -> float:
        if not self._state.is_active:
            return 0.0
        return max(0.0, self._timeout - (self._clock() - self._last_activity))

    def format_remaining(self) -> str:
        total = int(self.time_remaining())
        return f"{total // 60:02d}:{total % 60:02d}"

    def tick(self) -> EscalationState:
        """Advance the state machine to the current clock reading."""
        if not self._state.is_active:
            return self._state
        remaining = self.time_remaining()
        if remaining <= 0 or not self._session.store.has_admin_token():
            self._deactivate("expired")
            return self._state
        warning = remaining <= self._warning_at
        self._state = replace(self._state, remaining_seconds=remaining, is_warning=warning)
        if warning and not self._warned:
            self._warned = True
            logger.info("Admin mode expiring in %d seconds", int(remaining))
            if self._on_warning is not None:
                self._on_warning(remaining)
        return self._state

    def de_escalate(self) -> None:
        """Leave admin mode now; a no-op when not active."""
        self._deactivate("manual")

    def _deactivate(self, reason: str) -> None:
        was_active = self._state.is_active
        self._stop_countdown()
        self._activity.remove_listener(self._on_activity)
        self._session.store.clear_admin_token()
        self._warned = False
        self._state = INACTIVE_ESCALATION
        if was_active:
            logger.info("Admin mode left: %s", reason)
            if self._on_exit is not None:
                self._on_exit(reason)


__all__ = ["EscalationController", "ActivityMonitor", "TRACKED_EVENTS"]
