"""
Admin-mode escalation: countdown, warning, activity reset and teardown.

Timing uses a manual clock for the escalation timer and the admin vault
(timeout 15 min, warning at 2 min). The countdown task is exercised for
start/stop and for a warning and an expiry reached through real ticks.
"""
from __future__ import annotations

import anyio
import pytest

from access_control.config import AuthConfig
from access_control.errors import EscalationDenied, MalformedResponse, TransportError
from access_control.escalation import ActivityMonitor, EscalationController
from access_control.models import EscalationPhase
from access_control.session import SessionController
from access_control.stores import MemoryTokenStore
from utils.fake_auth import FakeClock, FakeTransport, envelope, escalate_envelope

CONFIG = AuthConfig(escalation_timeout_seconds=900, escalation_warning_seconds=120, escalation_tick_seconds=0.01)


class Recorder:
    def __init__(self) -> None:
        self.exits: list[str] = []
        self.warnings: list[float] = []

    def on_exit(self, reason: str) -> None:
        self.exits.append(reason)

    def on_warning(self, remaining: float) -> None:
        self.warnings.append(remaining)


async def _signed_in(transport: FakeTransport, clock: FakeClock) -> SessionController:
    session = SessionController(transport, MemoryTokenStore(clock), clock=clock)
    await session.login({"email": "ada@example.org", "password": "pw"})
    return session


def _controller(session, transport, clock, recorder, activity=None) -> EscalationController:
    return EscalationController(
        session,
        transport,
        config=CONFIG,
        activity=activity,
        on_exit=recorder.on_exit,
        on_warning=recorder.on_warning,
        clock=clock,
    )


@pytest.mark.anyio
async def test_escalate_activates_and_stores_admin_token(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    esc = _controller(session, transport, clock, Recorder())

    state = await esc.escalate("secret")

    assert state.is_active is True
    assert state.phase is EscalationPhase.ACTIVE
    assert state.remaining_seconds == 900
    assert state.expiry == clock.now + 3600
    assert session.store.get_admin_token() == "admin-1"
    assert transport.calls[-1] == ("escalate", "secret")
    assert esc.activity.listener_count == 1
    assert esc.format_remaining() == "15:00"


@pytest.mark.anyio
async def test_warning_fires_once_then_expires(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    recorder = Recorder()
    esc = _controller(session, transport, clock, recorder)
    await esc.escalate("secret")

    clock.advance(13 * 60)
    state = esc.tick()
    assert state.is_warning is True
    assert state.phase is EscalationPhase.WARNING
    assert state.remaining_seconds == pytest.approx(120)
    assert recorder.warnings == [pytest.approx(120)]

    clock.advance(30)
    esc.tick()
    assert len(recorder.warnings) == 1
    assert esc.format_remaining() == "01:30"

    clock.advance(90.5)
    state = esc.tick()
    assert state.is_active is False
    assert recorder.exits == ["expired"]
    assert session.store.has_admin_token() is False
    assert esc.activity.listener_count == 0


@pytest.mark.anyio
async def test_activity_resets_countdown_and_warning(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    recorder = Recorder()
    activity = ActivityMonitor()
    esc = _controller(session, transport, clock, recorder, activity)
    await esc.escalate("secret")

    clock.advance(13 * 60)
    esc.tick()
    clock.advance(90)  # 14:30
    activity.dispatch("keydown")
    assert esc.state.is_warning is False
    assert esc.state.remaining_seconds == 900

    clock.advance(60)  # 15:30 since escalation, 1:00 since activity
    state = esc.tick()
    assert state.is_active is True
    assert state.remaining_seconds == pytest.approx(840)

    # A second warning is allowed after the reset
    clock.advance(780)
    esc.tick()
    assert len(recorder.warnings) == 2
    assert recorder.exits == []


@pytest.mark.anyio
async def test_untracked_events_do_not_reset(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    activity = ActivityMonitor()
    esc = _controller(session, transport, clock, Recorder(), activity)
    await esc.escalate("secret")

    clock.advance(100)
    activity.dispatch("mousemove")
    assert esc.time_remaining() == pytest.approx(800)


@pytest.mark.anyio
async def test_vault_expiry_forces_exit(transport: FakeTransport, clock: FakeClock):
    transport.escalate_reply = escalate_envelope(expires_in=300)
    session = await _signed_in(transport, clock)
    recorder = Recorder()
    esc = _controller(session, transport, clock, recorder)
    await esc.escalate("secret")

    clock.advance(301)
    esc.tick()

    assert esc.state.is_active is False
    assert recorder.exits == ["expired"]


@pytest.mark.anyio
async def test_manual_de_escalation_and_listener_symmetry(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    recorder = Recorder()
    activity = ActivityMonitor()
    esc = _controller(session, transport, clock, recorder, activity)

    await esc.escalate("secret")
    await esc.escalate("secret")
    assert activity.listener_count == 1

    esc.de_escalate()
    esc.de_escalate()

    assert activity.listener_count == 0
    assert recorder.exits == ["manual"]
    assert session.store.get_admin_token() is None
    assert esc.format_remaining() == "00:00"


@pytest.mark.anyio
async def test_logout_de_escalates(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    recorder = Recorder()
    esc = _controller(session, transport, clock, recorder)
    await esc.escalate("secret")

    await session.logout()

    assert esc.state.is_active is False
    assert recorder.exits == ["logout"]


@pytest.mark.anyio
async def test_escalate_requires_password_and_session(transport: FakeTransport, clock: FakeClock):
    session = SessionController(transport, MemoryTokenStore(clock), clock=clock)
    esc = _controller(session, transport, clock, Recorder())

    with pytest.raises(EscalationDenied) as exc:
        await esc.escalate("")
    assert exc.value.code == "password_required"

    with pytest.raises(EscalationDenied) as exc:
        await esc.escalate("secret")
    assert exc.value.code == "not_authenticated"
    assert esc.state.error == "Sign in before entering admin mode"
    assert transport.count("escalate") == 0


@pytest.mark.anyio
@pytest.mark.parametrize(
    "error,expected",
    [
        (TransportError("HTTP 401", code="http_401", status=401), "invalid_password"),
        (TransportError("nope", code="not_admin", status=403), "not_privileged"),
        (TransportError("HTTP 403", code="http_403", status=403), "not_privileged"),
        (TransportError("off", code="admin_disabled", status=403), "admin_disabled"),
        (TransportError("HTTP 500", code="http_500", status=500), "escalation_failed"),
    ],
)
async def test_escalate_denials_map_to_codes(transport: FakeTransport, clock: FakeClock, error, expected):
    session = await _signed_in(transport, clock)
    transport.escalate_reply = error
    esc = _controller(session, transport, clock, Recorder())

    with pytest.raises(EscalationDenied) as exc:
        await esc.escalate("secret")

    assert exc.value.code == expected
    assert esc.state.is_active is False
    assert esc.state.is_loading is False
    assert esc.state.error == exc.value.message
    assert session.store.has_admin_token() is False


@pytest.mark.anyio
async def test_escalate_malformed_reply(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    transport.escalate_reply = envelope({"adminSession": {"expiresIn": 60}})
    esc = _controller(session, transport, clock, Recorder())

    with pytest.raises(MalformedResponse):
        await esc.escalate("secret")
    assert esc.state.is_active is False


@pytest.mark.anyio
async def test_countdown_task_lifecycle(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    recorder = Recorder()

    async with _controller(session, transport, clock, recorder) as esc:
        assert esc.countdown_running is False
        await esc.escalate("secret")
        assert esc.countdown_running is True
        esc.de_escalate()
        assert esc.countdown_running is False

        await esc.escalate("secret")
        clock.advance(901)
        with anyio.fail_after(2):
            while esc.state.is_active:
                await anyio.sleep(0.01)
        assert esc.countdown_running is False

    assert recorder.exits == ["manual", "expired"]


@pytest.mark.anyio
async def test_leaving_context_disposes_active_escalation(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    recorder = Recorder()

    async with _controller(session, transport, clock, recorder) as esc:
        await esc.escalate("secret")

    assert recorder.exits == ["disposed"]
    assert esc.countdown_running is False
    assert session.store.has_admin_token() is False

    # The logout hook was removed with the context
    await session.logout()
    assert recorder.exits == ["disposed"]


@pytest.mark.anyio
async def test_logout_during_escalate_never_activates(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    recorder = Recorder()
    esc = _controller(session, transport, clock, recorder)
    transport.gate = anyio.Event()
    transport.entered = anyio.Event()
    errors: list[EscalationDenied] = []

    async def _escalate() -> None:
        try:
            await esc.escalate("secret")
        except EscalationDenied as exc:
            errors.append(exc)

    async with anyio.create_task_group() as tg:
        tg.start_soon(_escalate)
        await transport.entered.wait()
        gate, transport.gate = transport.gate, None
        await session.logout()
        gate.set()

    assert [e.code for e in errors] == ["not_authenticated"]
    assert esc.state.is_active is False
    assert esc.state.is_loading is False
    assert session.store.get_admin_token() is None
    assert esc.activity.listener_count == 0
    assert recorder.exits == []


@pytest.mark.anyio
async def test_unexpected_transport_failure_is_denied(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    transport.escalate_reply = RuntimeError("socket closed")
    esc = _controller(session, transport, clock, Recorder())

    with pytest.raises(EscalationDenied) as exc:
        await esc.escalate("secret")

    assert exc.value.code == "escalation_failed"
    assert isinstance(exc.value.__cause__, RuntimeError)
    assert esc.state.is_loading is False
    assert esc.state.error == "Admin mode could not be entered"


@pytest.mark.anyio
async def test_countdown_task_raises_warning(transport: FakeTransport, clock: FakeClock):
    session = await _signed_in(transport, clock)
    recorder = Recorder()

    async with _controller(session, transport, clock, recorder) as esc:
        await esc.escalate("secret")
        clock.advance(13 * 60)
        with anyio.fail_after(2):
            while not esc.state.is_warning:
                await anyio.sleep(0.01)

        assert esc.state.is_active is True
        assert esc.state.remaining_seconds == pytest.approx(120)
        # Further ticks at the same clock reading do not repeat the warning
        await anyio.sleep(0.05)
        assert recorder.warnings == [pytest.approx(120)]
        esc.de_escalate()

    assert recorder.exits == ["manual"]
