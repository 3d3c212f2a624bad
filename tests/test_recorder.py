"""
Recording session: delays, ignored controls, stop cleanup, position capture
"""

import pytest
from unittest.mock import MagicMock

from macrox.keys import MouseButton
from macrox.macro.models import KeyDown, KeyUp, MouseClick, MouseDown, MouseMove, MouseUp
from macrox.macro.recorder import (
    InputSubscription, RawEventType, RawInputEvent, RecorderState, RecordingSession,
    pynput_button_to_index, pynput_key_to_physical
)

STOP = "record_stop_button"


def key(name, pressed, ts, target=None):
    return RawInputEvent.key_event(name, pressed, timestamp=ts, target=target)


def button(index, pressed, ts, target=None):
    return RawInputEvent.button_event(index, pressed, timestamp=ts, target=target)


@pytest.fixture
def session(hook, cursor):
    return RecordingSession(hook=hook, cursor=cursor, ignore_targets=[STOP], clock=lambda: 0.0)


class TestRecording:

    def test_start_acquires_hook(self, session, hook):
        session.start(timestamp=10.0)
        assert session.state == RecorderState.RECORDING
        assert hook.running
        session.stop()
        assert session.state == RecorderState.IDLE
        assert not hook.running

    def test_delays_from_timestamps(self, session, hook):
        session.start(timestamp=10.0)
        hook.emit(key("KeyA", True, 10.100))
        hook.emit(key("KeyA", False, 10.150))
        hook.emit(button(0, True, 10.400))
        actions = session.stop(trim_stop_click=False)
        assert actions == [
            KeyDown(key="A", delay_ms=100),
            KeyUp(key="A", delay_ms=50),
            MouseDown(button=MouseButton.LEFT, delay_ms=250),
        ]

    def test_delays_never_negative(self, session, hook):
        session.start(timestamp=5.0)
        hook.emit(key("KeyA", True, 5.2))
        hook.emit(key("KeyA", False, 5.1))
        actions = session.stop()
        assert [a.delay_ms for a in actions] == [200, 0]
        assert all(a.delay_ms >= 0 for a in actions)

    def test_ignored_target_dropped_but_clock_advances(self, session, hook):
        session.start(timestamp=0.0)
        hook.emit(key("KeyA", True, 0.1))
        assert not hook.emit(button(0, True, 0.5, target=STOP))
        hook.emit(key("KeyA", False, 0.6))
        actions = session.stop(trim_stop_click=False)
        assert actions == [KeyDown(key="A", delay_ms=100), KeyUp(key="A", delay_ms=100)]

    def test_events_ignored_when_idle(self, session):
        assert not session.handle_event(key("KeyA", True, 1.0))
        assert session.actions == []

    def test_stop_trims_trailing_click(self, session, hook):
        session.start(timestamp=0.0)
        hook.emit(key("KeyA", True, 0.1))
        hook.emit(button(0, True, 0.2))
        hook.emit(button(0, False, 0.3))
        actions = session.stop()
        assert actions == [KeyDown(key="A", delay_ms=100)]

    def test_stop_trims_at_most_one_pair(self, session, hook):
        session.start(timestamp=0.0)
        for ts in (0.1, 0.3):
            hook.emit(button(2, True, ts))
            hook.emit(button(2, False, ts + 0.05))
        actions = session.stop()
        assert len(actions) == 2
        assert isinstance(actions[0], MouseDown)
        assert isinstance(actions[1], MouseUp)
        assert actions[0].button == MouseButton.RIGHT

    def test_stop_without_trailing_click_keeps_all(self, session, hook):
        session.start(timestamp=0.0)
        hook.emit(button(0, True, 0.1))
        hook.emit(button(0, False, 0.2))
        hook.emit(key("KeyB", True, 0.3))
        assert len(session.stop()) == 3

    def test_stop_when_idle_returns_empty(self, session):
        assert session.stop() == []

    def test_stop_click_on_ignored_control_keeps_user_click(self, session, hook):
        session.start(timestamp=0.0)
        hook.emit(key("KeyA", True, 0.1))
        hook.emit(button(0, True, 0.2))
        hook.emit(button(0, False, 0.3))
        hook.emit(button(0, True, 0.9, target=STOP))
        hook.emit(button(0, False, 1.0, target=STOP))
        actions = session.stop()
        assert actions == [
            KeyDown(key="A", delay_ms=100),
            MouseDown(button=MouseButton.LEFT, delay_ms=100),
            MouseUp(button=MouseButton.LEFT, delay_ms=100),
        ]

    def test_trim_resumes_after_recorded_action(self, session, hook):
        session.start(timestamp=0.0)
        hook.emit(button(0, True, 0.1, target=STOP))
        hook.emit(key("KeyA", True, 0.2))
        hook.emit(button(0, True, 0.3))
        hook.emit(button(0, False, 0.4))
        assert session.stop() == [KeyDown(key="A", delay_ms=100)]

    def test_delay_measured_from_previous_event(self, session, hook):
        session.start(timestamp=0.0)
        hook.emit(key("KeyA", True, 0.5))
        hook.emit(key("KeyB", True, 0.3))
        hook.emit(key("KeyC", True, 0.4))
        actions = session.stop()
        assert [a.delay_ms for a in actions] == [500, 0, 100]

    def test_restart_force_stops_previous(self, session, hook):
        session.start(timestamp=0.0)
        hook.emit(key("KeyA", True, 0.1))
        session.start(timestamp=1.0)
        assert session.is_recording
        assert session.actions == []
        hook.emit(key("KeyB", True, 1.5))
        assert session.stop() == [KeyDown(key="B", delay_ms=500)]

    def test_context_manager_always_stops(self, session, hook):
        with pytest.raises(RuntimeError):
            with session.recording(timestamp=0.0):
                hook.emit(key("KeyA", True, 0.1))
                raise RuntimeError("boom")
        assert session.state == RecorderState.IDLE
        assert not hook.running

    def test_callbacks(self, session, hook):
        on_state = MagicMock()
        on_action = MagicMock()
        session.set_callbacks(on_state_change=on_state, on_action=on_action)
        session.start(timestamp=0.0)
        hook.emit(key("KeyA", True, 0.1))
        session.stop()
        on_state.assert_any_call(RecorderState.RECORDING)
        on_state.assert_called_with(RecorderState.IDLE)
        on_action.assert_called_once_with(KeyDown(key="A", delay_ms=100))


class TestPositionCapture:

    def test_f_captures_while_recording(self, session, hook):
        session.start(timestamp=0.0)
        session.arm_position_capture()
        assert hook.emit(key("KeyF", True, 0.2))
        assert hook.emit(key("KeyF", False, 0.25))
        actions = session.stop()
        assert actions == [MouseMove(x=640, y=360, delay_ms=200), MouseClick(button=MouseButton.LEFT)]
        assert not session.is_capture_armed

    def test_escape_cancels(self, session, hook):
        session.start(timestamp=0.0)
        session.arm_position_capture()
        assert hook.emit(key("Escape", True, 0.2))
        hook.emit(key("Escape", False, 0.3))
        assert session.stop() == []
        assert not session.is_capture_armed

    def test_f_recorded_normally_when_not_armed(self, session, hook):
        session.start(timestamp=0.0)
        hook.emit(key("KeyF", True, 0.1))
        assert session.stop() == [KeyDown(key="F", delay_ms=100)]

    def test_capture_when_idle_goes_to_callback(self, session, hook):
        captured = MagicMock()
        session.set_callbacks(on_capture=captured)
        session.arm_position_capture()
        assert hook.running
        hook.emit(key("KeyF", True, 3.0))
        captured.assert_called_once()
        pair = captured.call_args[0][0]
        assert isinstance(pair[0], MouseMove)
        assert (pair[0].x, pair[0].y) == (640, 360)
        assert isinstance(pair[1], MouseClick)
        # Nothing left to listen for
        assert not hook.running

    def test_direct_capture(self, session, cursor):
        cursor.position = (5, 6)
        pair = session.capture_position(button=MouseButton.RIGHT)
        assert pair[0] == MouseMove(x=5, y=6, delay_ms=50)
        assert pair[1].button == MouseButton.RIGHT
        assert session.actions == []


class TestSubscription:

    def test_release_is_idempotent(self, hook):
        sub = InputSubscription(hook, lambda e: None)
        with sub:
            assert hook.running
        sub.release()
        assert hook.stop_calls == 1

    def test_shutdown_releases_hook(self, session, hook):
        session.start(timestamp=0.0)
        session.shutdown()
        assert not hook.running


class TestPynputMapping:

    def test_named_keys(self):
        named = MagicMock()
        named.name = "ctrl_r"
        assert pynput_key_to_physical(named) == "ControlRight"

    def test_char_keys(self):
        char_key = MagicMock(spec=["char", "vk"])
        char_key.char = "a"
        char_key.vk = None
        assert pynput_key_to_physical(char_key) == "a"

    def test_buttons(self):
        btn = MagicMock()
        btn.name = "x2"
        assert pynput_button_to_index(btn) == 4

    def test_raw_event_helpers(self):
        event = RawInputEvent.button_event(2, False, timestamp=1.0)
        assert event.event_type == RawEventType.MOUSE_UP
        assert event.button == MouseButton.RIGHT
