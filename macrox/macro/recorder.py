"""
Macro Recorder Engine - Global Input Hooks
Records key and mouse-button events into timed actions
Uses pynput for cross-platform global hooks
"""

from __future__ import annotations
from typing import Optional, List, Callable, Tuple, Iterable, Set
from dataclasses import dataclass
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
import sys
import time
import threading

from utils.logger import log, log_error
from macrox.keys import MouseButton, canonicalize, mouse_button_from_index
from macrox.macro.models import (
    Action, KeyDown, KeyUp, MouseDown, MouseUp, MouseClick, MouseMove,
    MOUSE_BUTTON_ACTIONS
)

CAPTURE_KEY = "F"
CANCEL_KEY = "ESC"
CAPTURE_DELAY_MS = 50  # MouseMove delay for a capture made outside a recording
MAX_TRAILING_CLICK_ACTIONS = 2


# ==================== RAW EVENT TYPES ====================

class RawEventType(Enum):
    KEY_DOWN = "key_down"
    KEY_UP = "key_up"
    MOUSE_DOWN = "mouse_down"
    MOUSE_UP = "mouse_up"


@dataclass
class RawInputEvent:
    """Raw input event from global hooks or from the UI"""
    event_type: RawEventType
    timestamp: float  # Seconds, monotonic (time.perf_counter())

    # Keyboard data: physical id ("KeyQ", "Digit1", "ShiftLeft"...)
    key: Optional[str] = None

    # Mouse data
    button: Optional[MouseButton] = None

    # UI element the event landed on, if known (stop button, record button...)
    target: Optional[str] = None

    @staticmethod
    def key_event(key: str, pressed: bool, timestamp: Optional[float] = None,
                  target: Optional[str] = None) -> 'RawInputEvent':
        return RawInputEvent(
            event_type=RawEventType.KEY_DOWN if pressed else RawEventType.KEY_UP,
            timestamp=time.perf_counter() if timestamp is None else timestamp,
            key=key,
            target=target
        )

    @staticmethod
    def button_event(button_index: int, pressed: bool, timestamp: Optional[float] = None,
                     target: Optional[str] = None) -> 'RawInputEvent':
        return RawInputEvent(
            event_type=RawEventType.MOUSE_DOWN if pressed else RawEventType.MOUSE_UP,
            timestamp=time.perf_counter() if timestamp is None else timestamp,
            button=mouse_button_from_index(button_index),
            target=target
        )


# ==================== INPUT HOOK INTERFACE ====================

class IInputHook(ABC):
    """Abstract interface for input hooks (swappable implementation)"""

    @abstractmethod
    def start(self, callback: Callable[[RawInputEvent], None]):
        """Start listening for input events"""
        pass

    @abstractmethod
    def stop(self):
        """Stop listening"""
        pass

    @abstractmethod
    def is_running(self) -> bool:
        """Check if hook is active"""
        pass


class ICursorProvider(ABC):

    @abstractmethod
    def get_cursor_position(self) -> Tuple[int, int]:
        """Current pointer position in screen coordinates"""
        pass


# pynput Key names -> physical ids
_PYNPUT_KEY_CODES = {
    'alt': 'AltLeft', 'alt_l': 'AltLeft', 'alt_r': 'AltRight', 'alt_gr': 'AltRight',
    'backspace': 'Backspace', 'caps_lock': 'CapsLock',
    'cmd': 'MetaLeft', 'cmd_l': 'MetaLeft', 'cmd_r': 'MetaRight',
    'ctrl': 'ControlLeft', 'ctrl_l': 'ControlLeft', 'ctrl_r': 'ControlRight',
    'delete': 'Delete', 'end': 'End', 'enter': 'Enter', 'esc': 'Escape',
    'home': 'Home', 'insert': 'Insert', 'menu': 'ContextMenu',
    'num_lock': 'NumLock', 'page_down': 'PageDown', 'page_up': 'PageUp',
    'pause': 'Pause', 'print_screen': 'PrintScreen', 'scroll_lock': 'ScrollLock',
    'shift': 'ShiftLeft', 'shift_l': 'ShiftLeft', 'shift_r': 'ShiftRight',
    'space': 'Space', 'tab': 'Tab',
    'up': 'ArrowUp', 'down': 'ArrowDown', 'left': 'ArrowLeft', 'right': 'ArrowRight',
}
_PYNPUT_KEY_CODES.update({f"f{n}": f"F{n}" for n in range(1, 25)})

# pynput Button names -> platform button index
_PYNPUT_BUTTON_INDEX = {'left': 0, 'middle': 1, 'right': 2, 'x1': 3, 'x2': 4}


def pynput_key_to_physical(key) -> str:
    """Convert a pynput Key/KeyCode to a physical id"""
    name = getattr(key, 'name', None)
    if name:
        return _PYNPUT_KEY_CODES.get(name, name)

    # Virtual-key codes are only layout independent on Windows
    vk = getattr(key, 'vk', None)
    if vk is not None and sys.platform == 'win32':
        if 0x41 <= vk <= 0x5A:
            return f"Key{chr(vk)}"
        if 0x30 <= vk <= 0x39:
            return f"Digit{chr(vk)}"
        if 0x60 <= vk <= 0x69:
            return f"Numpad{vk - 0x60}"

    char = getattr(key, 'char', None)
    if char:
        return char
    return str(key).replace('Key.', '')


def pynput_button_to_index(button) -> int:
    name = getattr(button, 'name', str(button).replace('Button.', ''))
    return _PYNPUT_BUTTON_INDEX.get(name, 0)


class PynputInputHook(IInputHook):
    """Global key and mouse-button hook using pynput library"""

    def __init__(self, target_resolver: Optional[Callable[[int, int], Optional[str]]] = None):
        """
        Args:
            target_resolver: maps a click's screen position to the name of the
                             UI element under it, so the session can drop clicks
                             on its own controls
        """
        self._target_resolver = target_resolver
        self._callback: Optional[Callable[[RawInputEvent], None]] = None
        self._running = False

        self._mouse_listener = None
        self._keyboard_listener = None

    def start(self, callback: Callable[[RawInputEvent], None]):
        """Start listening for input events"""
        if self._running:
            return

        self._callback = callback
        self._running = True

        try:
            from pynput import mouse, keyboard

            self._mouse_listener = mouse.Listener(on_click=self._on_mouse_click)
            self._mouse_listener.start()

            self._keyboard_listener = keyboard.Listener(
                on_press=self._on_key_press,
                on_release=self._on_key_release
            )
            self._keyboard_listener.start()

            log("[RECORDER] PynputInputHook started")

        except ImportError:
            log_error("[RECORDER] ERROR: pynput not installed. Install with: pip install pynput")
            self._running = False
            raise

    def stop(self):
        """Stop listening"""
        if not self._running:
            return

        self._running = False

        if self._mouse_listener:
            self._mouse_listener.stop()
            self._mouse_listener = None

        if self._keyboard_listener:
            self._keyboard_listener.stop()
            self._keyboard_listener = None

        log("[RECORDER] PynputInputHook stopped")

    def is_running(self) -> bool:
        return self._running

    def _on_mouse_click(self, x: int, y: int, button, pressed: bool):
        if not self._callback or not self._running:
            return

        target = self._target_resolver(x, y) if self._target_resolver else None
        self._callback(RawInputEvent.button_event(
            pynput_button_to_index(button), pressed, target=target
        ))

    def _on_key_press(self, key):
        if not self._callback or not self._running:
            return
        self._callback(RawInputEvent.key_event(pynput_key_to_physical(key), True))

    def _on_key_release(self, key):
        if not self._callback or not self._running:
            return
        self._callback(RawInputEvent.key_event(pynput_key_to_physical(key), False))


class PynputCursorProvider(ICursorProvider):
    """Reads the pointer through pynput's mouse controller"""

    def __init__(self):
        self._controller = None

    def get_cursor_position(self) -> Tuple[int, int]:
        if self._controller is None:
            from pynput import mouse
            self._controller = mouse.Controller()
        x, y = self._controller.position
        return (int(x), int(y))


# ==================== SUBSCRIPTION ====================

class InputSubscription:
    """Hook handle: acquire starts the hook, release stops it (idempotent)"""

    def __init__(self, hook: IInputHook, callback: Callable[[RawInputEvent], None]):
        self._hook = hook
        self._callback = callback
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def acquire(self) -> 'InputSubscription':
        if not self._active:
            self._hook.start(self._callback)
            self._active = True
        return self

    def release(self):
        if self._active:
            self._active = False
            self._hook.stop()

    def __enter__(self) -> 'InputSubscription':
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


# ==================== RECORDING SESSION ====================

class RecorderState(Enum):
    IDLE = "idle"
    RECORDING = "recording"


class RecordingSession:
    """
    Turns a stream of raw input events into a timed action list.

    Each action's delay is the time since the previous event, in whole
    milliseconds. Events that land on an ignored UI target are dropped but
    still advance the clock.
    """

    def __init__(self,
                 hook: Optional[IInputHook] = None,
                 cursor: Optional[ICursorProvider] = None,
                 ignore_targets: Iterable[str] = (),
                 clock: Callable[[], float] = time.perf_counter):
        self._hook = hook if hook is not None else PynputInputHook()
        self._cursor = cursor if cursor is not None else PynputCursorProvider()
        self._clock = clock
        self._state = RecorderState.IDLE

        self._actions: List[Action] = []
        self._lock = threading.RLock()
        self._ignore_targets: Set[str] = set(ignore_targets)
        # An ignored-target click was dropped since the last recorded action
        self._dropped_target_click = False

        self._start_time: Optional[float] = None
        self._last_event_time: Optional[float] = None
        self._subscription: Optional[InputSubscription] = None

        # Position capture
        self._capture_armed = False
        self._consumed_keys: Set[str] = set()

        # Callbacks
        self._on_state_change: Optional[Callable[[RecorderState], None]] = None
        self._on_action: Optional[Callable[[Action], None]] = None
        self._on_capture: Optional[Callable[[List[Action]], None]] = None

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state == RecorderState.RECORDING

    @property
    def is_capture_armed(self) -> bool:
        return self._capture_armed

    @property
    def actions(self) -> List[Action]:
        with self._lock:
            return list(self._actions)

    @property
    def ignore_targets(self) -> Set[str]:
        return set(self._ignore_targets)

    def set_callbacks(self,
                      on_state_change: Callable[[RecorderState], None] = None,
                      on_action: Callable[[Action], None] = None,
                      on_capture: Callable[[List[Action]], None] = None):
        """
        on_capture receives the MouseMove/MouseClick pair of a position
        capture made while not recording
        """
        self._on_state_change = on_state_change
        self._on_action = on_action
        self._on_capture = on_capture

    def ignore_target(self, target: str):
        self._ignore_targets.add(target)

    def unignore_target(self, target: str):
        self._ignore_targets.discard(target)

    # ==================== LIFECYCLE ====================

    def start(self, timestamp: Optional[float] = None):
        """Start a fresh capture; an active one is stopped first"""
        if self.is_recording:
            log("[RECORDER] Already recording - stopping previous capture")
            self.stop(trim_stop_click=False)

        with self._lock:
            self._actions.clear()
            self._consumed_keys.clear()
            self._dropped_target_click = False
            self._start_time = self._clock() if timestamp is None else timestamp
            self._last_event_time = self._start_time
            self._state = RecorderState.RECORDING

        try:
            self._ensure_subscription()
        except ImportError:
            with self._lock:
                self._state = RecorderState.IDLE
            raise

        self._notify_state()
        log("[RECORDER] Recording started")

    def stop(self, trim_stop_click: bool = True) -> List[Action]:
        """Stop recording and return the captured actions"""
        with self._lock:
            if self._state == RecorderState.IDLE:
                return []
            self._state = RecorderState.IDLE
            # The stop click already fell on an ignored target
            if trim_stop_click and not self._dropped_target_click:
                removed = self._trim_trailing_click()
            else:
                removed = 0
            actions = list(self._actions)

        self._release_subscription_if_unused()
        self._notify_state()
        log(f"[RECORDER] Recording stopped. {len(actions)} actions captured"
            + (f" ({removed} trailing click actions removed)" if removed else ""))
        return actions

    @contextmanager
    def recording(self, timestamp: Optional[float] = None):
        """with session.recording(): ... always ends with stop()"""
        self.start(timestamp)
        try:
            yield self
        finally:
            if self.is_recording:
                self.stop()

    def shutdown(self):
        """Clean shutdown"""
        self.disarm_position_capture()
        self.stop()
        if self._subscription is not None:
            self._subscription.release()
            self._subscription = None

    # ==================== EVENTS ====================

    def handle_event(self, event: RawInputEvent) -> bool:
        """
        Feed one raw event. Returns True if it was recorded or consumed.
        Safe to call from hook threads.
        """
        with self._lock:
            if self._handle_capture_keys(event):
                return True

            if self._state != RecorderState.RECORDING:
                return False

            delay = max(0, round((event.timestamp - self._last_event_time) * 1000))
            self._last_event_time = event.timestamp

            action = self._to_action(event, delay)
            if action is None:
                return False

            if event.target is not None and event.target in self._ignore_targets:
                if isinstance(action, MouseDown):
                    self._dropped_target_click = True
                return False

            self._actions.append(action)
            self._dropped_target_click = False

        if self._on_action:
            self._on_action(action)
        return True

    def _to_action(self, event: RawInputEvent, delay: int) -> Optional[Action]:
        if event.event_type == RawEventType.KEY_DOWN:
            return KeyDown(key=event.key, delay_ms=delay)
        if event.event_type == RawEventType.KEY_UP:
            return KeyUp(key=event.key, delay_ms=delay)
        button = event.button or MouseButton.LEFT
        if event.event_type == RawEventType.MOUSE_DOWN:
            return MouseDown(button=button, delay_ms=delay)
        if event.event_type == RawEventType.MOUSE_UP:
            return MouseUp(button=button, delay_ms=delay)
        return None

    def _trim_trailing_click(self) -> int:
        """Drop the click that stopped the recording (at most one press/release pair)"""
        removed = 0
        while (removed < MAX_TRAILING_CLICK_ACTIONS and self._actions
               and type(self._actions[-1]) in MOUSE_BUTTON_ACTIONS):
            self._actions.pop()
            removed += 1
        return removed

    # ==================== POSITION CAPTURE ====================

    def arm_position_capture(self):
        """Next F press captures the cursor position; Esc cancels"""
        with self._lock:
            self._capture_armed = True
        self._ensure_subscription()
        log("[RECORDER] Position capture armed (F = capture, Esc = cancel)")

    def disarm_position_capture(self):
        with self._lock:
            was_armed = self._capture_armed
            self._capture_armed = False
        if was_armed:
            self._release_subscription_if_unused()
            log("[RECORDER] Position capture cancelled")

    def capture_position(self, button: MouseButton = MouseButton.LEFT,
                         timestamp: Optional[float] = None) -> List[Action]:
        """
        Read the cursor and produce a MouseMove followed by an immediate click.
        While recording the pair is appended to the buffer, otherwise it is
        handed to the on_capture callback.
        """
        x, y = self._cursor.get_cursor_position()

        with self._lock:
            recording = self._state == RecorderState.RECORDING
            if recording:
                now = self._clock() if timestamp is None else timestamp
                delay = max(0, round((now - self._last_event_time) * 1000))
                self._last_event_time = now
            else:
                delay = CAPTURE_DELAY_MS
            captured: List[Action] = [
                MouseMove(x=x, y=y, delay_ms=delay),
                MouseClick(button=button, delay_ms=0),
            ]
            if recording:
                self._actions.extend(captured)
                self._dropped_target_click = False

        log(f"[RECORDER] Captured position ({x}, {y})")
        if not recording and self._on_capture:
            self._on_capture(list(captured))
        return captured

    def _handle_capture_keys(self, event: RawInputEvent) -> bool:
        """Consume F/Esc while capture is armed, and their releases"""
        if event.event_type not in (RawEventType.KEY_DOWN, RawEventType.KEY_UP):
            return False
        key = canonicalize(event.key)

        if event.event_type == RawEventType.KEY_UP:
            if key in self._consumed_keys:
                self._consumed_keys.discard(key)
                return True
            return False

        if not self._capture_armed or key not in (CAPTURE_KEY, CANCEL_KEY):
            return False

        self._consumed_keys.add(key)
        self._capture_armed = False
        if key == CAPTURE_KEY:
            self.capture_position(timestamp=event.timestamp)
        else:
            log("[RECORDER] Position capture cancelled")
        if not self.is_recording:
            self._release_subscription_if_unused()
        return True

    # ==================== INTERNALS ====================

    def _ensure_subscription(self):
        if self._subscription is None:
            self._subscription = InputSubscription(self._hook, self.handle_event)
        self._subscription.acquire()

    def _release_subscription_if_unused(self):
        if self._subscription is None or self.is_recording or self._capture_armed:
            return
        self._subscription.release()

    def _notify_state(self):
        if self._on_state_change:
            self._on_state_change(self._state)
