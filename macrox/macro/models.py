"""
Macro Data Models
Defines the timed action kinds, triggers and the macro container
"""

from enum import Enum
from typing import List, Optional, Dict, Any, ClassVar, Type, Union
from dataclasses import dataclass, field, replace
import copy
import uuid

from macrox.keys import (
    UNASSIGNED, DEFAULT_LAYOUT, DeviceType, KeyboardLayout, MouseButton,
    canonicalize, label, trigger_device
)


def new_macro_id() -> str:
    return str(uuid.uuid4())


# ==================== ENUMS ====================

class ActionType(Enum):
    KEY_DOWN = "key_down"
    KEY_UP = "key_up"
    MOUSE_DOWN = "mouse_down"
    MOUSE_UP = "mouse_up"
    MOUSE_CLICK = "mouse_click"
    MOUSE_MOVE = "mouse_move"


class ExecutionMode(Enum):
    ONCE = "once"
    HOLD = "hold"
    TOGGLE = "toggle"
    REPEAT = "repeat"


_BUTTON_NAMES = {
    MouseButton.LEFT: "Left",
    MouseButton.RIGHT: "Right",
    MouseButton.MIDDLE: "Middle",
    MouseButton.BACK: "Back",
    MouseButton.FORWARD: "Forward",
}


def _parse_button(value: Any) -> MouseButton:
    if isinstance(value, MouseButton):
        return value
    try:
        return MouseButton(str(value).lower())
    except ValueError:
        return MouseButton.LEFT


def _clamp_ms(value: Any) -> int:
    """Delays are whole milliseconds, never negative"""
    return max(0, int(round(float(value or 0))))


# ==================== BASE ACTION ====================

@dataclass
class Action:
    """Base class for all actions; delay_ms is the wait before this action runs"""
    type: ClassVar[ActionType]
    delay_ms: int = 0

    def __post_init__(self):
        self.delay_ms = _clamp_ms(self.delay_ms)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "delay_ms": self.delay_ms
        }

    @staticmethod
    def from_dict(data: dict) -> 'Action':
        """Factory method to create the action subclass named by the type tag"""
        try:
            action_type = ActionType(data.get("type"))
        except ValueError:
            raise ValueError(f"Unknown action type: {data.get('type')!r}")
        return ACTION_CLASSES[action_type].from_dict_impl(data)

    @classmethod
    def from_dict_impl(cls, data: dict) -> 'Action':
        raise NotImplementedError

    def with_delay(self, delay_ms: int) -> 'Action':
        return replace(self, delay_ms=delay_ms)

    def get_summary(self, layout: Union[KeyboardLayout, str] = DEFAULT_LAYOUT) -> str:
        """Get human-readable summary for UI display"""
        return f"{self.type.value} (+{self.delay_ms}ms)"


# ==================== KEYBOARD ACTIONS ====================

@dataclass
class KeyDown(Action):
    type: ClassVar[ActionType] = ActionType.KEY_DOWN
    key: str = ""

    def __post_init__(self):
        super().__post_init__()
        self.key = canonicalize(self.key)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["value"] = self.key
        return data

    @classmethod
    def from_dict_impl(cls, data: dict) -> 'KeyDown':
        return cls(
            key=data.get("value", data.get("key", "")),
            delay_ms=data.get("delay_ms", 0)
        )

    def get_summary(self, layout: Union[KeyboardLayout, str] = DEFAULT_LAYOUT) -> str:
        return f"Press key {label(self.key, layout)}"


@dataclass
class KeyUp(KeyDown):
    type: ClassVar[ActionType] = ActionType.KEY_UP

    def get_summary(self, layout: Union[KeyboardLayout, str] = DEFAULT_LAYOUT) -> str:
        return f"Release key {label(self.key, layout)}"


# ==================== MOUSE ACTIONS ====================

@dataclass
class MouseDown(Action):
    type: ClassVar[ActionType] = ActionType.MOUSE_DOWN
    button: MouseButton = MouseButton.LEFT

    def __post_init__(self):
        super().__post_init__()
        self.button = _parse_button(self.button)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["button"] = self.button.value
        return data

    @classmethod
    def from_dict_impl(cls, data: dict) -> 'MouseDown':
        return cls(
            button=_parse_button(data.get("button", "left")),
            delay_ms=data.get("delay_ms", 0)
        )

    def get_summary(self, layout: Union[KeyboardLayout, str] = DEFAULT_LAYOUT) -> str:
        return f"Press {_BUTTON_NAMES[self.button]} button"


@dataclass
class MouseUp(MouseDown):
    type: ClassVar[ActionType] = ActionType.MOUSE_UP

    def get_summary(self, layout: Union[KeyboardLayout, str] = DEFAULT_LAYOUT) -> str:
        return f"Release {_BUTTON_NAMES[self.button]} button"


@dataclass
class MouseClick(MouseDown):
    type: ClassVar[ActionType] = ActionType.MOUSE_CLICK
    duration_ms: Optional[int] = None  # Hold time between press and release

    def __post_init__(self):
        super().__post_init__()
        if self.duration_ms is not None:
            self.duration_ms = _clamp_ms(self.duration_ms)

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.duration_ms is not None:
            data["duration_ms"] = self.duration_ms
        return data

    @classmethod
    def from_dict_impl(cls, data: dict) -> 'MouseClick':
        return cls(
            button=_parse_button(data.get("button", "left")),
            delay_ms=data.get("delay_ms", 0),
            duration_ms=data.get("duration_ms")
        )

    def get_summary(self, layout: Union[KeyboardLayout, str] = DEFAULT_LAYOUT) -> str:
        return f"{_BUTTON_NAMES[self.button]} click"


@dataclass
class MouseMove(Action):
    type: ClassVar[ActionType] = ActionType.MOUSE_MOVE
    x: int = 0
    y: int = 0

    def __post_init__(self):
        super().__post_init__()
        self.x = int(self.x)
        self.y = int(self.y)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "x": self.x,
            "y": self.y
        })
        return data

    @classmethod
    def from_dict_impl(cls, data: dict) -> 'MouseMove':
        return cls(
            x=data.get("x", 0),
            y=data.get("y", 0),
            delay_ms=data.get("delay_ms", 0)
        )

    def get_summary(self, layout: Union[KeyboardLayout, str] = DEFAULT_LAYOUT) -> str:
        return f"Move to ({self.x}, {self.y})"


ACTION_CLASSES: Dict[ActionType, Type[Action]] = {
    ActionType.KEY_DOWN: KeyDown,
    ActionType.KEY_UP: KeyUp,
    ActionType.MOUSE_DOWN: MouseDown,
    ActionType.MOUSE_UP: MouseUp,
    ActionType.MOUSE_CLICK: MouseClick,
    ActionType.MOUSE_MOVE: MouseMove,
}

# Exact types; MouseClick is not a press/release
MOUSE_BUTTON_ACTIONS = (MouseDown, MouseUp)


# ==================== TRIGGER ====================

@dataclass(frozen=True)
class Trigger:
    """Physical input that activates a macro"""
    device: DeviceType = DeviceType.KEYBOARD
    key: str = UNASSIGNED

    @staticmethod
    def for_key(key: str) -> 'Trigger':
        """Canonical trigger for a physical or canonical key id"""
        canonical = canonicalize(key) or UNASSIGNED
        if canonical == UNASSIGNED:
            return Trigger.unassigned()
        return Trigger(device=trigger_device(canonical), key=canonical)

    @staticmethod
    def unassigned() -> 'Trigger':
        return Trigger(device=DeviceType.KEYBOARD, key=UNASSIGNED)

    @property
    def is_assigned(self) -> bool:
        return self.key != UNASSIGNED

    def to_dict(self) -> dict:
        return {
            "device": self.device.value,
            "key": self.key
        }

    @staticmethod
    def from_dict(data: dict) -> 'Trigger':
        trigger = Trigger.for_key(data.get("key", UNASSIGNED))
        if not trigger.is_assigned:
            return trigger
        try:
            device = DeviceType(data.get("device", trigger.device.value))
        except ValueError:
            device = trigger.device
        return Trigger(device=device, key=trigger.key)

    def __str__(self) -> str:
        return self.key


# ==================== MACRO ====================

@dataclass
class MacroConfig:
    """A named action sequence bound to a trigger; id is None until first save"""
    id: Optional[str] = None
    name: str = ""
    trigger: Trigger = field(default_factory=Trigger.unassigned)
    mode: ExecutionMode = ExecutionMode.ONCE
    repeat_count: Optional[int] = None
    repeat_delay_ms: Optional[int] = None
    actions: List[Action] = field(default_factory=list)

    @staticmethod
    def for_trigger(trigger: Trigger) -> 'MacroConfig':
        """Default in-memory macro for a trigger that has no binding yet"""
        return MacroConfig(name=f"Macro {trigger.key}", trigger=trigger)

    def ensure_id(self) -> str:
        """Assign a permanent identity only if none exists yet"""
        if not self.id:
            self.id = new_macro_id()
        return self.id

    def clone(self, **changes) -> 'MacroConfig':
        """Deep copy (actions included) with optional field changes"""
        return replace(copy.deepcopy(self), **changes)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "trigger": self.trigger.to_dict(),
            "mode": self.mode.value,
            "actions": [a.to_dict() for a in self.actions]
        }
        if self.repeat_count is not None:
            data["repeatCount"] = self.repeat_count
        if self.repeat_delay_ms is not None:
            data["repeatDelayMs"] = self.repeat_delay_ms
        return data

    @staticmethod
    def from_dict(data: dict) -> 'MacroConfig':
        macro_id = data.get("id") or None
        name = data.get("name", "")
        if macro_id is not None and not isinstance(macro_id, str):
            raise TypeError(f"macro id must be a string, got {type(macro_id).__name__}")
        if not isinstance(name, str):
            raise TypeError(f"macro name must be a string, got {type(name).__name__}")
        actions = [Action.from_dict(a) for a in data.get("actions", [])]
        return MacroConfig(
            id=macro_id,
            name=name,
            trigger=Trigger.from_dict(data.get("trigger", {})),
            mode=ExecutionMode(data.get("mode", "once")),
            repeat_count=data.get("repeatCount", data.get("repeat_count")),
            repeat_delay_ms=data.get("repeatDelayMs", data.get("repeat_delay_ms")),
            actions=actions
        )

    def get_duration_ms(self) -> int:
        """Length of one pass: every delay plus click hold times"""
        total = 0
        for action in self.actions:
            total += action.delay_ms
            if isinstance(action, MouseClick) and action.duration_ms:
                total += action.duration_ms
        return total
