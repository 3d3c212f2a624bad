"""
Application settings, their store and the debounced writer
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union
import copy
import threading

from utils.logger import log, log_error
from macrox.keys import DEFAULT_LAYOUT, KeyboardLayout

SAVE_DEBOUNCE_S = 1.0
DEFAULT_PROFILE = "Default"


class TimeUnit(Enum):
    MS = "ms"
    S = "s"
    M = "m"

    @staticmethod
    def parse(value: Union['TimeUnit', str, None]) -> 'TimeUnit':
        if isinstance(value, TimeUnit):
            return value
        try:
            return TimeUnit(str(value).lower())
        except ValueError:
            return TimeUnit.MS


_UNIT_MS = {
    TimeUnit.MS: 1,
    TimeUnit.S: 1000,
    TimeUnit.M: 60000,
}


def convert_from_ms(ms: int, unit: Union[TimeUnit, str]) -> float:
    """Display value for a stored millisecond delay (3 decimals for s/m)"""
    unit = TimeUnit.parse(unit)
    if unit == TimeUnit.MS:
        return ms
    return round(ms / _UNIT_MS[unit], 3)


def convert_to_ms(value: float, unit: Union[TimeUnit, str]) -> int:
    """Stored millisecond delay for a value typed in the display unit"""
    unit = TimeUnit.parse(unit)
    return max(0, int(round(float(value) * _UNIT_MS[unit])))


@dataclass
class AppSettings:
    language: str = "en"
    theme: str = "dark"
    keyboard_layout: KeyboardLayout = DEFAULT_LAYOUT
    time_unit: TimeUnit = TimeUnit.MS
    active_profile: str = DEFAULT_PROFILE
    debug_mode: bool = True
    file_logging: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)  # Keys this version does not know

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({
            "language": self.language,
            "theme": self.theme,
            "keyboard_layout": self.keyboard_layout.value,
            "time_unit": self.time_unit.value,
            "active_profile": self.active_profile,
            "debug_mode": self.debug_mode,
            "file_logging": self.file_logging
        })
        return data

    @staticmethod
    def from_dict(data: dict) -> 'AppSettings':
        known = {"language", "theme", "keyboard_layout", "time_unit", "active_profile",
                 "debug_mode", "file_logging"}
        return AppSettings(
            language=data.get("language", "en"),
            theme=data.get("theme", "dark"),
            keyboard_layout=KeyboardLayout.parse(data.get("keyboard_layout")),
            time_unit=TimeUnit.parse(data.get("time_unit", "ms")),
            active_profile=data.get("active_profile") or DEFAULT_PROFILE,
            debug_mode=bool(data.get("debug_mode", True)),
            file_logging=bool(data.get("file_logging", False)),
            extra={k: v for k, v in data.items() if k not in known}
        )

    def merged(self, changes: Dict[str, Any]) -> 'AppSettings':
        """New settings with the given keys replaced"""
        data = self.to_dict()
        data.update(changes)
        for key in ("keyboard_layout", "time_unit"):
            if isinstance(data.get(key), Enum):
                data[key] = data[key].value
        return AppSettings.from_dict(data)


class ISettingsStore(ABC):

    @abstractmethod
    def load_settings(self) -> dict:
        pass

    @abstractmethod
    def save_settings(self, settings: dict):
        """Persist the full settings dict"""
        pass


class InMemorySettingsStore(ISettingsStore):

    def __init__(self, initial: Optional[dict] = None):
        self._data = dict(initial or {})
        self.save_count = 0

    def load_settings(self) -> dict:
        return copy.deepcopy(self._data)

    def save_settings(self, settings: dict):
        self._data = copy.deepcopy(settings)
        self.save_count += 1


class SettingsDebouncer:
    """
    Batches settings writes: changes merge into one pending dict that is
    written after `delay` seconds without further changes, or on flush().
    """

    def __init__(self, write: Callable[[dict], None], delay: float = SAVE_DEBOUNCE_S):
        self._write = write
        self._delay = delay
        self._pending: Dict[str, Any] = {}
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._pending)

    def submit(self, changes: Dict[str, Any]):
        """Merge changes and restart the quiet-period timer"""
        with self._lock:
            self._pending.update(changes)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> bool:
        """Write pending changes now. Returns True if something was written"""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            pending, self._pending = self._pending, {}

        if not pending:
            return False
        try:
            self._write(pending)
        except Exception as e:
            log_error(f"[SETTINGS] Save failed: {e}")
            with self._lock:
                # Keep the failed batch; newer changes win
                merged = dict(pending)
                merged.update(self._pending)
                self._pending = merged
            raise
        log(f"[SETTINGS] Saved {', '.join(sorted(pending))}")
        return True

    def cancel(self):
        """Drop pending changes without writing"""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = {}


