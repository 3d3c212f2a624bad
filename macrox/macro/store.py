"""
Macro persistence interface and the bundled in-memory backend
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional
import base64
import binascii
import json
import threading

from utils.logger import log, log_error
from macrox.macro.models import MacroConfig
from macrox.macro.validation import validate, validate_import

DEFAULT_PROFILE = "Default"


class MacroStoreError(Exception):
    """Raised by store backends when a read or write cannot be completed"""
    pass


# ==================== CODEC ====================

def encode_macro(macro: MacroConfig) -> str:
    """Export blob: base64 of the macro's JSON"""
    payload = json.dumps(macro.to_dict(), ensure_ascii=False)
    return base64.b64encode(payload.encode('utf-8')).decode('ascii')


def decode_payload(blob: str) -> dict:
    """base64 JSON blob to its raw dict; raises MacroStoreError on any malformed input"""
    try:
        payload = base64.b64decode((blob or "").strip(), validate=True).decode('utf-8')
        data = json.loads(payload)
    except (binascii.Error, UnicodeDecodeError, ValueError, TypeError, AttributeError) as e:
        raise MacroStoreError(f"Invalid macro data: {e}") from e
    if not isinstance(data, dict):
        raise MacroStoreError("Invalid macro data: payload is not an object")
    return data


def macro_from_payload(data: dict) -> MacroConfig:
    try:
        return MacroConfig.from_dict(data)
    except (ValueError, TypeError, AttributeError, OverflowError) as e:
        raise MacroStoreError(f"Invalid macro data: {e}") from e


def decode_macro(blob: str) -> MacroConfig:
    """Inverse of encode_macro; raises MacroStoreError on any malformed input"""
    return macro_from_payload(decode_payload(blob))


# ==================== SUBSCRIPTION ====================

class Subscription:
    """Change-notification handle; unsubscribe() is idempotent"""

    def __init__(self, unsubscribe: Callable[[], None]):
        self._unsubscribe = unsubscribe
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self):
        if self._active:
            self._active = False
            self._unsubscribe()

    def __enter__(self) -> 'Subscription':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()
        return False


# ==================== INTERFACE ====================

class IMacroStore(ABC):
    """Storage backend for the active profile's macros"""

    @abstractmethod
    def list_macros(self) -> List[MacroConfig]:
        pass

    @abstractmethod
    def save_macro(self, macro: MacroConfig):
        """Upsert by id. Raises MacroStoreError"""
        pass

    @abstractmethod
    def delete_macro(self, macro_id: str):
        """Raises MacroStoreError"""
        pass

    @abstractmethod
    def export_macro(self, macro: MacroConfig) -> str:
        pass

    @abstractmethod
    def import_macro(self, blob: str) -> MacroConfig:
        """Decode, check import limits and save. Raises MacroStoreError"""
        pass

    @abstractmethod
    def subscribe(self, callback: Callable[[str], None]) -> Subscription:
        """callback(reason) fires when macros change outside the caller's own writes"""
        pass

    def set_active_profile(self, profile: str):
        """Switch the profile that list/save/delete operate on"""
        pass


class InMemoryMacroStore(IMacroStore):
    """Reference backend: profiles held in memory, copies in and out"""

    def __init__(self, macros: Optional[List[MacroConfig]] = None,
                 profile: str = DEFAULT_PROFILE):
        self._lock = threading.Lock()
        self._profiles: Dict[str, Dict[str, MacroConfig]] = {}
        self._profile = profile
        self._subscribers: List[Callable[[str], None]] = []

        for macro in macros or []:
            macro = macro.clone()
            macro.ensure_id()
            self._current()[macro.id] = macro

    @property
    def active_profile(self) -> str:
        return self._profile

    def _current(self) -> Dict[str, MacroConfig]:
        return self._profiles.setdefault(self._profile, {})

    def list_macros(self) -> List[MacroConfig]:
        with self._lock:
            return [m.clone() for m in self._current().values()]

    def save_macro(self, macro: MacroConfig):
        if not macro.id:
            raise MacroStoreError("Cannot save a macro without an id")

        with self._lock:
            macros = self._current()
            others = [m for m in macros.values() if m.id != macro.id]
            stored = macro.clone()
            result = validate(stored, others)
            if not result.success:
                raise MacroStoreError(result.message)
            macros[stored.id] = stored

        log(f"[STORE] Saved macro '{macro.name}' ({macro.id}) in profile '{self._profile}'")

    def delete_macro(self, macro_id: str):
        with self._lock:
            macros = self._current()
            if macro_id not in macros:
                raise MacroStoreError(f"Macro not found: {macro_id}")
            removed = macros.pop(macro_id)

        log(f"[STORE] Deleted macro '{removed.name}' ({macro_id})")

    def export_macro(self, macro: MacroConfig) -> str:
        return encode_macro(macro)

    def import_macro(self, blob: str) -> MacroConfig:
        data = decode_payload(blob)
        macro = macro_from_payload(data)
        problem = validate_import(macro, data)
        if problem:
            log_error(f"[STORE] Import rejected: {problem}")
            raise MacroStoreError(problem)
        self.save_macro(macro)
        self.notify_changed("import")
        return macro.clone()

    def subscribe(self, callback: Callable[[str], None]) -> Subscription:
        with self._lock:
            self._subscribers.append(callback)

        def _remove():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return Subscription(_remove)

    def notify_changed(self, reason: str = "external"):
        """Tell subscribers the macros changed (out-of-band edits, profile switch)"""
        with self._lock:
            subscribers = list(self._subscribers)
        log(f"[STORE] Change notification: {reason}")
        for callback in subscribers:
            callback(reason)

    def set_active_profile(self, profile: str):
        with self._lock:
            if profile == self._profile:
                return
            self._profile = profile
        log(f"[STORE] Active profile: {profile}")
        self.notify_changed("profile")
