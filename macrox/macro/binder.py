"""
Trigger binding - attaches a macro to a physical trigger.
A macro without a trigger is rebound in place; a bound macro is cloned onto
the new trigger so the original binding keeps working.
"""

from typing import Callable, Dict, Iterable, List, Optional, Union
from dataclasses import dataclass

from utils.logger import log
from macrox.macro.models import MacroConfig, Trigger, new_macro_id
from macrox.macro.validation import FORBIDDEN_NAME_CHARS, find_duplicate_name

# Spelled-out names for trigger keys that cannot appear in a macro name
_KEY_NAME_WORDS = {
    "<": "Less",
    ">": "Greater",
    ":": "Colon",
    "\"": "Quote",
    "/": "Slash",
    "\\": "Backslash",
    "|": "Pipe",
    "?": "Question",
    "*": "Asterisk",
}


@dataclass
class BindResult:
    updated: MacroConfig
    cloned: bool
    conflict: Optional[MacroConfig] = None  # Other macro already on the target trigger
    previous_trigger: Optional[Trigger] = None

    @property
    def changed(self) -> bool:
        return self.cloned or self.updated.trigger != self.previous_trigger


def name_suffix(key: str) -> str:
    """Trigger key as it may appear in a macro name"""
    if key in _KEY_NAME_WORDS:
        return _KEY_NAME_WORDS[key]
    return "".join(c for c in key if c not in FORBIDDEN_NAME_CHARS)


def unique_name(base: str, macros: Iterable[MacroConfig]) -> str:
    """base, or base with a counter when that name is already taken"""
    macros = list(macros)
    candidate = base
    counter = 2
    while find_duplicate_name(candidate, macros) is not None:
        candidate = f"{base} {counter}"
        counter += 1
    return candidate


def find_by_trigger(trigger: Trigger, macros: Iterable[MacroConfig],
                    exclude_id: Optional[str] = None) -> Optional[MacroConfig]:
    """The macro bound to an assigned trigger, if any"""
    if not trigger.is_assigned:
        return None
    for macro in macros:
        if macro.id == exclude_id:
            continue
        if macro.trigger == trigger:
            return macro
    return None


def index_by_trigger(macros: Iterable[MacroConfig]) -> Dict[Trigger, List[MacroConfig]]:
    """Assigned triggers to their macros; more than one entry means a conflict"""
    index: Dict[Trigger, List[MacroConfig]] = {}
    for macro in macros:
        if macro.trigger.is_assigned:
            index.setdefault(macro.trigger, []).append(macro)
    return index


class TriggerBinder:
    """Computes bindings; the caller persists BindResult.updated"""

    def __init__(self, id_factory: Callable[[], str] = new_macro_id):
        self._id_factory = id_factory

    def bind(self, macro_id: str, target: Union[Trigger, str],
             macros: Iterable[MacroConfig]) -> Optional[BindResult]:
        """
        Bind macro_id to target. Returns None (logged) when the id is unknown.
        The source macro in `macros` is never modified.
        """
        macros = list(macros)
        if not isinstance(target, Trigger):
            target = Trigger.for_key(target)

        source = next((m for m in macros if m.id == macro_id), None)
        if source is None:
            log(f"[BINDER] Macro not found: {macro_id}")
            return None

        conflict = find_by_trigger(target, macros, exclude_id=source.id)
        if conflict is not None:
            log(f"[BINDER] Trigger {target.key} already used by '{conflict.name}'")

        if not source.trigger.is_assigned:
            updated = source.clone(trigger=target)
            log(f"[BINDER] Bound '{source.name}' to {target.key}")
            return BindResult(updated, cloned=False, conflict=conflict,
                              previous_trigger=source.trigger)

        if source.trigger == target:
            return BindResult(source.clone(), cloned=False, conflict=conflict,
                              previous_trigger=source.trigger)

        name = unique_name(f"{source.name.strip()} ({name_suffix(target.key)})", macros)
        updated = source.clone(id=self._id_factory(), name=name, trigger=target)
        log(f"[BINDER] Cloned '{source.name}' ({source.trigger.key}) -> '{name}' ({target.key})")
        return BindResult(updated, cloned=True, conflict=conflict,
                          previous_trigger=source.trigger)
