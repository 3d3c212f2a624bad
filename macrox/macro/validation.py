"""
Macro validation and the error taxonomy shared by every macro operation
"""

from enum import Enum
from typing import Iterable, Optional
from dataclasses import dataclass

from macrox.macro.models import MacroConfig
from macrox.macro.execution import validate_execution

FORBIDDEN_NAME_CHARS = '<>:"/\\|?*'

# Import limits
MAX_IMPORT_ACTIONS = 1000
MAX_IMPORT_DELAY_MS = 30000


class ErrorCategory(Enum):
    VALIDATION = "validation"
    PERSISTENCE = "persistence"
    BINDING = "binding"


class MacroError(Enum):
    # Validation
    EMPTY_FIELDS = "empty_fields"
    ILLEGAL_CHARACTERS = "invalid_chars"
    DUPLICATE_NAME = "duplicate_name"
    INVALID_MODE_PARAMETERS = "invalid_mode_parameters"
    # Persistence
    SAVE_FAILED = "save_failed"
    DELETE_FAILED = "delete_failed"
    IMPORT_FAILED = "import_failed"
    # Binding
    MACRO_NOT_FOUND = "macro_not_found"
    TRIGGER_OCCUPIED = "trigger_occupied"

    @property
    def category(self) -> ErrorCategory:
        return _ERROR_CATEGORIES[self]


_ERROR_CATEGORIES = {
    MacroError.EMPTY_FIELDS: ErrorCategory.VALIDATION,
    MacroError.ILLEGAL_CHARACTERS: ErrorCategory.VALIDATION,
    MacroError.DUPLICATE_NAME: ErrorCategory.VALIDATION,
    MacroError.INVALID_MODE_PARAMETERS: ErrorCategory.VALIDATION,
    MacroError.SAVE_FAILED: ErrorCategory.PERSISTENCE,
    MacroError.DELETE_FAILED: ErrorCategory.PERSISTENCE,
    MacroError.IMPORT_FAILED: ErrorCategory.PERSISTENCE,
    MacroError.MACRO_NOT_FOUND: ErrorCategory.BINDING,
    MacroError.TRIGGER_OCCUPIED: ErrorCategory.BINDING,
}


@dataclass
class MacroResult:
    """Outcome of a macro operation; error is None on success"""
    success: bool
    error: Optional[MacroError] = None
    message: str = ""
    macro: Optional[MacroConfig] = None

    @staticmethod
    def ok(macro: Optional[MacroConfig] = None, message: str = "") -> 'MacroResult':
        return MacroResult(success=True, macro=macro, message=message)

    @staticmethod
    def fail(error: MacroError, message: str = "") -> 'MacroResult':
        return MacroResult(success=False, error=error, message=message)

    def __bool__(self) -> bool:
        return self.success


def _normalized_name(name: str) -> str:
    return (name or "").strip().lower()


def has_forbidden_chars(name: str) -> bool:
    return any(c in FORBIDDEN_NAME_CHARS for c in name)


def find_duplicate_name(name: str, existing: Iterable[MacroConfig],
                        exclude_id: Optional[str] = None) -> Optional[MacroConfig]:
    """Case-insensitive, whitespace-trimmed name clash with another macro"""
    wanted = _normalized_name(name)
    for macro in existing:
        if exclude_id is not None and macro.id == exclude_id:
            continue
        if _normalized_name(macro.name) == wanted:
            return macro
    return None


def validate(candidate: MacroConfig, existing: Iterable[MacroConfig]) -> MacroResult:
    """
    Validate a macro against the saved set.

    Checks run in a fixed order and the first failure wins:
    empty name, forbidden characters, duplicate name, empty action list,
    then the execution-mode parameters. On success the candidate gets an
    id if it has none; id and trigger are otherwise left as they are.
    """
    name = (candidate.name or "").strip()
    if not name:
        return MacroResult.fail(MacroError.EMPTY_FIELDS, "Macro name is empty")

    if has_forbidden_chars(name):
        return MacroResult.fail(
            MacroError.ILLEGAL_CHARACTERS,
            f"Name cannot contain any of: {' '.join(FORBIDDEN_NAME_CHARS)}"
        )

    clash = find_duplicate_name(name, existing, exclude_id=candidate.id)
    if clash is not None:
        return MacroResult.fail(
            MacroError.DUPLICATE_NAME,
            f"A macro named '{clash.name}' already exists"
        )

    if not candidate.actions:
        return MacroResult.fail(MacroError.EMPTY_FIELDS, "Macro has no actions")

    problem = validate_execution(candidate.mode, candidate.repeat_count,
                                 candidate.repeat_delay_ms)
    if problem:
        return MacroResult.fail(MacroError.INVALID_MODE_PARAMETERS, problem)

    candidate.ensure_id()
    return MacroResult.ok(candidate)


def validate_import(macro: MacroConfig, data: Optional[dict] = None) -> Optional[str]:
    """
    Return a reason the imported macro is rejected, or None if it is acceptable.
    data is the decoded payload; its raw trigger key is checked before
    canonicalization maps an empty key to UNASSIGNED.
    """
    if not macro.id:
        return "Imported macro has no id"
    if not (macro.name or "").strip():
        return "Imported macro has no name"
    if data is not None:
        trigger = data.get("trigger")
        raw_key = trigger.get("key") if isinstance(trigger, dict) else None
        if not isinstance(raw_key, str) or not raw_key.strip():
            return "Imported macro has no trigger key"
    elif not macro.trigger.key:
        return "Imported macro has no trigger key"
    if not macro.actions:
        return "Imported macro has no actions"
    if len(macro.actions) > MAX_IMPORT_ACTIONS:
        return f"Too many actions ({len(macro.actions)} > {MAX_IMPORT_ACTIONS})"
    for index, action in enumerate(macro.actions):
        if action.delay_ms > MAX_IMPORT_DELAY_MS:
            return f"Action {index + 1} delay {action.delay_ms}ms exceeds {MAX_IMPORT_DELAY_MS}ms"
    return None
