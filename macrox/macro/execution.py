"""
Execution mode contract - how a bound macro replays once its trigger fires.
Replay itself lives in the executor; this module decides passes, delays
and the start/stop decisions for trigger presses and releases.
"""

from enum import Enum
from typing import Optional, Set
from dataclasses import dataclass
import numbers

from macrox.macro.models import ExecutionMode, MacroConfig

REPEAT_COUNT_MIN = 1
REPEAT_COUNT_MAX = 99
DEFAULT_REPEAT_COUNT = 1
LOOP_DELAY_MS = 10  # Pause between hold/toggle passes when none is configured


def _is_int(value) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def mode_uses_repeat_count(mode: ExecutionMode) -> bool:
    return mode == ExecutionMode.REPEAT


def mode_uses_repeat_delay(mode: ExecutionMode) -> bool:
    return mode != ExecutionMode.ONCE


def validate_execution(mode: ExecutionMode, repeat_count: Optional[int],
                       repeat_delay_ms: Optional[int]) -> Optional[str]:
    """Return a problem description, or None when the parameters fit the mode"""
    if not isinstance(mode, ExecutionMode):
        return f"Unknown execution mode: {mode!r}"

    if mode_uses_repeat_count(mode) and repeat_count is not None:
        if not _is_int(repeat_count):
            return "Repeat count must be a whole number"
        if not REPEAT_COUNT_MIN <= repeat_count <= REPEAT_COUNT_MAX:
            return f"Repeat count must be between {REPEAT_COUNT_MIN} and {REPEAT_COUNT_MAX}"

    if mode_uses_repeat_delay(mode) and repeat_delay_ms is not None:
        if not _is_int(repeat_delay_ms):
            return "Repeat delay must be a whole number of milliseconds"
        if repeat_delay_ms < 0:
            return "Repeat delay cannot be negative"

    return None


def normalize_execution(macro: MacroConfig) -> MacroConfig:
    """Clear the parameters the macro's mode ignores (in place)"""
    if mode_uses_repeat_count(macro.mode):
        if macro.repeat_count is None:
            macro.repeat_count = DEFAULT_REPEAT_COUNT
    else:
        macro.repeat_count = None

    if not mode_uses_repeat_delay(macro.mode):
        macro.repeat_delay_ms = None
    return macro


@dataclass(frozen=True)
class ExecutionPlan:
    """Passes and inter-pass delay; passes is None for hold/toggle (until stopped)"""
    mode: ExecutionMode
    passes: Optional[int]
    repeat_delay_ms: int

    @staticmethod
    def for_macro(macro: MacroConfig) -> 'ExecutionPlan':
        mode = macro.mode
        if mode == ExecutionMode.ONCE:
            return ExecutionPlan(mode, 1, 0)
        if mode == ExecutionMode.REPEAT:
            return ExecutionPlan(
                mode,
                macro.repeat_count or DEFAULT_REPEAT_COUNT,
                macro.repeat_delay_ms or 0
            )
        delay = macro.repeat_delay_ms if macro.repeat_delay_ms is not None else LOOP_DELAY_MS
        return ExecutionPlan(mode, None, delay)

    @property
    def is_bounded(self) -> bool:
        return self.passes is not None

    def should_continue(self, completed_passes: int) -> bool:
        """Whether another pass runs after completed_passes (stop requests aside)"""
        return self.passes is None or completed_passes < self.passes


class PlaybackCommand(Enum):
    START = "start"
    STOP = "stop"
    NONE = "none"


@dataclass(frozen=True)
class ActivationDecision:
    command: PlaybackCommand
    swallow: bool  # Trigger event is consumed instead of reaching other apps


class ActivationTracker:
    """
    Turns trigger presses/releases into executor commands.

    once/repeat start a fresh run on every press and let the key through.
    toggle flips the macro between running and stopped on each press.
    hold runs from press to release; auto-repeated presses are ignored.
    hold and toggle swallow the press.
    """

    def __init__(self):
        self._active: Set[str] = set()

    def on_press(self, macro: MacroConfig) -> ActivationDecision:
        if macro.mode in (ExecutionMode.ONCE, ExecutionMode.REPEAT):
            return ActivationDecision(PlaybackCommand.START, swallow=False)

        if macro.mode == ExecutionMode.TOGGLE:
            if macro.id in self._active:
                self._active.discard(macro.id)
                return ActivationDecision(PlaybackCommand.STOP, swallow=True)
            self._active.add(macro.id)
            return ActivationDecision(PlaybackCommand.START, swallow=True)

        # HOLD
        if macro.id in self._active:
            return ActivationDecision(PlaybackCommand.NONE, swallow=True)
        self._active.add(macro.id)
        return ActivationDecision(PlaybackCommand.START, swallow=True)

    def on_release(self, macro: MacroConfig) -> ActivationDecision:
        if macro.mode == ExecutionMode.HOLD and macro.id in self._active:
            self._active.discard(macro.id)
            return ActivationDecision(PlaybackCommand.STOP, swallow=False)
        return ActivationDecision(PlaybackCommand.NONE, swallow=False)

    def is_active(self, macro_id: str) -> bool:
        return macro_id in self._active

    @property
    def active_ids(self) -> Set[str]:
        return set(self._active)

    def reset(self):
        self._active.clear()
