"""
Macro Manager - High-level API for macro operations
Coordinates the recording session, the editing draft, trigger binding,
the macro store and the application settings
"""

from __future__ import annotations
from typing import Optional, List, Callable, Dict, Any, Tuple, Union
from dataclasses import dataclass
import threading

from macrox.keys import label as key_label, layout_labels
from macrox.settings import (
    AppSettings, ISettingsStore, InMemorySettingsStore, SettingsDebouncer,
    SAVE_DEBOUNCE_S
)
from .models import Action, ExecutionMode, MacroConfig, Trigger
from .validation import MacroError, MacroResult, validate
from .execution import (
    ActivationDecision, ActivationTracker, ExecutionPlan, normalize_execution
)
from .binder import TriggerBinder, find_by_trigger
from .recorder import (
    IInputHook, ICursorProvider, RawInputEvent, RecorderState, RecordingSession
)
from .store import IMacroStore, InMemoryMacroStore, MacroStoreError, decode_macro

from utils.logger import configure_logging, log, log_error

# UI element names whose clicks are never recorded
STOP_CONTROL = "record_stop_button"
RECORD_CONTROL = "record_button"


@dataclass
class TriggerActivation:
    """What the executor should do for one trigger press/release"""
    macro: MacroConfig
    decision: ActivationDecision
    plan: ExecutionPlan


class MacroManager:
    """
    High-level Macro Manager
    Owns the loaded macros, the macro being edited (the draft) and one
    recording session. Every operation returns a MacroResult instead of raising.
    """

    def __init__(self,
                 store: IMacroStore = None,
                 settings_store: ISettingsStore = None,
                 hook: IInputHook = None,
                 cursor: ICursorProvider = None,
                 binder: TriggerBinder = None,
                 settings_delay: float = SAVE_DEBOUNCE_S,
                 ignore_targets=(STOP_CONTROL, RECORD_CONTROL)):
        self._store = store or InMemoryMacroStore()
        self._settings_store = settings_store or InMemorySettingsStore()
        self._binder = binder or TriggerBinder()
        self._lock = threading.RLock()

        # Settings
        self._settings = AppSettings.from_dict(self._settings_store.load_settings())
        self._debouncer = SettingsDebouncer(self._write_settings, delay=settings_delay)
        self._apply_logging()

        # Recording
        self._session = RecordingSession(hook=hook, cursor=cursor, ignore_targets=ignore_targets)
        self._session.set_callbacks(
            on_state_change=self._handle_recorder_state_change,
            on_capture=self._handle_position_capture
        )
        self._activation = ActivationTracker()

        # State
        self._macros: List[MacroConfig] = []
        self._selected_trigger = Trigger.unassigned()
        self._draft = MacroConfig()

        # Callbacks
        self._on_macros_change: Optional[Callable[[List[MacroConfig]], None]] = None
        self._on_draft_change: Optional[Callable[[MacroConfig], None]] = None
        self._on_recorder_state_change: Optional[Callable[[RecorderState], None]] = None
        self._on_settings_change: Optional[Callable[[AppSettings], None]] = None

        self._store.set_active_profile(self._settings.active_profile)
        self._subscription = self._store.subscribe(self._handle_store_change)
        self.reload()

    # ==================== PROPERTIES ====================

    @property
    def macros(self) -> List[MacroConfig]:
        with self._lock:
            return [m.clone() for m in self._macros]

    @property
    def draft(self) -> MacroConfig:
        """Copy of the macro being edited"""
        with self._lock:
            return self._draft.clone()

    @property
    def selected_trigger(self) -> Trigger:
        return self._selected_trigger

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def is_recording(self) -> bool:
        return self._session.is_recording

    @property
    def recorder_state(self) -> RecorderState:
        return self._session.state

    @property
    def session(self) -> RecordingSession:
        return self._session

    # ==================== CALLBACKS ====================

    def set_callbacks(self,
                      on_macros_change: Callable[[List[MacroConfig]], None] = None,
                      on_draft_change: Callable[[MacroConfig], None] = None,
                      on_recorder_state_change: Callable[[RecorderState], None] = None,
                      on_settings_change: Callable[[AppSettings], None] = None):
        """Set manager callbacks"""
        self._on_macros_change = on_macros_change
        self._on_draft_change = on_draft_change
        self._on_recorder_state_change = on_recorder_state_change
        self._on_settings_change = on_settings_change

    def _handle_recorder_state_change(self, state: RecorderState):
        if self._on_recorder_state_change:
            self._on_recorder_state_change(state)

    def _handle_position_capture(self, actions: List[Action]):
        with self._lock:
            self._draft.actions.extend(actions)
        self._notify_draft()

    def _handle_store_change(self, reason: str):
        """Macros changed outside this manager (import, profile switch, other process)"""
        log(f"[MANAGER] Store changed ({reason}) - reloading")
        if not self._debouncer.has_pending:
            self._settings = AppSettings.from_dict(self._settings_store.load_settings())
            self._apply_logging()
        self.reload()

    def _notify_draft(self):
        if self._on_draft_change:
            self._on_draft_change(self.draft)

    def _notify_macros(self):
        if self._on_macros_change:
            self._on_macros_change(self.macros)

    # ==================== LOADING ====================

    def reload(self) -> bool:
        """Reload macros from the store; on failure the cached list is kept"""
        try:
            macros = self._store.list_macros()
        except MacroStoreError as e:
            log_error(f"[MANAGER] Reload failed: {e}")
            return False

        with self._lock:
            self._macros = macros
        log(f"[MANAGER] Loaded {len(macros)} macros")
        self._notify_macros()
        return True

    def get_macro(self, macro_id: str) -> Optional[MacroConfig]:
        with self._lock:
            for macro in self._macros:
                if macro.id == macro_id:
                    return macro.clone()
        return None

    def macro_for_trigger(self, key: Union[Trigger, str]) -> Optional[MacroConfig]:
        trigger = key if isinstance(key, Trigger) else Trigger.for_key(key)
        with self._lock:
            macro = find_by_trigger(trigger, self._macros)
            return macro.clone() if macro else None

    # ==================== DRAFT ====================

    def select_trigger(self, key: Union[Trigger, str]) -> MacroConfig:
        """
        Select a key or mouse button for editing. Loads the macro bound to it,
        or starts a default one named after the trigger.
        """
        if self.is_recording:
            self.stop_recording()

        trigger = key if isinstance(key, Trigger) else Trigger.for_key(key)
        with self._lock:
            self._selected_trigger = trigger
            existing = find_by_trigger(trigger, self._macros)
            if existing is not None:
                self._draft = existing.clone()
            elif trigger.is_assigned:
                self._draft = MacroConfig.for_trigger(trigger)
            else:
                self._draft = MacroConfig()
        self._notify_draft()
        return self.draft

    def edit_macro(self, macro_id: str) -> MacroResult:
        """Load a saved macro into the draft"""
        macro = self.get_macro(macro_id)
        if macro is None:
            return MacroResult.fail(MacroError.MACRO_NOT_FOUND, f"Macro not found: {macro_id}")
        with self._lock:
            self._selected_trigger = macro.trigger
            self._draft = macro
        self._notify_draft()
        return MacroResult.ok(macro.clone())

    def new_macro(self, name: str = ""):
        """Start an unbound macro"""
        with self._lock:
            self._selected_trigger = Trigger.unassigned()
            self._draft = MacroConfig(name=name)
        self._notify_draft()

    def set_name(self, name: str):
        with self._lock:
            self._draft.name = name
        self._notify_draft()

    def set_mode(self, mode: Union[ExecutionMode, str],
                 repeat_count: Optional[int] = None,
                 repeat_delay_ms: Optional[int] = None):
        with self._lock:
            self._draft.mode = mode if isinstance(mode, ExecutionMode) else ExecutionMode(mode)
            self._draft.repeat_count = repeat_count
            self._draft.repeat_delay_ms = repeat_delay_ms
        self._notify_draft()

    def add_action(self, action: Action, index: Optional[int] = None):
        """Append (or insert at index) an action in the draft"""
        with self._lock:
            if index is None:
                self._draft.actions.append(action)
            else:
                self._draft.actions.insert(index, action)
        self._notify_draft()

    def update_action(self, index: int, action: Action) -> bool:
        with self._lock:
            if not 0 <= index < len(self._draft.actions):
                return False
            self._draft.actions[index] = action
        self._notify_draft()
        return True

    def remove_action(self, index: int) -> bool:
        with self._lock:
            if not 0 <= index < len(self._draft.actions):
                return False
            del self._draft.actions[index]
        self._notify_draft()
        return True

    def move_action(self, index: int, new_index: int) -> bool:
        """Move action to new position"""
        with self._lock:
            actions = self._draft.actions
            if not 0 <= index < len(actions):
                return False
            new_index = max(0, min(new_index, len(actions) - 1))
            actions.insert(new_index, actions.pop(index))
        self._notify_draft()
        return True

    def set_all_delays(self, delay_ms: int):
        """Apply one delay to every action in the draft"""
        with self._lock:
            self._draft.actions = [a.with_delay(delay_ms) for a in self._draft.actions]
        self._notify_draft()

    def clear_actions(self):
        with self._lock:
            self._draft.actions = []
        self._notify_draft()

    # ==================== RECORDING ====================

    def start_recording(self, timestamp: Optional[float] = None):
        """Record into the draft; an active recording is stopped and kept first"""
        if self.is_recording:
            self.stop_recording()
        self._session.start(timestamp)
        log(f"[MANAGER] Recording started: {self._draft.name or '(unnamed)'}")

    def stop_recording(self, trim_stop_click: bool = True) -> List[Action]:
        """Stop recording and append the captured actions to the draft"""
        if not self.is_recording:
            return []
        actions = self._session.stop(trim_stop_click=trim_stop_click)
        with self._lock:
            self._draft.actions.extend(actions)
        log(f"[MANAGER] Recording stopped: {len(actions)} actions added")
        self._notify_draft()
        return actions

    def toggle_recording(self):
        if self.is_recording:
            self.stop_recording()
        else:
            self.start_recording()

    def feed_event(self, event: RawInputEvent) -> bool:
        """Pass an input event seen by the UI itself to the session"""
        return self._session.handle_event(event)

    def arm_position_capture(self):
        self._session.arm_position_capture()

    def disarm_position_capture(self):
        self._session.disarm_position_capture()

    def capture_position(self) -> List[Action]:
        return self._session.capture_position()

    # ==================== SAVE / DELETE ====================

    def save(self) -> MacroResult:
        """
        Validate and persist the draft. On failure the cached macros are left
        as they were and the draft is kept for another attempt.
        """
        with self._lock:
            candidate = self._draft.clone(name=(self._draft.name or "").strip())
            macros = list(self._macros)

        result = validate(candidate, macros)
        if not result.success:
            log(f"[MANAGER] Save rejected ({result.error.value}): {result.message}")
            return result

        occupant = find_by_trigger(candidate.trigger, macros, exclude_id=candidate.id)
        if occupant is not None:
            return MacroResult.fail(
                MacroError.TRIGGER_OCCUPIED,
                f"{self.label(candidate.trigger.key)} is already used by '{occupant.name}'"
            )

        normalize_execution(candidate)
        try:
            self._store.save_macro(candidate)
        except MacroStoreError as e:
            log_error(f"[MANAGER] Save error: {e}")
            return MacroResult.fail(MacroError.SAVE_FAILED, str(e))

        with self._lock:
            self._draft = candidate.clone()
            self._selected_trigger = candidate.trigger
        log(f"[MANAGER] Saved: {candidate.name} ({candidate.id})")
        self.reload()
        self._notify_draft()
        return MacroResult.ok(candidate.clone(), "Macro saved")

    def delete_macro(self, macro_id: str) -> MacroResult:
        macro = self.get_macro(macro_id)
        if macro is None:
            return MacroResult.fail(MacroError.MACRO_NOT_FOUND, f"Macro not found: {macro_id}")

        try:
            self._store.delete_macro(macro_id)
        except MacroStoreError as e:
            log_error(f"[MANAGER] Delete error: {e}")
            return MacroResult.fail(MacroError.DELETE_FAILED, str(e))

        with self._lock:
            if self._draft.id == macro_id:
                trigger = self._selected_trigger
                self._draft = MacroConfig.for_trigger(trigger) if trigger.is_assigned else MacroConfig()
        log(f"[MANAGER] Deleted: {macro.name}")
        self.reload()
        self._notify_draft()
        return MacroResult.ok(macro, "Macro deleted")

    # ==================== BINDING ====================

    def bind_macro_to_trigger(self, macro_id: str, key: Union[Trigger, str],
                              overwrite: bool = False) -> MacroResult:
        """
        Bind a saved macro to a trigger (drag and drop onto a key).
        An unbound macro moves; a bound one is copied so both triggers work.
        A trigger used by another macro is rejected unless overwrite is set,
        in which case that macro is deleted once the new binding is saved.
        """
        with self._lock:
            macros = list(self._macros)
        bind = self._binder.bind(macro_id, key, macros)
        if bind is None:
            return MacroResult.fail(MacroError.MACRO_NOT_FOUND, f"Macro not found: {macro_id}")

        if not bind.changed:
            return MacroResult.ok(bind.updated, "Already bound")

        conflict = bind.conflict
        if conflict is not None and not overwrite:
            return MacroResult.fail(
                MacroError.TRIGGER_OCCUPIED,
                f"{self.label(bind.updated.trigger.key)} is already used by '{conflict.name}'"
            )

        try:
            self._store.save_macro(bind.updated)
        except MacroStoreError as e:
            log_error(f"[MANAGER] Bind save error: {e}")
            return MacroResult.fail(MacroError.SAVE_FAILED, str(e))

        if conflict is not None:
            try:
                self._store.delete_macro(conflict.id)
            except MacroStoreError as e:
                log_error(f"[MANAGER] Could not remove '{conflict.name}': {e}")
                self._rollback_binding(bind.updated, bind.cloned, macros)
                self.reload()
                return MacroResult.fail(MacroError.DELETE_FAILED, str(e))

        with self._lock:
            self._selected_trigger = bind.updated.trigger
            self._draft = bind.updated.clone()
        self.reload()
        self._notify_draft()
        return MacroResult.ok(bind.updated.clone(),
                              "Macro copied" if bind.cloned else "Macro bound")

    def _rollback_binding(self, updated: MacroConfig, cloned: bool, previous: List[MacroConfig]):
        try:
            if cloned:
                self._store.delete_macro(updated.id)
            else:
                original = next(m for m in previous if m.id == updated.id)
                self._store.save_macro(original)
        except MacroStoreError as e:
            log_error(f"[MANAGER] Rollback failed for {updated.id}: {e}")

    # ==================== IMPORT / EXPORT ====================

    def export_macro(self, macro_id: str) -> Optional[str]:
        macro = self.get_macro(macro_id)
        if macro is None:
            log(f"[MANAGER] Export: macro not found {macro_id}")
            return None
        return self._store.export_macro(macro)

    def import_macro(self, blob: str) -> MacroResult:
        try:
            incoming = decode_macro(blob)
        except MacroStoreError as e:
            return MacroResult.fail(MacroError.IMPORT_FAILED, str(e))

        with self._lock:
            occupant = find_by_trigger(incoming.trigger, self._macros, exclude_id=incoming.id)
        if occupant is not None:
            return MacroResult.fail(
                MacroError.TRIGGER_OCCUPIED,
                f"{self.label(incoming.trigger.key)} is already used by '{occupant.name}'"
            )

        try:
            macro = self._store.import_macro(blob)
        except MacroStoreError as e:
            log_error(f"[MANAGER] Import error: {e}")
            return MacroResult.fail(MacroError.IMPORT_FAILED, str(e))

        log(f"[MANAGER] Imported: {macro.name}")
        self.reload()
        return MacroResult.ok(macro, "Macro imported")

    # ==================== TRIGGERS ====================

    def handle_trigger(self, key: str, pressed: bool) -> Optional[TriggerActivation]:
        """
        Resolve a trigger press/release to an executor command.
        None when no macro is bound to the key.
        """
        macro = self.macro_for_trigger(key)
        if macro is None:
            return None
        if pressed:
            decision = self._activation.on_press(macro)
        else:
            decision = self._activation.on_release(macro)
        return TriggerActivation(macro, decision, ExecutionPlan.for_macro(macro))

    # ==================== SETTINGS ====================

    def update_settings(self, **changes):
        """Apply settings now; the write is debounced"""
        previous_profile = self._settings.active_profile
        self._settings = self._settings.merged(changes)
        self._debouncer.submit(changes)
        if "debug_mode" in changes or "file_logging" in changes:
            self._apply_logging()

        if self._settings.active_profile != previous_profile:
            log(f"[MANAGER] Profile: {previous_profile} -> {self._settings.active_profile}")
            self._store.set_active_profile(self._settings.active_profile)
            self.reload()

        if self._on_settings_change:
            self._on_settings_change(self._settings)

    def set_profile(self, name: str):
        self.update_settings(active_profile=name)

    def save_settings(self) -> bool:
        """Write pending settings immediately"""
        return self._debouncer.flush()

    def _write_settings(self, changes: Dict[str, Any]):
        self._settings_store.save_settings(self._settings.to_dict())

    def _apply_logging(self):
        configure_logging(debug_mode=self._settings.debug_mode,
                          enable_file_logging=self._settings.file_logging)

    # ==================== UTILITY ====================

    def label(self, key: str) -> str:
        """Display label for a canonical key in the current layout"""
        return key_label(key, self._settings.keyboard_layout)

    def key_labels(self) -> List[Tuple[str, str]]:
        """(canonical id, label) pairs for the key picker"""
        return layout_labels(self._settings.keyboard_layout)

    def describe_actions(self) -> List[str]:
        """Summaries of the draft's actions for the editor list"""
        layout = self._settings.keyboard_layout
        with self._lock:
            return [a.get_summary(layout) for a in self._draft.actions]

    def shutdown(self):
        """Clean shutdown"""
        if self.is_recording:
            self.stop_recording()
        self._session.shutdown()
        try:
            self._debouncer.flush()
        except Exception as e:
            log_error(f"[MANAGER] Settings not saved on shutdown: {e}")
        self._subscription.unsubscribe()
        log("[MANAGER] Shutdown complete")

    def __enter__(self) -> 'MacroManager':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False
