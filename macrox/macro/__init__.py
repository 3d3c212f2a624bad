"""
Macro Package
Provides the macro model, recording, trigger binding and persistence
"""

from .models import (
    MacroConfig, Trigger, ExecutionMode, ActionType,
    Action, KeyDown, KeyUp, MouseDown, MouseUp, MouseClick, MouseMove,
    new_macro_id
)

from .validation import (
    MacroError, MacroResult, ErrorCategory,
    validate, validate_import
)

from .execution import (
    ExecutionPlan, ActivationTracker, ActivationDecision, PlaybackCommand,
    validate_execution, normalize_execution
)

from .binder import (
    TriggerBinder, BindResult, find_by_trigger
)

from .recorder import (
    RecordingSession, RecorderState,
    RawInputEvent, RawEventType, InputSubscription,
    IInputHook, PynputInputHook,
    ICursorProvider, PynputCursorProvider
)

from .store import (
    IMacroStore, InMemoryMacroStore, MacroStoreError, Subscription,
    encode_macro, decode_macro
)

from .manager import (
    MacroManager, TriggerActivation
)


__all__ = [
    # Models
    'MacroConfig', 'Trigger', 'ExecutionMode', 'ActionType', 'new_macro_id',

    # Action types
    'Action', 'KeyDown', 'KeyUp', 'MouseDown', 'MouseUp', 'MouseClick', 'MouseMove',

    # Validation
    'MacroError', 'MacroResult', 'ErrorCategory', 'validate', 'validate_import',

    # Execution
    'ExecutionPlan', 'ActivationTracker', 'ActivationDecision', 'PlaybackCommand',
    'validate_execution', 'normalize_execution',

    # Binding
    'TriggerBinder', 'BindResult', 'find_by_trigger',

    # Recorder
    'RecordingSession', 'RecorderState',
    'RawInputEvent', 'RawEventType', 'InputSubscription',
    'IInputHook', 'PynputInputHook',
    'ICursorProvider', 'PynputCursorProvider',

    # Store
    'IMacroStore', 'InMemoryMacroStore', 'MacroStoreError', 'Subscription',
    'encode_macro', 'decode_macro',

    # Manager
    'MacroManager', 'TriggerActivation',
]
