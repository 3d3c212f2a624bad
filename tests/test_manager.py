"""
MacroManager end-to-end: record -> save -> list, duplicate names,
drag-to-rebind, failure paths and settings
"""

import base64
import json
import pytest
from unittest.mock import MagicMock

from macrox.keys import KeyboardLayout
from macrox.macro.manager import MacroManager, STOP_CONTROL
from macrox.macro.models import ExecutionMode, KeyDown, KeyUp, MacroConfig, MouseClick, MouseMove, Trigger
from macrox.macro.recorder import RawInputEvent
from macrox.macro.execution import PlaybackCommand
from macrox.macro.store import InMemoryMacroStore, MacroStoreError, encode_macro
from macrox.macro.validation import MacroError
from macrox.settings import InMemorySettingsStore
import utils.logger as logger


def key(name, pressed, ts):
    return RawInputEvent.key_event(name, pressed, timestamp=ts)


@pytest.fixture
def store():
    return InMemoryMacroStore()


@pytest.fixture
def settings_store():
    return InMemorySettingsStore({"keyboard_layout": "QWERTY"})


@pytest.fixture
def manager(store, settings_store, hook, cursor):
    mgr = MacroManager(store=store, settings_store=settings_store, hook=hook,
                       cursor=cursor, settings_delay=60)
    yield mgr
    mgr.shutdown()


def blob_of(payload):
    return base64.b64encode(json.dumps(payload).encode()).decode()


def record(manager, hook, events, start=0.0):
    manager.start_recording(timestamp=start)
    for event in events:
        hook.emit(event)
    return manager.stop_recording()


class TestRecordSaveList:

    def test_record_save_list(self, manager, hook, store):
        manager.select_trigger("KeyQ")
        assert manager.draft.name == "Macro Q"

        record(manager, hook, [
            key("KeyA", True, 0.000),
            key("KeyA", False, 0.080),
            RawInputEvent.button_event(0, True, 0.300),
            RawInputEvent.button_event(0, False, 0.350),
        ])
        assert manager.draft.actions == [KeyDown(key="A", delay_ms=0), KeyUp(key="A", delay_ms=80)]

        manager.set_name("Combo")
        result = manager.save()
        assert result.success, result.message
        assert result.macro.id

        macros = store.list_macros()
        assert len(macros) == 1
        saved = macros[0]
        assert saved.name == "Combo"
        assert saved.trigger == Trigger.for_key("KeyQ")
        assert [a.delay_ms for a in saved.actions] == [0, 80]
        assert manager.macro_for_trigger("q").id == saved.id

    def test_record_save_unassigned(self, manager, hook, store):
        manager.new_macro()
        record(manager, hook, [
            key("KeyA", True, 0.000),
            key("KeyA", False, 0.120),
        ])
        manager.set_name("Combo")
        manager.set_mode(ExecutionMode.ONCE)
        assert manager.save().success

        macros = store.list_macros()
        assert len(macros) == 1
        saved = macros[0]
        assert saved.name == "Combo"
        assert saved.mode == ExecutionMode.ONCE
        assert saved.trigger.key == "UNASSIGNED"
        assert not saved.trigger.is_assigned
        assert saved.actions == [KeyDown(key="A", delay_ms=0), KeyUp(key="A", delay_ms=120)]

    def test_recording_appends_to_existing_draft(self, manager, hook):
        manager.select_trigger("KeyE")
        manager.add_action(KeyDown(key="E"))
        record(manager, hook, [key("KeyB", True, 0.2)])
        assert [a.key for a in manager.draft.actions] == ["E", "B"]

    def test_stop_control_click_not_recorded(self, manager, hook):
        manager.select_trigger("KeyQ")
        manager.start_recording(timestamp=0.0)
        hook.emit(key("KeyA", True, 0.1))
        hook.emit(RawInputEvent.button_event(0, True, 0.5, target=STOP_CONTROL))
        manager.stop_recording(trim_stop_click=False)
        assert manager.draft.actions == [KeyDown(key="A", delay_ms=100)]

    def test_user_click_survives_stop_control_click(self, manager, hook):
        manager.select_trigger("KeyQ")
        record(manager, hook, [
            key("KeyA", True, 0.1),
            RawInputEvent.button_event(0, True, 0.2),
            RawInputEvent.button_event(0, False, 0.3),
            RawInputEvent.button_event(0, True, 0.8, target=STOP_CONTROL),
            RawInputEvent.button_event(0, False, 0.9, target=STOP_CONTROL),
        ])
        assert len(manager.draft.actions) == 3
        assert [type(a).__name__ for a in manager.draft.actions] == ["KeyDown", "MouseDown", "MouseUp"]

    def test_resave_keeps_id(self, manager, hook):
        manager.select_trigger("KeyQ")
        manager.add_action(KeyDown(key="A"))
        first = manager.save()
        manager.add_action(KeyUp(key="A", delay_ms=10))
        second = manager.save()
        assert second.success
        assert second.macro.id == first.macro.id
        assert len(manager.macros) == 1


class TestValidationFailures:

    def test_duplicate_name(self, manager, store):
        manager.select_trigger("KeyQ")
        manager.set_name("Combo")
        manager.add_action(KeyDown(key="A"))
        assert manager.save().success

        manager.select_trigger("KeyW")
        manager.set_name("combo ")
        manager.add_action(KeyDown(key="B"))
        result = manager.save()
        assert not result.success
        assert result.error == MacroError.DUPLICATE_NAME
        assert len(store.list_macros()) == 1
        # Draft survives for a retry
        assert manager.draft.name == "combo "
        assert manager.draft.actions == [KeyDown(key="B")]

    def test_empty_macro(self, manager):
        manager.select_trigger("KeyQ")
        assert manager.save().error == MacroError.EMPTY_FIELDS

    def test_illegal_name(self, manager):
        manager.select_trigger("KeyQ")
        manager.set_name("a/b")
        manager.add_action(KeyDown(key="A"))
        assert manager.save().error == MacroError.ILLEGAL_CHARACTERS

    def test_store_failure_leaves_state(self, manager, store):
        manager.select_trigger("KeyQ")
        manager.add_action(KeyDown(key="A"))
        store.save_macro = MagicMock(side_effect=MacroStoreError("disk full"))
        result = manager.save()
        assert result.error == MacroError.SAVE_FAILED
        assert manager.macros == []
        assert manager.draft.actions == [KeyDown(key="A")]
        assert manager.draft.id is None

    def test_mode_parameters(self, manager):
        manager.select_trigger("KeyQ")
        manager.add_action(KeyDown(key="A"))
        manager.set_mode("repeat", repeat_count=150)
        assert manager.save().error == MacroError.INVALID_MODE_PARAMETERS
        manager.set_mode(ExecutionMode.REPEAT, repeat_count=3, repeat_delay_ms=100)
        saved = manager.save().macro
        assert (saved.repeat_count, saved.repeat_delay_ms) == (3, 100)

    def test_once_drops_repeat_parameters(self, manager):
        manager.select_trigger("KeyQ")
        manager.add_action(KeyDown(key="A"))
        manager.set_mode(ExecutionMode.ONCE, repeat_count=5, repeat_delay_ms=20)
        saved = manager.save().macro
        assert saved.repeat_count is None
        assert saved.repeat_delay_ms is None


class TestBinding:

    def _save(self, manager, key, name):
        manager.select_trigger(key)
        manager.set_name(name)
        manager.add_action(KeyDown(key="A"))
        result = manager.save()
        assert result.success, result.message
        return result.macro

    def test_drag_bound_macro_clones(self, manager, store):
        source = self._save(manager, "KeyQ", "Combo")
        result = manager.bind_macro_to_trigger(source.id, "KeyW")
        assert result.success
        macros = {m.trigger.key: m for m in store.list_macros()}
        assert set(macros) == {"Q", "W"}
        assert macros["Q"].id == source.id
        assert macros["W"].id != source.id
        assert macros["W"].actions == macros["Q"].actions
        assert manager.selected_trigger == Trigger.for_key("KeyW")

    def test_drag_onto_symbol_key(self, manager, store):
        source = self._save(manager, "KeyQ", "Combo")
        result = manager.bind_macro_to_trigger(source.id, "*")
        assert result.success, result.message
        assert {m.name for m in store.list_macros()} == {"Combo", "Combo (Asterisk)"}

    def test_unassigned_macro_moves(self, manager, store):
        manager.new_macro("Loose")
        manager.add_action(KeyDown(key="A"))
        loose = manager.save().macro
        assert not loose.trigger.is_assigned

        result = manager.bind_macro_to_trigger(loose.id, "MouseButton4")
        assert result.success
        macros = store.list_macros()
        assert len(macros) == 1
        assert macros[0].id == loose.id
        assert macros[0].trigger.key == "MOUSE_BACK"

    def test_occupied_trigger_rejected(self, manager, store):
        source = self._save(manager, "KeyQ", "Combo")
        self._save(manager, "KeyW", "Other")
        result = manager.bind_macro_to_trigger(source.id, "KeyW")
        assert result.error == MacroError.TRIGGER_OCCUPIED
        assert len(store.list_macros()) == 2

    def test_overwrite_replaces_occupant(self, manager, store):
        source = self._save(manager, "KeyQ", "Combo")
        occupant = self._save(manager, "KeyW", "Other")
        result = manager.bind_macro_to_trigger(source.id, "KeyW", overwrite=True)
        assert result.success
        ids = {m.id for m in store.list_macros()}
        assert occupant.id not in ids
        assert source.id in ids
        assert len(ids) == 2

    def test_unknown_macro(self, manager):
        assert manager.bind_macro_to_trigger("nope", "KeyW").error == MacroError.MACRO_NOT_FOUND

    def test_same_trigger_noop(self, manager, store):
        source = self._save(manager, "KeyQ", "Combo")
        result = manager.bind_macro_to_trigger(source.id, "q")
        assert result.success
        assert len(store.list_macros()) == 1


class TestEditing:

    def test_draft_operations(self, manager):
        manager.select_trigger("KeyQ")
        for name in ("A", "B", "C"):
            manager.add_action(KeyDown(key=name, delay_ms=5))
        assert manager.move_action(2, 0)
        assert [a.key for a in manager.draft.actions] == ["C", "A", "B"]
        assert manager.remove_action(1)
        assert not manager.remove_action(7)
        manager.set_all_delays(40)
        assert [a.delay_ms for a in manager.draft.actions] == [40, 40]

    def test_draft_property_is_a_copy(self, manager):
        manager.select_trigger("KeyQ")
        manager.draft.actions.append(KeyDown(key="Z"))
        assert manager.draft.actions == []

    def test_position_capture_into_draft(self, manager, hook):
        manager.select_trigger("KeyQ")
        manager.arm_position_capture()
        hook.emit(key("KeyF", True, 1.0))
        actions = manager.draft.actions
        assert isinstance(actions[0], MouseMove)
        assert isinstance(actions[1], MouseClick)

    def test_describe_uses_layout(self, manager):
        manager.select_trigger("KeyQ")
        manager.add_action(KeyDown(key="Q"))
        assert manager.describe_actions() == ["Press key Q"]
        manager.update_settings(keyboard_layout="AZERTY")
        assert manager.describe_actions() == ["Press key A"]
        assert manager.label("Q") == "A"


class TestDeleteImportExport:

    def _save(self, manager, key="KeyQ", name="Combo"):
        manager.select_trigger(key)
        manager.set_name(name)
        manager.add_action(KeyDown(key="A"))
        return manager.save().macro

    def test_delete(self, manager, store):
        macro = self._save(manager)
        assert manager.delete_macro(macro.id).success
        assert store.list_macros() == []
        assert manager.draft.id is None
        assert manager.delete_macro(macro.id).error == MacroError.MACRO_NOT_FOUND

    def test_delete_failure(self, manager, store):
        macro = self._save(manager)
        store.delete_macro = MagicMock(side_effect=MacroStoreError("locked"))
        assert manager.delete_macro(macro.id).error == MacroError.DELETE_FAILED
        assert len(manager.macros) == 1

    def test_export_import_between_profiles(self, manager):
        macro = self._save(manager)
        blob = manager.export_macro(macro.id)
        manager.set_profile("Other")
        assert manager.macros == []
        result = manager.import_macro(blob)
        assert result.success
        assert [m.id for m in manager.macros] == [macro.id]

    def test_import_garbage(self, manager):
        assert manager.import_macro("%%%").error == MacroError.IMPORT_FAILED

    @pytest.mark.parametrize("changes", [
        {"actions": [{"type": "key_down", "value": "A", "delay_ms": 1e400}]},
        {"name": 123},
        {"id": ["x"]},
        {"trigger": {"device": "keyboard", "key": ""}},
        {"trigger": None},
    ])
    def test_import_bad_fields_returns_failure(self, manager, store, changes):
        payload = {"id": "x1", "name": "Imported", "mode": "once",
                   "trigger": {"device": "keyboard", "key": "E"},
                   "actions": [{"type": "key_down", "value": "A", "delay_ms": 0}]}
        payload.update(changes)
        result = manager.import_macro(blob_of(payload))
        assert not result.success
        assert result.error == MacroError.IMPORT_FAILED
        assert store.list_macros() == []

    def test_import_onto_occupied_trigger(self, manager):
        self._save(manager)
        other = MacroConfig(id="x1", name="Imported", trigger=Trigger.for_key("KeyQ"),
                            actions=[KeyDown(key="B")])
        assert manager.import_macro(encode_macro(other)).error == MacroError.TRIGGER_OCCUPIED


class TestTriggersAndSettings:

    def test_handle_trigger(self, manager):
        manager.select_trigger("KeyQ")
        manager.add_action(KeyDown(key="A"))
        manager.set_mode(ExecutionMode.TOGGLE)
        manager.save()
        first = manager.handle_trigger("KeyQ", True)
        assert first.decision.command == PlaybackCommand.START
        assert first.decision.swallow
        assert manager.handle_trigger("KeyQ", True).decision.command == PlaybackCommand.STOP
        assert manager.handle_trigger("KeyZ", True) is None

    def test_settings_debounced_then_flushed(self, manager, settings_store):
        manager.update_settings(theme="light")
        manager.update_settings(time_unit="s")
        assert settings_store.save_count == 0
        assert manager.save_settings()
        assert settings_store.save_count == 1
        saved = settings_store.load_settings()
        assert saved["theme"] == "light"
        assert saved["time_unit"] == "s"
        assert saved["keyboard_layout"] == "QWERTY"

    def test_logging_follows_settings(self, manager, monkeypatch):
        monkeypatch.setattr(logger, "DEBUG_MODE", True)
        manager.update_settings(debug_mode=False)
        assert manager.settings.debug_mode is False
        assert not logger.is_debug_mode()
        manager.update_settings(debug_mode=True)
        assert logger.is_debug_mode()

    def test_shutdown_flushes_and_stops(self, store, settings_store, hook, cursor):
        manager = MacroManager(store=store, settings_store=settings_store, hook=hook,
                               cursor=cursor, settings_delay=60)
        manager.select_trigger("KeyQ")
        manager.start_recording(timestamp=0.0)
        hook.emit(key("KeyA", True, 0.1))
        manager.update_settings(language="fr")
        manager.shutdown()
        assert not manager.is_recording
        assert not hook.running
        assert manager.draft.actions == [KeyDown(key="A", delay_ms=100)]
        assert settings_store.load_settings()["language"] == "fr"

    def test_external_change_reloads(self, manager, store):
        store.save_macro(MacroConfig(id="ext", name="External", trigger=Trigger.for_key("KeyE"),
                                     actions=[KeyDown(key="E")]))
        assert manager.macros == []
        store.notify_changed("external")
        assert [m.id for m in manager.macros] == ["ext"]

    def test_layout_from_settings(self, manager):
        assert manager.settings.keyboard_layout == KeyboardLayout.QWERTY
