"""
Tests for preferences_service.py.

Tests cover:
- Migration of current, older, malformed and legacy camelCase blobs
- View state capture and restore
- PreferencesStore save/load/clear envelopes and export/import
- PreferencesAutoSaver debouncing, flushing and in-flight coalescing
"""

import json
import logging

import pytest

from ingredient_library.models.user_preferences import UserPreferencesRecord
from ingredient_library.services.database import session_scope
from ingredient_library.services.dto import StoreResult
from ingredient_library.services.exceptions import PreferencesNotFound, SerializationError
from ingredient_library.services.preferences_service import (
    PreferencesAutoSaver,
    PreferencesStore,
    UserPreferences,
    apply_preferences,
    default_preferences,
    migrate_preferences,
    parse_preferences,
    preferences_from_state,
)
from ingredient_library.services.view_state_service import (
    create_view_state,
    move_column,
    set_filters,
    set_group_by,
    set_pagination,
    set_query,
    set_selection,
    toggle_expanded,
    toggle_group_expansion,
)
from ingredient_library.utils.config import DEFAULT_TABLE_CONFIG, merge_config
from ingredient_library.utils.constants import PREFERENCES_SCHEMA_VERSION


class FakeTimer:
    """Timer stand-in that only fires when a test calls fire()."""

    def __init__(self, delay, function):
        self.delay = delay
        self.function = function
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


class FakeTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, delay, function):
        timer = FakeTimer(delay, function)
        self.timers.append(timer)
        return timer


@pytest.fixture
def store(session_factory, fast_data_source):
    return PreferencesStore(session_factory, data_source=fast_data_source)


@pytest.fixture
def busy_state():
    state = set_query(create_view_state(), "rose")
    state = set_filters(state, {"categories": ["Absolutes"], "cost_range": {"min": 10, "max": None}})
    state = set_group_by(state, "family")
    state = move_column(state, "stock", 0)
    state = set_pagination(state, page_index=2, page_size=50)
    state = set_selection(state, {"INGR-001": True})
    state = toggle_expanded(state, "INGR-002")
    return toggle_group_expansion(state, "Floral")


class TestMigratePreferences:
    """Tests for migrate_preferences() and parse_preferences()."""

    def test_current_blob_kept(self, busy_state):
        """Should keep every field of a current blob."""
        stored = preferences_from_state(busy_state, show_filters=True).to_dict()

        migrated = migrate_preferences(stored)

        assert migrated.to_dict() == stored

    def test_empty_blob_gets_defaults(self):
        """Should fill every field from the defaults."""
        migrated = migrate_preferences({})

        assert migrated.query == ""
        assert migrated.pagination == {"page_index": 0, "page_size": 25}
        assert migrated.sort_by == [{"id": "name", "desc": False}]
        assert migrated.version == PREFERENCES_SCHEMA_VERSION

    def test_malformed_fields_replaced(self, caplog):
        """Should replace malformed fields and log the migration."""
        data = {
            "query": 5,
            "pagination": {"page_index": -1, "page_size": 10},
            "show_filters": "yes",
            "row_selection": {"INGR-001": "true"},
            "query_extra": "ignored",
            "version": PREFERENCES_SCHEMA_VERSION,
        }

        with caplog.at_level(logging.INFO):
            migrated = migrate_preferences(data)

        assert migrated.query == ""
        assert migrated.pagination == {"page_index": 0, "page_size": 25}
        assert migrated.show_filters is False
        assert migrated.row_selection == {}
        assert "migrate_preferences: migrated" in caplog.text

    def test_explicit_null_kept_for_nullable_fields(self):
        """Should keep a stored null group instead of the configured default."""
        config = merge_config(DEFAULT_TABLE_CONFIG, {"grouping": {"default_group_by": "category"}})
        defaults = default_preferences(config)

        assert migrate_preferences({"group_by": None}, defaults).group_by is None
        assert migrate_preferences({}, defaults).group_by == "category"

    def test_legacy_camel_case_blob(self):
        """Should translate the older client's keys."""
        legacy = {
            "globalFilter": "rose",
            "sorting": [{"id": "name", "desc": True}],
            "columnFilters": [
                {"id": "categories", "value": ["Absolutes"]},
                {"id": "favoritesOnly", "value": True},
            ],
            "grouping": ["family"],
            "pagination": {"pageIndex": 2, "pageSize": 50},
            "columnVisibility": {"casNumber": True, "supplier": False},
            "rowSelection": {"INGR-001": True},
            "showFilters": True,
            "version": "0.9.0",
        }

        migrated = migrate_preferences(legacy)

        assert migrated.query == "rose"
        assert migrated.sort_by == [{"id": "name", "desc": True}]
        assert migrated.filters == {"categories": ["Absolutes"], "favorites_only": True}
        assert migrated.group_by == "family"
        assert migrated.pagination == {"page_index": 2, "page_size": 50}
        visibility = {column["key"]: column["visible"] for column in migrated.columns}
        assert visibility["cas_number"] is True
        assert visibility["supplier"] is False
        assert migrated.row_selection == {"INGR-001": True}
        assert migrated.show_filters is True
        assert migrated.version == PREFERENCES_SCHEMA_VERSION

    def test_parse_rejects_unreadable(self):
        """Should raise SerializationError for non-JSON and non-object text."""
        with pytest.raises(SerializationError):
            parse_preferences("{oops")
        with pytest.raises(SerializationError) as exc_info:
            parse_preferences("[1, 2]")
        assert "JSON object" in str(exc_info.value)


class TestStateConversion:
    """Tests for preferences_from_state() and apply_preferences()."""

    def test_round_trip(self, busy_state):
        """Should restore the same view state."""
        preferences = preferences_from_state(busy_state)

        restored = apply_preferences(create_view_state(), preferences)

        assert restored == busy_state

    def test_captures_ui_toggles(self, busy_state):
        """Should record the UI toggles alongside the state."""
        preferences = preferences_from_state(busy_state, show_filters=True, show_column_manager=True)

        assert preferences.show_filters and preferences.show_column_manager
        assert preferences.expanded_rows == {"INGR-002": True}
        assert preferences.collapsed_groups == ["Floral"]


class TestPreferencesStore:
    """Tests for PreferencesStore."""

    def test_save_and_load(self, store, busy_state):
        """Should load what was saved, stamped with version and time."""
        saved = store.save_preferences("perfumer-1", preferences_from_state(busy_state))

        loaded = store.load_preferences("perfumer-1")

        assert saved.success and loaded.success
        assert loaded.data.query == "rose"
        assert loaded.data.last_updated == saved.data.last_updated
        assert loaded.data.version == PREFERENCES_SCHEMA_VERSION

    def test_save_overwrites(self, store):
        """Should keep one row per user."""
        store.save_preferences("perfumer-1", UserPreferences(query="a"))
        store.save_preferences("perfumer-1", UserPreferences(query="b"))

        assert store.load_preferences("perfumer-1").data.query == "b"

    def test_load_missing(self, store):
        """Should succeed with no data when nothing is stored."""
        result = store.load_preferences("nobody")

        assert result.success
        assert result.data is None

    def test_load_unreadable_blob(self, store, session_factory):
        """Should fail, not raise, for a corrupt stored blob."""
        with session_scope(session_factory) as session:
            session.add(UserPreferencesRecord(user_id="perfumer-1", payload="{corrupt", version="1.0.0"))

        result = store.load_preferences("perfumer-1")

        assert not result.success
        assert "Serialization error" in result.error

    def test_clear(self, store):
        """Should remove stored preferences."""
        store.save_preferences("perfumer-1", UserPreferences(query="a"))

        assert store.clear_preferences("perfumer-1").success
        assert store.load_preferences("perfumer-1").data is None

    def test_export_missing_raises(self, store):
        """Should raise PreferencesNotFound when nothing is stored."""
        with pytest.raises(PreferencesNotFound):
            store.export_preferences("nobody")

    def test_export_then_import(self, store, busy_state):
        """Should reproduce the exported preferences exactly."""
        store.save_preferences("perfumer-1", preferences_from_state(busy_state))
        exported = store.export_preferences("perfumer-1")

        imported = store.import_preferences("perfumer-2", exported)

        assert imported.to_dict() == json.loads(exported)
        assert store.export_preferences("perfumer-2") == exported

    def test_import_invalid(self, store):
        """Should raise SerializationError and store nothing."""
        with pytest.raises(SerializationError):
            store.import_preferences("perfumer-1", "not json")

        assert store.load_preferences("perfumer-1").data is None


class RecordingStore:
    """Store stand-in that records saved queries."""

    def __init__(self, result=None, on_save=None):
        self.saved = []
        self.result = result
        self.on_save = on_save

    def save_preferences(self, user_id, preferences):
        self.saved.append(preferences.query)
        if self.on_save is not None:
            callback, self.on_save = self.on_save, None
            callback()
        return self.result or StoreResult.ok(preferences)


class TestPreferencesAutoSaver:
    """Tests for PreferencesAutoSaver."""

    def test_burst_coalesces_into_one_write(self):
        """Should write only the latest preferences after a burst."""
        timers = FakeTimerFactory()
        store = RecordingStore()
        saver = PreferencesAutoSaver(store, "perfumer-1", delay_seconds=1.0, timer_factory=timers)

        for query in ("r", "ro", "rose"):
            saver.schedule(UserPreferences(query=query))

        assert [t.cancelled for t in timers.timers] == [True, True, False]
        timers.timers[-1].fire()

        assert store.saved == ["rose"]
        assert saver.write_count == 1
        assert not saver.has_pending

    def test_flush_writes_now(self):
        """Should write pending preferences and cancel the timer."""
        timers = FakeTimerFactory()
        store = RecordingStore()
        saver = PreferencesAutoSaver(store, "perfumer-1", timer_factory=timers)
        saver.schedule(UserPreferences(query="rose"))

        result = saver.flush()

        assert result.success
        assert store.saved == ["rose"]
        assert timers.timers[0].cancelled
        assert saver.flush() is None

    def test_cancel_drops_pending(self):
        """Should not write after cancel()."""
        timers = FakeTimerFactory()
        store = RecordingStore()
        saver = PreferencesAutoSaver(store, "perfumer-1", timer_factory=timers)
        saver.schedule(UserPreferences(query="rose"))

        saver.cancel()
        timers.timers[0].fire()

        assert store.saved == []

    def test_no_overlapping_writes(self):
        """Should re-arm instead of writing while a write is in flight."""
        timers = FakeTimerFactory()
        saver = None

        def _change_during_write():
            saver.schedule(UserPreferences(query="lemon"))
            assert saver.in_flight
            timers.timers[-1].fire()

        store = RecordingStore(on_save=_change_during_write)
        saver = PreferencesAutoSaver(store, "perfumer-1", timer_factory=timers)
        saver.schedule(UserPreferences(query="rose"))
        timers.timers[0].fire()

        assert store.saved == ["rose"]
        assert saver.has_pending
        assert not saver.in_flight

        timers.timers[-1].fire()

        assert store.saved == ["rose", "lemon"]

    def test_failed_write_logged(self, caplog):
        """Should keep the failed result and log a warning."""
        timers = FakeTimerFactory()
        store = RecordingStore(result=StoreResult.fail("disk full"))
        saver = PreferencesAutoSaver(store, "perfumer-1", timer_factory=timers)
        saver.schedule(UserPreferences(query="rose"))

        with caplog.at_level(logging.WARNING):
            timers.timers[0].fire()

        assert not saver.last_result.success
        assert "auto_save: failed" in caplog.text
