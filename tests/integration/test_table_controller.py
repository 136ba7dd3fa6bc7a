"""
Integration tests for TableController.

These tests drive the controller the way a host UI would, with a local
record store and SQLite-backed saved views and preferences.

Tests cover:
- Loading records, notifications and filter option population
- Page reset on filter changes
- Saving, switching and restoring saved views
- Stale async responses and failed refreshes
- Record actions, selection, comparison and export
- Preferences auto-save and restore
"""

from concurrent.futures import Executor, Future

import pytest

from ingredient_library.services.dto import ColumnConfig, StoreResult
from ingredient_library.services.exceptions import ValidationError
from ingredient_library.services.preferences_service import (
    PreferencesAutoSaver,
    PreferencesStore,
    UserPreferences,
)
from ingredient_library.services.record_store import LocalRecordStore
from ingredient_library.services.saved_view_service import SavedViewStore
from ingredient_library.services.table_controller import TableController
from ingredient_library.utils.config import DEFAULT_TABLE_CONFIG, get_preset

NAME_ORDER = ["INGR-001", "INGR-003", "INGR-004", "INGR-002", "INGR-009"]
USER_ID = "perfumer-1"


class FlakyStore(LocalRecordStore):
    """Local store whose list() can be switched to fail."""

    offline = False

    def list(self, options=None):
        if self.offline:
            return StoreResult.fail("Backend offline")
        return super().list(options)


class InterruptedStore(LocalRecordStore):
    """Local store that runs a callback while list() is loading."""

    during_list = None

    def list(self, options=None):
        if self.during_list is not None:
            self.during_list()
        return super().list(options)


class ManualExecutor(Executor):
    """Executor that runs submitted calls only when the test says so."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run(self, index):
        future, fn, args, kwargs = self.pending[index]
        future.set_result(fn(*args, **kwargs))


class ManualTimers:
    """Timer factory whose timers fire only when the test says so."""

    def __init__(self):
        self.functions = []

    def __call__(self, delay, function):
        self.functions.append(function)
        return self

    def start(self):
        pass

    def cancel(self):
        pass

    def fire_last(self):
        self.functions[-1]()


@pytest.fixture
def record_store(catalog):
    return FlakyStore(catalog)


@pytest.fixture
def view_store(session_factory, fast_data_source):
    return SavedViewStore(session_factory, user_id=USER_ID, data_source=fast_data_source)


@pytest.fixture
def preferences_store(session_factory, fast_data_source):
    return PreferencesStore(session_factory, data_source=fast_data_source)


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def make_controller(record_store, view_store, preferences_store, timers):
    def _make(config=DEFAULT_TABLE_CONFIG, with_views=True):
        autosaver = PreferencesAutoSaver(preferences_store, USER_ID, timer_factory=timers)
        controller = TableController(
            record_store,
            config=config,
            view_store=view_store if with_views else None,
            preferences_store=preferences_store,
            user_id=USER_ID,
            autosaver=autosaver,
        )
        controller.refresh()
        return controller

    return _make


@pytest.fixture
def controller(make_controller):
    return make_controller()


class TestLoading:
    """Tests for refresh() and refresh_async()."""

    def test_refresh_loads_and_derives(self, controller, catalog):
        """Should load every record and show sorted root rows."""
        assert len(controller.records) == len(catalog)
        assert controller.table.visible_ids == NAME_ORDER
        assert not controller.is_loading
        assert controller.error is None

    def test_refresh_populates_filter_options(self, controller):
        """Should fill dynamic filter options from the loaded records."""
        definitions = {d.key: d for d in controller.definitions}

        assert [o.value for o in definitions["suppliers"].options] == ["Firmenich", "Givaudan", "IFF", "Symrise"]

    def test_refresh_notifies_start_and_finish(self, record_store):
        """Should notify once when loading starts and once with the data."""
        controller = TableController(record_store)
        seen = []
        controller.subscribe(lambda state: seen.append(controller.is_loading))

        controller.refresh()

        assert seen == [True, False]

    def test_failed_refresh_keeps_last_records(self, controller, record_store):
        """Should record the error and keep showing the last good rows."""
        record_store.offline = True

        result = controller.refresh()

        assert not result.success
        assert controller.error == "Backend offline"
        assert controller.table.visible_ids == NAME_ORDER
        assert not controller.is_loading

    def test_stale_async_response_discarded(self, record_store):
        """Should apply only the latest of two overlapping refreshes."""
        controller = TableController(record_store)
        executor = ManualExecutor()
        controller.refresh_async(executor)
        controller.refresh_async(executor)

        executor.run(1)
        assert len(controller.records) == 8
        assert not controller.is_loading

        record_store.delete("INGR-003")
        executor.run(0)

        assert len(controller.records) == 8

    def test_async_latest_pending_keeps_loading(self, record_store):
        """Should stay loading while the latest request is outstanding."""
        controller = TableController(record_store)
        executor = ManualExecutor()
        controller.refresh_async(executor)
        controller.refresh_async(executor)

        executor.run(0)

        assert controller.is_loading
        assert controller.records == []

    def test_superseded_refresh_reports_failure(self, catalog):
        """Should fail a refresh whose result was discarded for a newer one."""
        store = InterruptedStore(catalog)
        controller = TableController(store)
        executor = ManualExecutor()
        store.during_list = lambda: controller.refresh_async(executor)

        result = controller.refresh()

        assert not result.success
        assert result.error == "Superseded by a newer refresh"
        assert controller.records == []
        assert controller.is_loading

        store.during_list = None
        executor.run(0)
        assert len(controller.records) == len(catalog)
        assert not controller.is_loading

    def test_refresh_drops_restored_child_selection(self, record_store):
        """Should drop child rows restored before any records were loaded."""
        controller = TableController(record_store)
        controller.apply_preferences(UserPreferences(row_selection={"INGR-001-A": True, "INGR-003": True}))

        controller.refresh()

        assert controller.state.selection == {"INGR-003": True}


class TestViewTransitions:
    """Tests for filter, query, grouping and column actions."""

    def test_set_filters_resets_page(self, controller):
        """Should return to page 0 after a filter change, even from page 3."""
        controller.set_pagination(page_index=3, page_size=1)
        assert controller.state.pagination.page_index == 3

        controller.set_filters({"statuses": ["Active"]})

        assert controller.state.pagination.page_index == 0
        assert controller.table.visible_ids == ["INGR-001"]

    def test_out_of_range_page_clamped(self, controller):
        """Should pull a page past the end back to the last page."""
        controller.set_pagination(page_index=9, page_size=1)

        assert controller.state.pagination.page_index == 4
        assert controller.table.visible_ids == ["INGR-009"]

    def test_one_notification_per_action(self, controller):
        """Should notify subscribers once with the new state."""
        seen = []
        unsubscribe = controller.subscribe(seen.append)

        controller.clear_filters()
        unsubscribe()
        controller.set_query("rose")

        assert len(seen) == 1
        assert seen[0].query == ""

    def test_group_by_unknown_key(self, controller):
        """Should reject grouping keys the configuration does not offer."""
        with pytest.raises(ValueError):
            controller.set_group_by("colour")
        with pytest.raises(ValueError):
            controller.toggle_group_by("colour")

    def test_multi_sort_disabled_by_config(self, make_controller):
        """Should replace the sort when multi-column sorting is off."""
        controller = make_controller(config=get_preset("minimal"))

        controller.toggle_sort("stock", multi=True)

        assert [spec.id for spec in controller.state.sort_by] == ["stock"]

    def test_expand_all_and_collapse_all(self, controller):
        """Should expand every parent and collapse them again."""
        controller.expand_all()
        assert controller.state.expanded == frozenset({"INGR-001", "INGR-002"})
        assert len(controller.table.visible_rows) == 8

        controller.collapse_all()
        assert controller.table.visible_ids == NAME_ORDER

    def test_set_columns_merges_layout(self, controller):
        """Should drop unknown keys and append missing columns."""
        controller.set_columns([ColumnConfig(key="stock", order=0), ColumnConfig(key="colour", order=1)])

        keys = [column.key for column in sorted(controller.state.columns, key=lambda c: c.order)]
        assert keys[0] == "stock"
        assert "colour" not in keys
        assert len(keys) == 15

    def test_filter_chips(self, controller):
        """Should describe active filters with option labels."""
        controller.set_filters({"stock_levels": ["Low"]})

        assert [(chip.key, chip.value) for chip in controller.filter_chips] == [("stock_levels", "Low (1-49 kg)")]

        controller.remove_filter("stock_levels", "Low")
        assert controller.filter_chips == []


class TestRecordActions:
    """Tests for record actions through the controller."""

    def test_toggle_favorite_refreshes(self, controller):
        """Should reload records after a successful action."""
        controller.toggle_favorite("INGR-003")

        assert next(r for r in controller.records if r.id == "INGR-003").favorite is True

    def test_failed_action_sets_error(self, controller):
        """Should keep rows and record the error for an unknown id."""
        result = controller.archive_record("nope")

        assert not result.success
        assert controller.error == "Ingredient with ID nope not found"
        assert controller.table.visible_ids == NAME_ORDER

    def test_delete_prunes_selection(self, controller):
        """Should drop deleted records from the selection."""
        controller.toggle_row_selection("INGR-003")
        controller.toggle_row_selection("INGR-004")

        controller.delete_record("INGR-003")

        assert controller.state.selection == {"INGR-004": True}

    def test_duplicate_adds_root(self, controller):
        """Should show the copy as a new row."""
        controller.duplicate_record("INGR-004")

        names = [row.record.name for row in controller.table.visible_rows]
        assert "Jasmine Sambac Absolute (Copy)" in names


class TestSelectionAndExport:
    """Tests for selection, comparison and export."""

    def test_select_all_visible_skips_children(self, controller):
        """Should select visible root rows only."""
        controller.expand_all()

        controller.select_all_visible()

        assert set(controller.state.selected_ids) == set(NAME_ORDER)

    def test_select_all_visible_past_max_selections(self, make_ingredient):
        """Should select every visible row even beyond max_selections."""
        records = [make_ingredient(id=f"R-{n:02d}", name=f"Ingredient {n:02d}") for n in range(20)]
        controller = TableController(LocalRecordStore(records))
        controller.refresh()
        controller.set_pagination(page_index=0, page_size=50)

        controller.select_all_visible()

        assert controller.selected_count == 20
        assert DEFAULT_TABLE_CONFIG.selection.max_selections == 10

    def test_restored_child_selection_dropped(self, controller):
        """Should drop child rows from a selection restored from preferences."""
        controller.apply_preferences(UserPreferences(row_selection={"INGR-001-A": True, "INGR-001": True}))

        assert controller.state.selection == {"INGR-001": True}

    def test_toggle_all_rows_selection(self, controller):
        """Should select every visible root, then deselect them all."""
        controller.toggle_all_rows_selection()
        assert controller.selected_count == 5

        controller.toggle_all_rows_selection()
        assert controller.selected_count == 0

    def test_clear_selection(self, controller):
        """Should empty the selection."""
        controller.set_selection({"INGR-001": True, "INGR-004": True})

        controller.clear_selection()

        assert controller.state.selection == {}
        assert controller.selected_records == []

    def test_compare_selected(self, controller):
        """Should compare when 2 to 5 records are selected."""
        controller.set_selection({"INGR-001": True, "INGR-002": True})

        assert controller.can_compare
        table = controller.compare_selected()
        assert table.record_ids == ("INGR-001", "INGR-002")

    def test_compare_needs_two(self, controller):
        """Should refuse to compare a single record."""
        controller.toggle_row_selection("INGR-001")

        assert not controller.can_compare
        with pytest.raises(ValidationError):
            controller.compare_selected()

    def test_comparison_disabled(self, make_controller):
        """Should never allow comparison when it is turned off."""
        controller = make_controller(config=get_preset("minimal"))
        controller.set_selection({"INGR-001": True, "INGR-002": True})

        assert not controller.can_compare

    def test_export_visible_columns(self, controller):
        """Should export filtered records with the visible record columns."""
        controller.set_column_visibility("type", False)
        controller.set_filters({"suppliers": ["IFF"]})

        lines = controller.export().split("\n")

        assert lines == [
            "Favorite,Name,Category,Family,Status,Supplier,Cost per Kg,Stock",
            "false,Iso E Super,Aroma Chemicals,Woody,Inactive,IFF,42,0",
        ]

    def test_export_selected_json(self, controller):
        """Should export only the selected records."""
        controller.set_selection({"INGR-004": True})

        assert '"Jasmine Sambac Absolute"' in controller.export("json", selected_only=True)
        with pytest.raises(ValueError):
            controller.export("xml")


class TestSavedViews:
    """Tests for saved view actions."""

    def test_reload_restores_query_exactly(self, controller):
        """Should restore "bergamot" after switching to another view and back."""
        controller.set_query("bergamot")
        my_view = controller.save_current_as_view("My View").data
        controller.set_query("lemon")
        other = controller.save_current_as_view("Other").data

        controller.load_view(other.id)
        assert controller.state.query == "lemon"

        controller.load_view(my_view.id)

        assert controller.state.query == "bergamot"
        assert controller.current_view_id == my_view.id
        assert controller.view_store.get_last_used_view().data == my_view.id

    def test_unsaved_changes(self, controller):
        """Should report changes made after loading a view."""
        view = controller.save_current_as_view("Mine").data
        controller.load_view(view.id)
        assert not controller.has_unsaved_changes

        controller.move_column("stock", 0)

        assert controller.has_unsaved_changes
        controller.update_current_view()
        assert not controller.has_unsaved_changes

    def test_unsaved_changes_without_view_list(self, controller, make_controller):
        """Should track a loaded view before the view list was ever fetched."""
        view = controller.save_current_as_view("My View").data
        fresh = make_controller()
        assert fresh.saved_views == []

        fresh.load_view(view.id)
        assert not fresh.has_unsaved_changes

        fresh.set_query("something else")

        assert fresh.has_unsaved_changes
        assert fresh.current_view.name == "My View"

    def test_restore_prefers_last_used(self, controller, make_controller):
        """Should restore the last used view over the default."""
        controller.set_query("rose")
        default = controller.save_current_as_view("Default", is_default=True).data
        controller.set_query("amber")
        last = controller.save_current_as_view("Last").data
        controller.load_view(last.id)

        fresh = make_controller()
        result = fresh.restore_initial_view()

        assert result.data.id == last.id
        assert fresh.state.query == "amber"
        assert [v.is_default for v in fresh.saved_views] == [True, False]
        assert default.id in [v.id for v in fresh.saved_views]

    def test_restore_falls_back_to_default(self, controller, make_controller):
        """Should load the default view when no last used view exists."""
        controller.set_query("rose")
        controller.save_current_as_view("Default", is_default=True)

        fresh = make_controller()
        fresh.restore_initial_view()

        assert fresh.state.query == "rose"

    def test_restore_with_nothing_saved(self, controller):
        """Should succeed without loading anything."""
        result = controller.restore_initial_view()

        assert result.success
        assert result.data is None

    def test_delete_current_view(self, controller):
        """Should forget the loaded view when it is deleted."""
        view = controller.save_current_as_view("Mine").data

        controller.delete_view(view.id)

        assert controller.current_view_id is None
        assert controller.saved_views == []

    def test_load_unknown_view(self, controller):
        """Should record the error and keep the state."""
        before = controller.state

        result = controller.load_view("nope")

        assert not result.success
        assert controller.error == "View nope not found"
        assert controller.state == before

    def test_views_not_configured(self, make_controller):
        """Should fail view actions without a view store."""
        controller = make_controller(with_views=False)

        assert controller.save_current_as_view("x").error == "Saved views are not configured"
        assert not controller.restore_initial_view().success

    def test_update_without_loaded_view(self, controller):
        """Should fail when no view is loaded."""
        assert controller.update_current_view().error == "No saved view is loaded"


class TestPreferences:
    """Tests for preferences through the controller."""

    def test_changes_auto_saved(self, controller, preferences_store, timers):
        """Should write the latest state when the debounce timer fires."""
        controller.set_query("ro")
        controller.set_query("rose")
        controller.set_show_filters(True)

        timers.fire_last()

        stored = preferences_store.load_preferences(USER_ID).data
        assert stored.query == "rose"
        assert stored.show_filters is True

    def test_restore_on_new_controller(self, controller, make_controller):
        """Should restore state and UI toggles from stored preferences."""
        controller.set_group_by("family")
        controller.toggle_expanded("INGR-001")
        controller.set_show_column_manager(True)
        controller.close()

        fresh = make_controller()
        fresh.load_preferences()

        assert fresh.state.group_by == "family"
        assert fresh.state.expanded == frozenset({"INGR-001"})
        assert fresh.show_column_manager is True

    def test_applying_preferences_does_not_resave(self, controller, make_controller, timers):
        """Should not schedule a save while restoring preferences."""
        controller.set_query("rose")
        controller.save_preferences()
        fresh = make_controller()
        scheduled = len(timers.functions)

        fresh.load_preferences()

        assert len(timers.functions) == scheduled
        assert fresh.state.query == "rose"

    def test_no_preferences_stored(self, controller):
        """Should succeed without changing the state."""
        before = controller.state

        result = controller.load_preferences()

        assert result.success
        assert result.data is None
        assert controller.state == before
