"""
Table controller - the engine facade a host UI drives.

The controller owns the current ViewState, the loaded records and the
derived table. Every action runs under one lock, replaces the state in a
single step and notifies subscribers once with the new state.

Data flow:
    store.list() -> records -> derive_table(records, definitions, state)

Failures from the record store, saved views or preferences are recorded in
`error`; the last good records and rows stay in place.

Usage:
    controller = TableController(LocalRecordStore.from_json_file(path))
    controller.refresh()
    controller.set_filters({"statuses": ["Active"]})
    for row in controller.table.visible_rows:
        ...
"""

import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..models.ingredient import Ingredient
from ..utils.config import DEFAULT_TABLE_CONFIG, TableConfig
from ..utils.constants import DEFAULT_USER_ID
from . import view_state_service as transitions
from .dto import ColumnConfig, SortSpec, StoreResult
from .export_service import (
    EXPORT_FORMAT_CSV,
    EXPORT_FORMAT_JSON,
    ComparisonTable,
    build_comparison,
    export_to_csv,
    export_to_json,
)
from .filter_service import (
    DEFAULT_FILTER_DEFINITIONS,
    FilterChip,
    FilterDefinition,
    FiltersState,
    get_active_filter_chips,
    get_filter_definitions_with_options,
)
from .hierarchy_service import iter_nodes
from .logging_utils import get_service_logger, log_operation
from .preferences_service import (
    PreferencesAutoSaver,
    PreferencesStore,
    UserPreferences,
    apply_preferences,
    preferences_from_state,
)
from .record_store import RecordStore
from .request_tracker import RequestTracker
from .saved_view_service import SavedView, SavedViewStore, apply_saved_view, is_view_modified
from .selection_service import SelectionPolicy, can_compare, count_selected, selected_records
from .table_service import DerivedTable, derive_table
from .view_state_service import ViewState

logger = get_service_logger(__name__)

RECORDS_REQUEST = "records"
STALE_REFRESH_ERROR = "Superseded by a newer refresh"

Subscriber = Callable[[ViewState], None]


class TableController:
    """
    Stateful facade over the table engine.

    Args:
        store: Record store supplying the catalog
        config: Table configuration (selection policy, page size, ...)
        view_store: Saved view persistence; saved view actions fail without it
        preferences_store: Preferences persistence; enables auto-save
        user_id: User whose views and preferences are used
        definitions: Filter definitions (options are filled from records)
        autosaver: Custom auto-saver; built from preferences_store if None
    """

    def __init__(
        self,
        store: RecordStore,
        config: TableConfig = DEFAULT_TABLE_CONFIG,
        view_store: Optional[SavedViewStore] = None,
        preferences_store: Optional[PreferencesStore] = None,
        user_id: str = DEFAULT_USER_ID,
        definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
        autosaver: Optional[PreferencesAutoSaver] = None,
    ):
        self.store = store
        self.config = config
        self.view_store = view_store
        self.preferences_store = preferences_store
        self.user_id = user_id

        self._base_definitions = tuple(definitions)
        self.definitions = get_filter_definitions_with_options([], self._base_definitions)
        self.records: List[Ingredient] = []
        self.policy = SelectionPolicy(config.selection, self.records)
        self.state = transitions.create_view_state(config, self._base_definitions)
        self.table: DerivedTable = derive_table(self.records, self.definitions, self.state)

        self.saved_views: List[SavedView] = []
        self._current_view: Optional[SavedView] = None
        self.is_loading = False
        self.error: Optional[str] = None
        self.show_filters = False
        self.show_column_manager = False

        self._lock = threading.RLock()
        self._subscribers: List[Subscriber] = []
        self._requests = RequestTracker()

        if autosaver is None and preferences_store is not None:
            autosaver = PreferencesAutoSaver(
                preferences_store,
                user_id,
                delay_seconds=config.performance.autosave_delay_ms / 1000.0,
            )
        self.autosaver = autosaver

    # ------------------------------------------------------------------
    # Subscriptions and state plumbing
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback(state); returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self, state: ViewState) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(state)

    def _set_state(self, state: ViewState) -> ViewState:
        # Caller holds self._lock
        table = derive_table(self.records, self.definitions, state)
        if table.page_index != state.pagination.page_index:
            state = transitions.clamp_pagination(state, table.total_rows)
        self.state = state
        self.table = table
        return state

    def _transition(self, fn: Callable[..., ViewState], *args: Any, persist: bool = True, **kwargs: Any) -> ViewState:
        with self._lock:
            state = self._set_state(fn(self.state, *args, **kwargs))
        self._notify(state)
        if persist:
            self._schedule_save()
        return state

    def _schedule_save(self) -> None:
        if self.autosaver is not None:
            self.autosaver.schedule(self.to_preferences())

    # ------------------------------------------------------------------
    # Data loading
    # ------------------------------------------------------------------

    def _begin_load(self) -> int:
        token = self._requests.issue(RECORDS_REQUEST)
        with self._lock:
            self.is_loading = True
            state = self.state
        self._notify(state)
        return token

    def _finish_load(self, token: int, result: StoreResult) -> bool:
        """Apply a list() result unless a newer request was issued meanwhile."""
        if not self._requests.complete(RECORDS_REQUEST, token):
            return False
        with self._lock:
            self.is_loading = self._requests.is_pending(RECORDS_REQUEST)
            if result.success:
                self.records = list(result.data or [])
                self.policy = SelectionPolicy(self.config.selection, self.records)
                self.definitions = get_filter_definitions_with_options(self.records, self._base_definitions)
                self.error = None
                known = {record.id for record in self.records}
                selection = self.policy.restrict(
                    {key: True for key in self.state.selected_ids if key in known}
                )
                state = self._set_state(replace(self.state, selection=selection))
                log_operation(logger, "refresh", "success", level=logging.DEBUG, record_count=len(self.records))
            else:
                self.error = result.error or "Failed to fetch data"
                state = self.state
                log_operation(logger, "refresh", "failed", level=logging.WARNING, error=self.error)
        self._notify(state)
        return True

    def refresh(self) -> StoreResult:
        """
        Reload every record from the store.

        Returns:
            The store result, or a failed envelope if a newer refresh was
            started while this one was loading and its result was discarded
        """
        token = self._begin_load()
        result = self.store.list()
        if not self._finish_load(token, result):
            return StoreResult.fail(STALE_REFRESH_ERROR)
        return result

    def refresh_async(self, executor: Executor) -> Future:
        """
        Reload records on an executor.

        The returned future resolves to the store result; the result is only
        applied if no newer refresh was started in the meantime.
        """
        token = self._begin_load()
        future = executor.submit(self.store.list)

        def _done(completed: Future) -> None:
            error = completed.exception()
            if error is not None:
                log_operation(logger, "refresh", "error", level=logging.ERROR, error=str(error))
                result = StoreResult.fail(str(error))
            else:
                result = completed.result()
            self._finish_load(token, result)

        future.add_done_callback(_done)
        return future

    def _record_action(self, operation: str, result: StoreResult) -> StoreResult:
        if result.success:
            self.refresh()
        else:
            with self._lock:
                self.error = result.error
                state = self.state
            log_operation(logger, operation, "failed", level=logging.WARNING, error=result.error)
            self._notify(state)
        return result

    def toggle_favorite(self, record_id: str) -> StoreResult:
        return self._record_action("toggle_favorite", self.store.toggle_favorite(record_id))

    def duplicate_record(self, record_id: str) -> StoreResult:
        return self._record_action("duplicate_record", self.store.duplicate(record_id))

    def archive_record(self, record_id: str) -> StoreResult:
        return self._record_action("archive_record", self.store.archive(record_id))

    def delete_record(self, record_id: str) -> StoreResult:
        return self._record_action("delete_record", self.store.delete(record_id))

    # ------------------------------------------------------------------
    # Query, filters, grouping, sorting, pagination
    # ------------------------------------------------------------------

    def set_query(self, query: str) -> ViewState:
        return self._transition(transitions.set_query, query)

    def set_filters(self, partial: FiltersState) -> ViewState:
        return self._transition(transitions.set_filters, partial)

    def remove_filter(self, key: str, value: Optional[str] = None) -> ViewState:
        return self._transition(transitions.remove_filter, key, value, self._base_definitions)

    def clear_filters(self) -> ViewState:
        return self._transition(transitions.clear_filters, self._base_definitions)

    @property
    def filter_chips(self) -> List[FilterChip]:
        return get_active_filter_chips(self.state.filters, self.definitions)

    def toggle_group_by(self, key: str) -> ViewState:
        return self._transition(transitions.toggle_group_by, key, self.config.grouping.available_group_by)

    def set_group_by(self, key: Optional[str]) -> ViewState:
        if key is not None and key not in self.config.grouping.available_group_by:
            raise ValueError(f"Unknown group-by key: {key}")
        return self._transition(transitions.set_group_by, key)

    def set_sort(self, sort_by: Sequence[SortSpec]) -> ViewState:
        return self._transition(transitions.set_sort, sort_by)

    def toggle_sort(self, column_id: str, multi: bool = False) -> ViewState:
        multi = multi and self.config.sorting.enable_multi_column_sorting
        return self._transition(transitions.toggle_sort, column_id, multi)

    def set_pagination(self, page_index: Optional[int] = None, page_size: Optional[int] = None) -> ViewState:
        return self._transition(transitions.set_pagination, page_index, page_size)

    # ------------------------------------------------------------------
    # Columns and expansion
    # ------------------------------------------------------------------

    def set_column_visibility(self, key: str, visible: bool) -> ViewState:
        return self._transition(transitions.set_column_visibility, key, visible)

    def set_column_width(self, key: str, width: int) -> ViewState:
        return self._transition(transitions.set_column_width, key, width)

    def move_column(self, key: str, new_index: int) -> ViewState:
        return self._transition(transitions.move_column, key, new_index)

    def reset_columns(self) -> ViewState:
        return self._transition(transitions.reset_columns)

    def set_columns(self, columns: Sequence[ColumnConfig]) -> ViewState:
        merged = transitions.merge_columns(columns)
        return self._transition(lambda state: replace(state, columns=merged))

    def toggle_expanded(self, record_id: str) -> ViewState:
        return self._transition(transitions.toggle_expanded, record_id)

    def expand_all(self) -> ViewState:
        expandable = [node.id for node in iter_nodes(self.table.roots) if node.is_expandable]
        return self._transition(transitions.set_expanded, expandable)

    def collapse_all(self) -> ViewState:
        return self._transition(transitions.set_expanded, ())

    def toggle_group_expansion(self, group_key: str) -> ViewState:
        return self._transition(transitions.toggle_group_expansion, group_key)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _select(self, update: Callable[[Dict[str, bool]], Dict[str, bool]]) -> ViewState:
        return self._transition(lambda state: transitions.set_selection(state, update(state.selection)))

    def toggle_row_selection(self, record_id: str) -> ViewState:
        return self._select(lambda selection: self.policy.toggle(selection, record_id))

    def set_selection(self, selection: Dict[str, bool]) -> ViewState:
        wanted = [key for key, value in selection.items() if value]
        return self._select(lambda _: self.policy.set_all({}, wanted, True))

    def select_all_visible(self) -> ViewState:
        return self._select(lambda selection: self.policy.select_all_visible(selection, self.table.visible_ids))

    def toggle_all_rows_selection(self) -> ViewState:
        return self._select(lambda selection: self.policy.toggle_all_visible(selection, self.table.visible_ids))

    def clear_selection(self) -> ViewState:
        return self._select(lambda _: self.policy.clear_all())

    @property
    def selected_records(self) -> List[Ingredient]:
        return selected_records(self.records, self.state.selection)

    @property
    def selected_count(self) -> int:
        return count_selected(self.state.selection)

    @property
    def can_compare(self) -> bool:
        comparison = self.config.comparison
        if not comparison.enabled:
            return False
        return can_compare(self.selected_count, comparison.min_items, comparison.max_items)

    def compare_selected(self) -> ComparisonTable:
        """
        Raises:
            ValidationError: If the selection size is outside the comparison bounds
        """
        comparison = self.config.comparison
        return build_comparison(
            self.selected_records, min_items=comparison.min_items, max_items=comparison.max_items
        )

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_columns(self) -> List[str]:
        """Visible columns that are record fields, in display order."""
        fields = Ingredient.__dataclass_fields__
        return [key for key in transitions.visible_column_keys(self.state) if key in fields]

    def export(self, fmt: str = EXPORT_FORMAT_CSV, selected_only: bool = False) -> str:
        """
        Export the filtered records (or only the selected ones).

        Raises:
            ValueError: If fmt is not "csv" or "json"
        """
        records = self.selected_records if selected_only else self.table.records
        columns = self.export_columns()
        if fmt == EXPORT_FORMAT_CSV:
            return export_to_csv(records, columns)
        if fmt == EXPORT_FORMAT_JSON:
            return export_to_json(records, columns)
        raise ValueError(f"Unsupported export format: {fmt}")

    # ------------------------------------------------------------------
    # Saved views
    # ------------------------------------------------------------------

    def _views_unavailable(self) -> StoreResult:
        return StoreResult.fail("Saved views are not configured")

    def _view_failed(self, operation: str, result: StoreResult) -> StoreResult:
        with self._lock:
            self.error = result.error
            state = self.state
        log_operation(logger, operation, "failed", level=logging.WARNING, error=result.error)
        self._notify(state)
        return result

    @property
    def current_view(self) -> Optional[SavedView]:
        """The loaded (or last saved) view, as it was when loaded or saved."""
        return self._current_view

    @property
    def current_view_id(self) -> Optional[str]:
        return self._current_view.id if self._current_view is not None else None

    @property
    def has_unsaved_changes(self) -> bool:
        return is_view_modified(self.state, self.current_view, self._base_definitions)

    def refresh_views(self) -> StoreResult:
        if self.view_store is None:
            return self._views_unavailable()
        result = self.view_store.list_views()
        if not result.success:
            return self._view_failed("refresh_views", result)
        with self._lock:
            self.saved_views = list(result.data)
            if self._current_view is not None:
                self._current_view = next(
                    (view for view in self.saved_views if view.id == self._current_view.id), None
                )
            state = self.state
        self._notify(state)
        return result

    def load_view(self, view_id: str) -> StoreResult:
        """Apply a saved view in one transition and record it as last used."""
        if self.view_store is None:
            return self._views_unavailable()
        result = self.view_store.get_view(view_id)
        if not result.success:
            return self._view_failed("load_view", result)
        view: SavedView = result.data

        with self._lock:
            self._current_view = view
            self.saved_views = [view if existing.id == view.id else existing for existing in self.saved_views]
            state = self._set_state(apply_saved_view(self.state, view, self._base_definitions))
        self._notify(state)
        self._schedule_save()

        last_used = self.view_store.set_last_used_view(view.id)
        if not last_used.success:
            self._view_failed("set_last_used_view", last_used)
        log_operation(logger, "load_view", "success", level=logging.DEBUG, view_id=view.id)
        return result

    def save_current_as_view(self, name: str, is_default: bool = False) -> StoreResult:
        if self.view_store is None:
            return self._views_unavailable()
        result = self.view_store.create_view(name, self.state, is_default=is_default)
        if not result.success:
            return self._view_failed("save_current_as_view", result)
        view: SavedView = result.data
        with self._lock:
            views = self.saved_views
            if view.is_default:
                views = [replace(existing, is_default=False) for existing in views]
            self.saved_views = views + [view]
            self._current_view = view
            state = self.state
        self._notify(state)
        return result

    def update_current_view(self) -> StoreResult:
        if self.view_store is None:
            return self._views_unavailable()
        if self.current_view_id is None:
            return StoreResult.fail("No saved view is loaded")
        result = self.view_store.update_view(self.current_view_id, state=self.state)
        if not result.success:
            return self._view_failed("update_current_view", result)
        self._replace_view(result.data)
        return result

    def rename_view(self, view_id: str, name: str) -> StoreResult:
        if self.view_store is None:
            return self._views_unavailable()
        result = self.view_store.rename_view(view_id, name)
        if not result.success:
            return self._view_failed("rename_view", result)
        self._replace_view(result.data)
        return result

    def _replace_view(self, view: SavedView) -> None:
        with self._lock:
            self.saved_views = [view if existing.id == view.id else existing for existing in self.saved_views]
            if self.current_view_id == view.id:
                self._current_view = view
            state = self.state
        self._notify(state)

    def delete_view(self, view_id: str) -> StoreResult:
        if self.view_store is None:
            return self._views_unavailable()
        result = self.view_store.delete_view(view_id)
        if not result.success:
            return self._view_failed("delete_view", result)
        with self._lock:
            self.saved_views = [view for view in self.saved_views if view.id != view_id]
            if self.current_view_id == view_id:
                self._current_view = None
            state = self.state
        self._notify(state)
        return result

    def set_default_view(self, view_id: str) -> StoreResult:
        if self.view_store is None:
            return self._views_unavailable()
        result = self.view_store.set_default_view(view_id)
        if not result.success:
            return self._view_failed("set_default_view", result)
        with self._lock:
            self.saved_views = [replace(view, is_default=view.id == view_id) for view in self.saved_views]
            if self._current_view is not None:
                self._current_view = replace(self._current_view, is_default=self._current_view.id == view_id)
            state = self.state
        self._notify(state)
        return result

    def restore_initial_view(self) -> StoreResult:
        """
        Load the last used view, falling back to the default view.

        Returns:
            Envelope with the loaded SavedView, or data=None when neither exists
        """
        if self.view_store is None:
            return self._views_unavailable()
        listed = self.refresh_views()
        if not listed.success:
            return listed

        last_used = self.view_store.get_last_used_view()
        if last_used.success and last_used.data:
            if any(view.id == last_used.data for view in self.saved_views):
                return self.load_view(last_used.data)

        default = self.view_store.get_default_view()
        if default.success and default.data is not None:
            return self.load_view(default.data.id)
        return StoreResult.ok(None)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def set_show_filters(self, visible: bool) -> None:
        with self._lock:
            self.show_filters = visible
            state = self.state
        self._notify(state)
        self._schedule_save()

    def set_show_column_manager(self, visible: bool) -> None:
        with self._lock:
            self.show_column_manager = visible
            state = self.state
        self._notify(state)
        self._schedule_save()

    def to_preferences(self) -> UserPreferences:
        with self._lock:
            return preferences_from_state(
                self.state,
                show_filters=self.show_filters,
                show_column_manager=self.show_column_manager,
            )

    def apply_preferences(self, preferences: UserPreferences) -> ViewState:
        """Restore state and UI toggles from preferences without re-saving them."""
        with self._lock:
            self.show_filters = preferences.show_filters
            self.show_column_manager = preferences.show_column_manager
        return self._transition(self._restore, preferences, persist=False)

    def _restore(self, state: ViewState, preferences: UserPreferences) -> ViewState:
        restored = apply_preferences(state, preferences, self._base_definitions)
        return replace(restored, selection=self.policy.restrict(restored.selection))

    def load_preferences(self) -> StoreResult:
        """
        Load and apply the user's stored preferences.

        Returns:
            Envelope with the applied UserPreferences (None if none stored)
        """
        if self.preferences_store is None:
            return StoreResult.fail("Preferences are not configured")
        result = self.preferences_store.load_preferences(self.user_id)
        if not result.success:
            return self._view_failed("load_preferences", result)
        if result.data is not None:
            self.apply_preferences(result.data)
        return result

    def save_preferences(self) -> StoreResult:
        """Write preferences now, dropping any pending auto-save."""
        if self.preferences_store is None:
            return StoreResult.fail("Preferences are not configured")
        if self.autosaver is not None:
            self.autosaver.cancel()
        return self.preferences_store.save_preferences(self.user_id, self.to_preferences())

    def close(self) -> None:
        """Flush a pending auto-save."""
        if self.autosaver is not None:
            self.autosaver.flush()
