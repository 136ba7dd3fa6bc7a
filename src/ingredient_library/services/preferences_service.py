"""
Preferences Service - per-user snapshot of the full interactive table state.

Preferences restore a user's session independently of named saved views:
query, filters, sorting, grouping, columns, pagination, selection, expanded
rows and UI toggles, plus a schema version and a last-updated timestamp.

Migration never fails for a readable blob. Every missing or malformed field
takes its default and the version is rewritten to the current schema
version. Blobs written by the older browser client (camelCase keys such as
globalFilter, columnVisibility, rowSelection) are translated as well.

Usage:
    from ingredient_library.services.preferences_service import PreferencesStore

    store = PreferencesStore(session_factory)
    store.save_preferences("perfumer-1", preferences_from_state(state))

    result = store.load_preferences("perfumer-1")
    if result.success and result.data is not None:
        state = apply_preferences(state, result.data)
"""

import json
import logging
import re
import threading
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..models.user_preferences import UserPreferencesRecord
from ..utils.config import DEFAULT_TABLE_CONFIG, DataSourceConfig, TableConfig
from ..utils.constants import PREFERENCES_SCHEMA_VERSION
from ..utils.datetime_utils import utc_now_iso
from .database import run_in_session
from .dto import ColumnConfig, Pagination, SortSpec, StoreResult
from .exceptions import PreferencesNotFound, SerializationError, TransientIOError
from .filter_service import DEFAULT_FILTER_DEFINITIONS, FilterDefinition, normalize_filters
from .logging_utils import get_service_logger, log_operation
from .view_state_service import ViewState, default_columns, merge_columns

logger = get_service_logger(__name__)


@dataclass
class UserPreferences:
    """
    Versioned per-user table state.

    All values are JSON-compatible so the dataclass maps one-to-one onto the
    stored blob.
    """

    query: str = ""
    filters: Dict[str, Any] = field(default_factory=dict)
    sort_by: List[Dict[str, Any]] = field(default_factory=list)
    group_by: Optional[str] = None
    columns: List[Dict[str, Any]] = field(default_factory=list)
    pagination: Dict[str, int] = field(default_factory=lambda: Pagination().to_dict())
    row_selection: Dict[str, bool] = field(default_factory=dict)
    expanded_rows: Dict[str, bool] = field(default_factory=dict)
    collapsed_groups: List[str] = field(default_factory=list)
    show_filters: bool = False
    show_column_manager: bool = False
    custom_table_config: Optional[Dict[str, Any]] = None
    last_updated: Optional[str] = None
    version: str = PREFERENCES_SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def default_preferences(config: TableConfig = DEFAULT_TABLE_CONFIG) -> UserPreferences:
    sorting = config.sorting
    sort_by = []
    if sorting.default_sort_column:
        sort_by = [SortSpec(sorting.default_sort_column, sorting.default_sort_desc).to_dict()]
    return UserPreferences(
        sort_by=sort_by,
        group_by=config.grouping.default_group_by if config.grouping.enabled else None,
        columns=[column.to_dict() for column in default_columns()],
        pagination=Pagination(page_size=config.pagination.default_page_size).to_dict(),
    )


# ============================================================================
# Migration
# ============================================================================

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

# Older browser client key -> current field
_LEGACY_KEYS = {
    "globalFilter": "query",
    "sorting": "sort_by",
    "rowSelection": "row_selection",
    "expandedRows": "expanded_rows",
    "showFilters": "show_filters",
    "showColumnManager": "show_column_manager",
    "customTableConfig": "custom_table_config",
    "lastUpdated": "last_updated",
}


def _camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _translate_legacy(data: Dict[str, Any]) -> Dict[str, Any]:
    translated = dict(data)
    for old_key, new_key in _LEGACY_KEYS.items():
        if old_key in translated and new_key not in translated:
            translated[new_key] = translated.pop(old_key)

    # [{"id": "categories", "value": [...]}] -> {"categories": [...]}
    column_filters = translated.pop("columnFilters", None)
    if "filters" not in translated and isinstance(column_filters, list):
        translated["filters"] = {
            _camel_to_snake(str(item["id"])): item.get("value")
            for item in column_filters
            if isinstance(item, dict) and "id" in item
        }

    grouping = translated.pop("grouping", None)
    if "group_by" not in translated and isinstance(grouping, list):
        translated["group_by"] = grouping[0] if grouping else None

    pagination = translated.get("pagination")
    if isinstance(pagination, dict) and "pageIndex" in pagination:
        translated["pagination"] = {
            "page_index": pagination.get("pageIndex"),
            "page_size": pagination.get("pageSize"),
        }

    visibility = translated.pop("columnVisibility", None)
    if "columns" not in translated and isinstance(visibility, dict):
        visibility = {_camel_to_snake(key): value for key, value in visibility.items()}
        translated["columns"] = [
            replace(column, visible=bool(visibility.get(column.key, column.visible))).to_dict()
            for column in default_columns()
        ]
    return translated


def _is_bool_map(value: Any) -> bool:
    return isinstance(value, dict) and all(
        isinstance(key, str) and isinstance(flag, bool) for key, flag in value.items()
    )


def _clean_sort(value: Any) -> Optional[List[Dict[str, Any]]]:
    if not isinstance(value, list):
        return None
    if not all(isinstance(item, dict) and isinstance(item.get("id"), str) for item in value):
        return None
    return [SortSpec.from_dict(item).to_dict() for item in value]


def _clean_columns(value: Any) -> Optional[List[Dict[str, Any]]]:
    if not isinstance(value, list):
        return None
    try:
        columns = [ColumnConfig.from_dict(item) for item in value]
    except (KeyError, TypeError, ValueError, AttributeError):
        return None
    return [column.to_dict() for column in merge_columns(columns)]


def _clean_pagination(value: Any) -> Optional[Dict[str, int]]:
    if not isinstance(value, dict):
        return None
    page_index, page_size = value.get("page_index"), value.get("page_size")
    if not isinstance(page_index, int) or not isinstance(page_size, int):
        return None
    if isinstance(page_index, bool) or isinstance(page_size, bool):
        return None
    try:
        return Pagination(page_index=page_index, page_size=page_size).to_dict()
    except ValueError:
        return None


_NULLABLE_FIELDS = ("group_by", "custom_table_config", "last_updated")


def _clean_field(name: str, value: Any) -> Any:
    """Cleaned value for one field, or None when it must fall back to the default."""
    if name == "query":
        return value if isinstance(value, str) else None
    if name == "filters":
        return dict(value) if isinstance(value, dict) else None
    if name == "sort_by":
        return _clean_sort(value)
    if name == "group_by":
        return value if isinstance(value, str) and value else None
    if name == "columns":
        return _clean_columns(value)
    if name == "pagination":
        return _clean_pagination(value)
    if name in ("row_selection", "expanded_rows"):
        return dict(value) if _is_bool_map(value) else None
    if name == "collapsed_groups":
        if isinstance(value, list) and all(isinstance(item, str) for item in value):
            return list(value)
        return None
    if name in ("show_filters", "show_column_manager"):
        return value if isinstance(value, bool) else None
    if name == "custom_table_config":
        return dict(value) if isinstance(value, dict) else None
    if name == "last_updated":
        return value if isinstance(value, str) else None
    return None


def migrate_preferences(
    data: Dict[str, Any], defaults: Optional[UserPreferences] = None
) -> UserPreferences:
    """
    Bring a stored preferences blob up to the current schema.

    Args:
        data: Parsed blob (any version, including the legacy camelCase shape)
        defaults: Values for missing or malformed fields

    Returns:
        UserPreferences with every field valid and version set to current
    """
    defaults = defaults or default_preferences()
    stored_version = data.get("version")
    translated = _translate_legacy(data)

    values = {}
    replaced = []
    for f in fields(UserPreferences):
        if f.name == "version":
            continue
        raw = translated.get(f.name)
        if f.name in _NULLABLE_FIELDS and f.name in translated and raw in (None, ""):
            values[f.name] = None
            continue
        cleaned = _clean_field(f.name, raw)
        if cleaned is None:
            if raw is not None:
                replaced.append(f.name)
            cleaned = getattr(defaults, f.name)
            if isinstance(cleaned, (dict, list)):
                cleaned = json.loads(json.dumps(cleaned))
        values[f.name] = cleaned

    if stored_version != PREFERENCES_SCHEMA_VERSION or replaced:
        log_operation(
            logger,
            operation="migrate_preferences",
            outcome="migrated",
            from_version=stored_version,
            to_version=PREFERENCES_SCHEMA_VERSION,
            replaced_fields=replaced,
        )
    return UserPreferences(version=PREFERENCES_SCHEMA_VERSION, **values)


def parse_preferences(
    preferences_json: str, defaults: Optional[UserPreferences] = None
) -> UserPreferences:
    """
    Parse and migrate a serialized preferences blob.

    Raises:
        SerializationError: If the text is not a JSON object
    """
    try:
        data = json.loads(preferences_json)
    except (json.JSONDecodeError, TypeError) as e:
        raise SerializationError(f"Invalid preferences JSON: {e}", e)
    if not isinstance(data, dict):
        raise SerializationError("Preferences must be a JSON object")
    return migrate_preferences(data, defaults)


# ============================================================================
# View state conversion
# ============================================================================


def preferences_from_state(
    state: ViewState,
    show_filters: bool = False,
    show_column_manager: bool = False,
    custom_table_config: Optional[Dict[str, Any]] = None,
) -> UserPreferences:
    """Capture the full interactive state."""
    return UserPreferences(
        query=state.query,
        filters=json.loads(json.dumps(state.filters)),
        sort_by=[spec.to_dict() for spec in state.sort_by],
        group_by=state.group_by,
        columns=[column.to_dict() for column in state.columns],
        pagination=state.pagination.to_dict(),
        row_selection={key: True for key, value in state.selection.items() if value},
        expanded_rows={record_id: True for record_id in sorted(state.expanded)},
        collapsed_groups=sorted(state.collapsed_groups),
        show_filters=show_filters,
        show_column_manager=show_column_manager,
        custom_table_config=custom_table_config,
    )


def apply_preferences(
    state: ViewState,
    preferences: UserPreferences,
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> ViewState:
    """Restore a view state from (migrated) preferences in one transition."""
    return replace(
        state,
        query=preferences.query,
        filters=normalize_filters(preferences.filters, definitions),
        sort_by=tuple(SortSpec.from_dict(item) for item in preferences.sort_by),
        group_by=preferences.group_by,
        columns=merge_columns(ColumnConfig.from_dict(item) for item in preferences.columns),
        pagination=Pagination(**preferences.pagination),
        selection={key: True for key, value in preferences.row_selection.items() if value},
        expanded=frozenset(key for key, value in preferences.expanded_rows.items() if value),
        collapsed_groups=frozenset(preferences.collapsed_groups),
    )


# ============================================================================
# Store
# ============================================================================


class PreferencesStore:
    """
    Preferences persisted as JSON text, one row per user.

    save/load/clear return StoreResult envelopes. export/import raise, so
    callers can tell a missing or unreadable blob apart from a storage
    failure.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        config: TableConfig = DEFAULT_TABLE_CONFIG,
        data_source: Optional[DataSourceConfig] = None,
    ):
        self.session_factory = session_factory
        self.config = config
        self.data_source = data_source or config.data_source

    def _run(self, work: Callable[[Session], Any]) -> Any:
        return run_in_session(
            self.session_factory,
            work,
            retry_attempts=self.data_source.retry_attempts,
            retry_delay=self.data_source.retry_delay,
            retry_max_delay=self.data_source.retry_max_delay,
        )

    def _record(self, session: Session, user_id: str) -> Optional[UserPreferencesRecord]:
        return (
            session.query(UserPreferencesRecord)
            .filter(UserPreferencesRecord.user_id == user_id)
            .first()
        )

    def _write(self, user_id: str, preferences: UserPreferences) -> None:
        payload = json.dumps(preferences.to_dict())

        def _impl(session: Session) -> None:
            record = self._record(session, user_id)
            if record is None:
                record = UserPreferencesRecord(user_id=user_id)
                session.add(record)
            record.payload = payload
            record.version = preferences.version
            record.last_updated = preferences.last_updated

        self._run(_impl)

    def _read(self, user_id: str) -> Optional[UserPreferences]:
        def _impl(session: Session) -> Optional[str]:
            record = self._record(session, user_id)
            return record.payload if record is not None else None

        payload = self._run(_impl)
        if payload is None:
            return None
        return parse_preferences(payload, default_preferences(self.config))

    def save_preferences(self, user_id: str, preferences: UserPreferences) -> StoreResult:
        """Store preferences stamped with the current version and time."""
        stamped = replace(preferences, version=PREFERENCES_SCHEMA_VERSION, last_updated=utc_now_iso())
        try:
            self._write(user_id, stamped)
        except (TransientIOError, SQLAlchemyError) as e:
            log_operation(
                logger, "save_preferences", "error", level=logging.ERROR, user_id=user_id, error=str(e)
            )
            return StoreResult.fail(f"Failed to save user preferences: {e}")
        log_operation(logger, "save_preferences", "success", level=logging.DEBUG, user_id=user_id)
        return StoreResult.ok(stamped)

    def load_preferences(self, user_id: str) -> StoreResult:
        """
        Load and migrate a user's preferences.

        Returns:
            StoreResult whose data is None when nothing is stored; a stored
            blob that cannot be parsed is a failure
        """
        try:
            preferences = self._read(user_id)
        except SerializationError as e:
            log_operation(
                logger, "load_preferences", "unreadable", level=logging.ERROR, user_id=user_id, error=str(e)
            )
            return StoreResult.fail(str(e))
        except (TransientIOError, SQLAlchemyError) as e:
            log_operation(
                logger, "load_preferences", "error", level=logging.ERROR, user_id=user_id, error=str(e)
            )
            return StoreResult.fail(f"Failed to load user preferences: {e}")
        return StoreResult.ok(preferences)

    def clear_preferences(self, user_id: str) -> StoreResult:
        def _impl(session: Session) -> None:
            record = self._record(session, user_id)
            if record is not None:
                session.delete(record)

        try:
            self._run(_impl)
        except (TransientIOError, SQLAlchemyError) as e:
            log_operation(
                logger, "clear_preferences", "error", level=logging.ERROR, user_id=user_id, error=str(e)
            )
            return StoreResult.fail(f"Failed to clear user preferences: {e}")
        log_operation(logger, "clear_preferences", "success", user_id=user_id)
        return StoreResult.ok()

    def export_preferences(self, user_id: str) -> str:
        """
        Serialize a user's stored preferences.

        Raises:
            PreferencesNotFound: If nothing is stored for user_id
            SerializationError: If the stored blob cannot be parsed
        """
        preferences = self._read(user_id)
        if preferences is None:
            raise PreferencesNotFound(user_id)
        return json.dumps(preferences.to_dict(), indent=2)

    def import_preferences(self, user_id: str, preferences_json: str) -> UserPreferences:
        """
        Validate, migrate and store a serialized preferences blob.

        The migrated value is stored as-is (its last_updated is kept), so
        importing an export reproduces the exported preferences exactly.

        Raises:
            SerializationError: If preferences_json is not a JSON object
        """
        preferences = parse_preferences(preferences_json, default_preferences(self.config))
        self._write(user_id, preferences)
        log_operation(logger, "import_preferences", "success", user_id=user_id)
        return preferences


# ============================================================================
# Auto-save
# ============================================================================


class PreferencesAutoSaver:
    """
    Debounced, coalescing preferences writer.

    Every schedule() call re-arms the timer with the latest preferences, so a
    burst of changes produces one write. When the timer fires while a write
    is still in flight, it re-arms instead of starting a second write.

    Args:
        store: PreferencesStore to write to
        user_id: User whose preferences are written
        delay_seconds: Quiet period before writing
        timer_factory: Callable(delay, function) returning an object with
            start() and cancel(); defaults to threading.Timer
    """

    def __init__(
        self,
        store: PreferencesStore,
        user_id: str,
        delay_seconds: float = 1.0,
        timer_factory: Callable[[float, Callable[[], None]], Any] = threading.Timer,
    ):
        self.store = store
        self.user_id = user_id
        self.delay_seconds = delay_seconds
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Any = None
        self._pending: Optional[UserPreferences] = None
        self._in_flight = False
        self.last_result: Optional[StoreResult] = None
        self.write_count = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _arm(self) -> None:
        # Caller holds self._lock
        if self._timer is not None:
            self._timer.cancel()
        timer = self._timer_factory(self.delay_seconds, self._fire)
        if hasattr(timer, "daemon"):
            timer.daemon = True
        self._timer = timer
        timer.start()

    def schedule(self, preferences: UserPreferences) -> None:
        with self._lock:
            self._pending = preferences
            self._arm()

    def _save(self, preferences: UserPreferences) -> StoreResult:
        try:
            result = self.store.save_preferences(self.user_id, preferences)
        finally:
            with self._lock:
                self._in_flight = False
        self.last_result = result
        self.write_count += 1
        if result.success:
            log_operation(logger, "auto_save", "success", level=logging.DEBUG, user_id=self.user_id)
        else:
            log_operation(
                logger, "auto_save", "failed", level=logging.WARNING, user_id=self.user_id, error=result.error
            )
        return result

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
            if self._in_flight:
                if self._pending is not None:
                    self._arm()
                return
            preferences, self._pending = self._pending, None
            if preferences is None:
                return
            self._in_flight = True
        self._save(preferences)

    def flush(self) -> Optional[StoreResult]:
        """Write pending preferences now; returns None when nothing was written."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self._pending is None:
                return None
            if self._in_flight:
                self._arm()
                return None
            preferences, self._pending = self._pending, None
            self._in_flight = True
        return self._save(preferences)

    def cancel(self) -> None:
        """Drop pending preferences without writing them."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = None
