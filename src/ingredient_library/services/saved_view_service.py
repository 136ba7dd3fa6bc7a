"""
Saved view service - named snapshots of the table's view state.

A saved view stores the persisted subset of ViewState: query, filters,
columns, grouping and the primary sort. Views are scoped to a user id.

Guarantees:
- At most one view per user is the default; setting a default clears the
  previous one in the same transaction
- Deleting the last-used view clears the last-used pointer
- Store operations never raise; they return a StoreResult envelope

Loading a view onto the table is a pure merge (apply_saved_view) so that a
view saved by an older release, with fewer filters or columns, still loads.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..models.saved_view import SavedViewRecord, ViewSettingsRecord
from ..utils.config import DataSourceConfig
from ..utils.constants import DEFAULT_USER_ID
from ..utils.datetime_utils import to_iso, utc_now
from ..utils.validators import validate_required_string
from .database import run_in_session
from .dto import ColumnConfig, Pagination, SortSpec, StoreResult
from .exceptions import SerializationError, TransientIOError, ValidationError, ViewNotFound
from .filter_service import DEFAULT_FILTER_DEFINITIONS, FilterDefinition, normalize_filters
from .logging_utils import get_service_logger, log_operation
from .view_state_service import ViewState, merge_columns, ordered_columns

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class SavedView:
    """
    A saved view as handed to callers.

    Attributes:
        id: Generated identifier
        name: User label
        query: Free-text query
        filters: Filters State
        columns: Column configuration
        group_by: Grouping key or None
        sort_by: Primary sort or None
        is_default: Whether this is the user's default view
        created_at / updated_at: ISO timestamps
    """

    id: str
    name: str
    query: str = ""
    filters: Dict[str, Any] = field(default_factory=dict)
    columns: Tuple[ColumnConfig, ...] = ()
    group_by: Optional[str] = None
    sort_by: Optional[SortSpec] = None
    is_default: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: SavedViewRecord) -> "SavedView":
        return cls(
            id=record.uuid,
            name=record.name,
            query=record.query_text or "",
            filters=dict(record.filters or {}),
            columns=tuple(ColumnConfig.from_dict(column) for column in record.column_config or []),
            group_by=record.group_by,
            sort_by=SortSpec.from_dict(record.sort_by) if record.sort_by else None,
            is_default=bool(record.is_default),
            created_at=to_iso(record.created_at),
            updated_at=to_iso(record.updated_at),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "query": self.query,
            "filters": self.filters,
            "columns": [column.to_dict() for column in self.columns],
            "group_by": self.group_by,
            "sort_by": self.sort_by.to_dict() if self.sort_by else None,
            "is_default": self.is_default,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# ============================================================================
# Snapshots
# ============================================================================


def snapshot_view(
    state: ViewState,
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> Dict[str, Any]:
    """
    Persisted subset of a view state, normalized for comparison.

    Returns:
        Dict with query, filters, columns (ordered), group_by and sort_by
        (the primary sort only)
    """
    return {
        "query": state.query or "",
        "filters": normalize_filters(state.filters, definitions),
        "columns": tuple(ordered_columns(state.columns)),
        "group_by": state.group_by,
        "sort_by": state.sort_by[0] if state.sort_by else None,
    }


def apply_saved_view(
    state: ViewState,
    view: SavedView,
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> ViewState:
    """
    Apply a saved view onto a view state in one transition.

    Filters the view does not mention are neutral, columns it does not
    mention are appended in default order, and pagination returns to the
    first page. Expansion and selection are left alone.
    """
    return replace(
        state,
        query=view.query or "",
        filters=normalize_filters(view.filters, definitions),
        columns=merge_columns(view.columns),
        group_by=view.group_by or None,
        sort_by=(view.sort_by,) if view.sort_by else (),
        collapsed_groups=frozenset(),
        pagination=Pagination(page_index=0, page_size=state.pagination.page_size),
    )


def is_view_modified(
    state: ViewState,
    view: Optional[SavedView],
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> bool:
    """
    Check whether the live state differs from a loaded view.

    Values are compared after normalization, so a view saved before a filter
    or column existed is not reported as modified. No view means no changes.
    """
    if view is None:
        return False
    loaded = apply_saved_view(state, view, definitions)
    return snapshot_view(state, definitions) != snapshot_view(loaded, definitions)


def _record_fields(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    sort_by = snapshot["sort_by"]
    return {
        "query_text": snapshot["query"],
        "filters": snapshot["filters"],
        "column_config": [column.to_dict() for column in snapshot["columns"]],
        "group_by": snapshot["group_by"],
        "sort_by": sort_by.to_dict() if sort_by else None,
    }


# ============================================================================
# Store
# ============================================================================


class SavedViewStore:
    """
    Saved views for one user, persisted with SQLAlchemy.

    Example:
        store = SavedViewStore(session_factory, user_id="perfumer-1")
        result = store.create_view("Citrus oils", state)
        if result.success:
            store.set_default_view(result.data.id)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        user_id: str = DEFAULT_USER_ID,
        data_source: Optional[DataSourceConfig] = None,
        definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
    ):
        self.session_factory = session_factory
        self.user_id = user_id
        self.data_source = data_source or DataSourceConfig()
        self.definitions = definitions

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _execute(self, operation: str, work: Callable[[Session], Any], **context: Any) -> StoreResult:
        try:
            data = run_in_session(
                self.session_factory,
                work,
                retry_attempts=self.data_source.retry_attempts,
                retry_delay=self.data_source.retry_delay,
                retry_max_delay=self.data_source.retry_max_delay,
            )
        except (ViewNotFound, ValidationError) as e:
            log_operation(
                logger, operation, "failed", level=logging.WARNING, user_id=self.user_id, error=str(e), **context
            )
            return StoreResult.fail(str(e))
        except (TransientIOError, SQLAlchemyError) as e:
            log_operation(
                logger, operation, "error", level=logging.ERROR, user_id=self.user_id, error=str(e), **context
            )
            return StoreResult.fail(f"Failed to {operation.replace('_', ' ')}: {e}")

        log_operation(logger, operation, "success", level=logging.DEBUG, user_id=self.user_id, **context)
        return StoreResult.ok(data)

    def _query(self, session: Session):
        return session.query(SavedViewRecord).filter(SavedViewRecord.user_id == self.user_id)

    def _get_record(self, session: Session, view_id: str) -> SavedViewRecord:
        record = self._query(session).filter(SavedViewRecord.uuid == view_id).first()
        if record is None:
            raise ViewNotFound(view_id)
        return record

    def _settings(self, session: Session, create: bool = False) -> Optional[ViewSettingsRecord]:
        settings = (
            session.query(ViewSettingsRecord).filter(ViewSettingsRecord.user_id == self.user_id).first()
        )
        if settings is None and create:
            settings = ViewSettingsRecord(user_id=self.user_id)
            session.add(settings)
        return settings

    def _clear_default(self, session: Session, keep_id: Optional[str] = None) -> None:
        for record in self._query(session).filter(SavedViewRecord.is_default.is_(True)).all():
            if record.uuid != keep_id:
                record.is_default = False

    def _validate_name(self, name: Any) -> None:
        is_valid, error = validate_required_string(name, "Name")
        if not is_valid:
            raise ValidationError([error])

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def list_views(self) -> StoreResult:
        """List the user's views, oldest first."""

        def _impl(session: Session) -> List[SavedView]:
            records = self._query(session).order_by(SavedViewRecord.created_at, SavedViewRecord.id).all()
            return [SavedView.from_record(record) for record in records]

        return self._execute("list_views", _impl)

    def get_view(self, view_id: str) -> StoreResult:
        return self._execute(
            "get_view", lambda session: SavedView.from_record(self._get_record(session, view_id)), view_id=view_id
        )

    def create_view(self, name: str, state: ViewState, is_default: bool = False) -> StoreResult:
        """
        Save the persisted subset of state as a new view.

        Args:
            name: User label (required)
            state: View state to snapshot
            is_default: Make the new view the user's default

        Returns:
            StoreResult with the new SavedView
        """
        snapshot = snapshot_view(state, self.definitions)

        def _impl(session: Session) -> SavedView:
            self._validate_name(name)
            if is_default:
                self._clear_default(session)
            record = SavedViewRecord(
                user_id=self.user_id,
                name=name.strip(),
                is_default=is_default,
                **_record_fields(snapshot),
            )
            session.add(record)
            session.flush()
            return SavedView.from_record(record)

        result = self._execute("create_view", _impl, view_name=name)
        if result.success:
            log_operation(logger, "create_view", "created", user_id=self.user_id, view_id=result.data.id)
        return result

    def update_view(
        self,
        view_id: str,
        name: Optional[str] = None,
        state: Optional[ViewState] = None,
        is_default: Optional[bool] = None,
    ) -> StoreResult:
        """
        Update a view's name, snapshot and/or default flag.

        Arguments left as None are not changed.
        """
        snapshot = snapshot_view(state, self.definitions) if state is not None else None

        def _impl(session: Session) -> SavedView:
            record = self._get_record(session, view_id)
            if name is not None:
                self._validate_name(name)
                record.name = name.strip()
            if snapshot is not None:
                for key, value in _record_fields(snapshot).items():
                    setattr(record, key, value)
            if is_default is True:
                self._clear_default(session, keep_id=view_id)
                record.is_default = True
            elif is_default is False:
                record.is_default = False
            record.updated_at = utc_now()
            session.flush()
            return SavedView.from_record(record)

        return self._execute("update_view", _impl, view_id=view_id)

    def rename_view(self, view_id: str, name: str) -> StoreResult:
        return self.update_view(view_id, name=name)

    def delete_view(self, view_id: str) -> StoreResult:
        """Delete a view; clears the last-used pointer if it named this view."""

        def _impl(session: Session) -> None:
            record = self._get_record(session, view_id)
            session.delete(record)
            settings = self._settings(session)
            if settings is not None and settings.last_used_view_id == view_id:
                settings.last_used_view_id = None

        return self._execute("delete_view", _impl, view_id=view_id)

    def get_default_view(self) -> StoreResult:
        """Get the user's default view (data is None when there is none)."""

        def _impl(session: Session) -> Optional[SavedView]:
            record = self._query(session).filter(SavedViewRecord.is_default.is_(True)).first()
            return SavedView.from_record(record) if record is not None else None

        return self._execute("get_default_view", _impl)

    def set_default_view(self, view_id: str) -> StoreResult:
        """Flag view_id as the only default view for the user."""

        def _impl(session: Session) -> None:
            record = self._get_record(session, view_id)
            self._clear_default(session, keep_id=view_id)
            record.is_default = True

        return self._execute("set_default_view", _impl, view_id=view_id)

    def clear_default_view(self) -> StoreResult:
        return self._execute("clear_default_view", lambda session: self._clear_default(session))

    def get_last_used_view(self) -> StoreResult:
        """
        Get the last-used view id (data is None when unset).

        A pointer to a view that no longer exists is cleared and reported
        as unset.
        """

        def _impl(session: Session) -> Optional[str]:
            settings = self._settings(session)
            if settings is None or not settings.last_used_view_id:
                return None
            exists = self._query(session).filter(SavedViewRecord.uuid == settings.last_used_view_id).first()
            if exists is None:
                settings.last_used_view_id = None
                return None
            return settings.last_used_view_id

        return self._execute("get_last_used_view", _impl)

    def set_last_used_view(self, view_id: str) -> StoreResult:
        def _impl(session: Session) -> None:
            self._get_record(session, view_id)
            self._settings(session, create=True).last_used_view_id = view_id

        return self._execute("set_last_used_view", _impl, view_id=view_id)

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_views(self) -> StoreResult:
        """Serialize the user's views to a JSON list (data is the JSON text)."""
        result = self.list_views()
        if not result.success:
            return result
        return StoreResult.ok(json.dumps([view.to_dict() for view in result.data], indent=2))

    def import_views(self, views_json: str) -> StoreResult:
        """
        Create views from JSON produced by export_views().

        Imported views get new ids and never become the default.

        Raises:
            SerializationError: If views_json is not a JSON list of objects
            ValidationError: If an entry has no name
        """
        try:
            entries = json.loads(views_json)
        except (json.JSONDecodeError, TypeError) as e:
            raise SerializationError(f"Invalid saved views JSON: {e}", e)
        if not isinstance(entries, list) or not all(isinstance(entry, dict) for entry in entries):
            raise SerializationError("Saved views must be a JSON list of objects")

        errors = []
        views = []
        for position, entry in enumerate(entries):
            is_valid, error = validate_required_string(entry.get("name"), f"View {position + 1} name")
            if not is_valid:
                errors.append(error)
                continue
            try:
                views.append(
                    SavedView(
                        id="",
                        name=entry["name"],
                        query=entry.get("query") or "",
                        filters=dict(entry.get("filters") or {}),
                        columns=tuple(ColumnConfig.from_dict(c) for c in entry.get("columns") or []),
                        group_by=entry.get("group_by"),
                        sort_by=SortSpec.from_dict(entry["sort_by"]) if entry.get("sort_by") else None,
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise SerializationError(f"Unreadable saved view '{entry.get('name')}': {e}", e)
        if errors:
            raise ValidationError(errors)

        base = ViewState()

        def _impl(session: Session) -> List[SavedView]:
            created = []
            for view in views:
                snapshot = snapshot_view(apply_saved_view(base, view, self.definitions), self.definitions)
                record = SavedViewRecord(user_id=self.user_id, name=view.name.strip(), **_record_fields(snapshot))
                session.add(record)
                session.flush()
                created.append(SavedView.from_record(record))
            return created

        return self._execute("import_views", _impl, count=len(views))
