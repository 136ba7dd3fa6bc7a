"""Services package - table engine for the Ingredient Library.

Architecture:
- Pure functions: hierarchy, filters, selection, view state transitions and
  the derived table never touch storage and never raise for malformed
  record fields
- Stores: record, saved view and preferences persistence return StoreResult
  envelopes instead of raising
- Transactions: Managed via session_scope() / run_in_session()
- Exceptions: Consistent error handling via ServiceError hierarchy

Service Modules:
- hierarchy_service: Flat records -> parent/child forest
- filter_service: Filter definitions, predicates, facets and chips
- selection_service: Selection policy and comparison eligibility
- view_state_service: Immutable ViewState and its transitions
- table_service: Sorting, grouping, pagination, derived rows
- saved_view_service: Named saved views per user
- preferences_service: Versioned user preferences and auto-save
- record_store: In-memory and database record stores
- export_service: CSV/JSON export and record comparison
- table_controller: Stateful facade used by a host UI

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Engine, session management and retried sessions
- logging_utils: Service logger naming and structured operation logs
- request_tracker: Stale response detection for async loads
"""

from .dto import ColumnConfig, ListOptions, Pagination, SortSpec, StoreResult
from .exceptions import (
    PreferencesNotFound,
    RecordNotFound,
    SerializationError,
    ServiceError,
    TransientIOError,
    ValidationError,
    ViewNotFound,
)
from .filter_service import DEFAULT_FILTER_DEFINITIONS, apply_filters, get_stock_level
from .hierarchy_service import build_hierarchy, flatten_hierarchy
from .preferences_service import PreferencesAutoSaver, PreferencesStore, UserPreferences
from .record_store import DatabaseRecordStore, LocalRecordStore, RecordStore
from .saved_view_service import SavedView, SavedViewStore
from .selection_service import SelectionPolicy, can_compare
from .table_controller import TableController
from .table_service import derive_table, sort_records
from .view_state_service import ViewState, create_view_state

__all__ = [
    # DTOs
    "ColumnConfig",
    "ListOptions",
    "Pagination",
    "SortSpec",
    "StoreResult",
    # Exceptions
    "PreferencesNotFound",
    "RecordNotFound",
    "SerializationError",
    "ServiceError",
    "TransientIOError",
    "ValidationError",
    "ViewNotFound",
    # Engine
    "DEFAULT_FILTER_DEFINITIONS",
    "apply_filters",
    "get_stock_level",
    "build_hierarchy",
    "flatten_hierarchy",
    "SelectionPolicy",
    "can_compare",
    "ViewState",
    "create_view_state",
    "derive_table",
    "sort_records",
    # Stores
    "RecordStore",
    "LocalRecordStore",
    "DatabaseRecordStore",
    "SavedView",
    "SavedViewStore",
    "PreferencesStore",
    "PreferencesAutoSaver",
    "UserPreferences",
    "TableController",
]
