"""
View state service - the table's interactive state and its transitions.

ViewState is an immutable value. Every transition below takes a state and
returns a new one, so observers never see a half-applied update; the table
controller swaps the whole value in one step.

Rules enforced here:
- Changing the query or any filter resets the page index to 0
- Grouping is a single key; selecting the active key again clears it
- Moving a column renumbers every column's order from 0 with no gaps
- clear_filters() resets query, filters, grouping and sort together
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from ..utils.config import DEFAULT_TABLE_CONFIG, TableConfig
from ..utils.constants import DEFAULT_COLUMN_LAYOUT
from .dto import ColumnConfig, Pagination, SortSpec
from .filter_service import (
    DEFAULT_FILTER_DEFINITIONS,
    FilterDefinition,
    FiltersState,
    create_empty_filters_state,
    remove_filter_value,
)


def default_columns() -> Tuple[ColumnConfig, ...]:
    """Default column layout, ordered from 0."""
    return tuple(
        ColumnConfig(key=key, visible=visible, order=order, width=width)
        for order, (key, visible, width) in enumerate(DEFAULT_COLUMN_LAYOUT)
    )


@dataclass(frozen=True)
class ViewState:
    """
    Complete interactive state of the table.

    Attributes:
        query: Free-text query
        filters: Filters State (filter key -> value)
        group_by: Active grouping key or None
        sort_by: Sort specifications, highest priority first
        columns: Column configuration, ordered by ColumnConfig.order
        expanded: Ids of expanded parent rows
        collapsed_groups: Keys of collapsed groups
        pagination: Current page
        selection: Record id -> selected
    """

    query: str = ""
    filters: Dict[str, Any] = field(default_factory=create_empty_filters_state)
    group_by: Optional[str] = None
    sort_by: Tuple[SortSpec, ...] = ()
    columns: Tuple[ColumnConfig, ...] = field(default_factory=default_columns)
    expanded: FrozenSet[str] = frozenset()
    collapsed_groups: FrozenSet[str] = frozenset()
    pagination: Pagination = field(default_factory=Pagination)
    selection: Dict[str, bool] = field(default_factory=dict)

    @property
    def selected_ids(self) -> List[str]:
        return [record_id for record_id, selected in self.selection.items() if selected]


def create_view_state(
    config: TableConfig = DEFAULT_TABLE_CONFIG,
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> ViewState:
    """Initial state for a table configured by config."""
    sorting = config.sorting
    sort_by: Tuple[SortSpec, ...] = ()
    if sorting.default_sort_column:
        sort_by = (SortSpec(id=sorting.default_sort_column, desc=sorting.default_sort_desc),)
    group_by = config.grouping.default_group_by if config.grouping.enabled else None
    return ViewState(
        filters=create_empty_filters_state(definitions),
        group_by=group_by,
        sort_by=sort_by,
        pagination=Pagination(page_index=0, page_size=config.pagination.default_page_size),
    )


def _first_page(state: ViewState) -> Pagination:
    return replace(state.pagination, page_index=0)


# ============================================================================
# Query and filters
# ============================================================================


def set_query(state: ViewState, query: str) -> ViewState:
    return replace(state, query=query or "", pagination=_first_page(state))


def set_filters(state: ViewState, partial: FiltersState) -> ViewState:
    """Merge partial filter values over the current ones and go to page 0."""
    filters = dict(state.filters)
    filters.update(partial)
    return replace(state, filters=filters, pagination=_first_page(state))


def remove_filter(
    state: ViewState,
    key: str,
    value: Optional[str] = None,
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> ViewState:
    filters = remove_filter_value(state.filters, key, value, definitions)
    return replace(state, filters=filters, pagination=_first_page(state))


def clear_filters(
    state: ViewState,
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> ViewState:
    """Reset query, filters, grouping and sort in one transition."""
    return replace(
        state,
        query="",
        filters=create_empty_filters_state(definitions),
        group_by=None,
        sort_by=(),
        collapsed_groups=frozenset(),
        pagination=_first_page(state),
    )


# ============================================================================
# Grouping and sorting
# ============================================================================


def toggle_group_by(
    state: ViewState, key: str, available: Optional[Iterable[str]] = None
) -> ViewState:
    """
    Toggle grouping on key.

    The active key clears grouping; any other key replaces it.

    Raises:
        ValueError: If available is given and key is not in it
    """
    if available is not None and key not in set(available):
        raise ValueError(f"Unknown group-by key: {key}")
    group_by = None if state.group_by == key else key
    return replace(state, group_by=group_by, collapsed_groups=frozenset())


def set_group_by(state: ViewState, key: Optional[str]) -> ViewState:
    return replace(state, group_by=key or None, collapsed_groups=frozenset())


def set_sort(state: ViewState, sort_by: Sequence[SortSpec]) -> ViewState:
    return replace(state, sort_by=tuple(sort_by))


def toggle_sort(state: ViewState, column_id: str, multi: bool = False) -> ViewState:
    """
    Cycle a column through ascending, descending and unsorted.

    With multi=True the other sort columns are kept; otherwise the column
    becomes the only sort.
    """
    current = next((spec for spec in state.sort_by if spec.id == column_id), None)
    if current is None:
        updated: Optional[SortSpec] = SortSpec(id=column_id, desc=False)
    elif not current.desc:
        updated = SortSpec(id=column_id, desc=True)
    else:
        updated = None

    if not multi:
        return replace(state, sort_by=(updated,) if updated else ())

    specs = []
    for spec in state.sort_by:
        if spec.id != column_id:
            specs.append(spec)
        elif updated is not None:
            specs.append(updated)
    if current is None and updated is not None:
        specs.append(updated)
    return replace(state, sort_by=tuple(specs))


# ============================================================================
# Pagination
# ============================================================================


def set_pagination(
    state: ViewState, page_index: Optional[int] = None, page_size: Optional[int] = None
) -> ViewState:
    """
    Move to a page and/or change the page size.

    A new page size starts again from page 0 unless a page is given too.

    Raises:
        ValueError: If page_index is negative or page_size is not positive
    """
    size = state.pagination.page_size if page_size is None else page_size
    if page_index is None:
        page_index = 0 if size != state.pagination.page_size else state.pagination.page_index
    return replace(state, pagination=Pagination(page_index=page_index, page_size=size))


def clamp_pagination(state: ViewState, total_rows: int) -> ViewState:
    """Pull an out-of-range page index back to the last page."""
    page_size = state.pagination.page_size
    last_page = max((total_rows - 1) // page_size, 0) if total_rows > 0 else 0
    if state.pagination.page_index <= last_page:
        return state
    return replace(state, pagination=Pagination(page_index=last_page, page_size=page_size))


# ============================================================================
# Columns
# ============================================================================


def ordered_columns(columns: Iterable[ColumnConfig]) -> List[ColumnConfig]:
    return sorted(columns, key=lambda column: column.order)


def visible_column_keys(state: ViewState) -> List[str]:
    return [column.key for column in ordered_columns(state.columns) if column.visible]


def _find_column(state: ViewState, key: str) -> ColumnConfig:
    for column in state.columns:
        if column.key == key:
            return column
    raise ValueError(f"Unknown column: {key}")


def _update_column(state: ViewState, key: str, **changes: Any) -> ViewState:
    _find_column(state, key)
    columns = tuple(
        replace(column, **changes) if column.key == key else column for column in state.columns
    )
    return replace(state, columns=columns)


def set_column_visibility(state: ViewState, key: str, visible: bool) -> ViewState:
    return _update_column(state, key, visible=visible)


def set_column_width(state: ViewState, key: str, width: int) -> ViewState:
    if width <= 0:
        raise ValueError("Column width must be greater than 0")
    return _update_column(state, key, width=width)


def renumber_columns(columns: Iterable[ColumnConfig]) -> Tuple[ColumnConfig, ...]:
    return tuple(replace(column, order=order) for order, column in enumerate(columns))


def move_column(state: ViewState, key: str, new_index: int) -> ViewState:
    """
    Move a column to new_index (clamped to the column range).

    Raises:
        ValueError: If key is not a configured column
    """
    columns = ordered_columns(state.columns)
    column = _find_column(state, key)
    columns.remove(column)
    new_index = min(max(new_index, 0), len(columns))
    columns.insert(new_index, column)
    return replace(state, columns=renumber_columns(columns))


def reset_columns(state: ViewState) -> ViewState:
    return replace(state, columns=default_columns())


# ============================================================================
# Expansion and selection
# ============================================================================


def toggle_expanded(state: ViewState, record_id: str) -> ViewState:
    return replace(state, expanded=state.expanded ^ {record_id})


def set_expanded(state: ViewState, record_ids: Iterable[str]) -> ViewState:
    return replace(state, expanded=frozenset(record_ids))


def toggle_group_expansion(state: ViewState, group_key: str) -> ViewState:
    return replace(state, collapsed_groups=state.collapsed_groups ^ {group_key})


def set_selection(state: ViewState, selection: Dict[str, bool]) -> ViewState:
    return replace(state, selection={key: True for key, value in selection.items() if value})


def merge_columns(saved: Iterable[ColumnConfig]) -> Tuple[ColumnConfig, ...]:
    """
    Saved column layout plus any columns added since it was saved.

    Keys that are no longer columns are dropped and the result is
    renumbered from 0.
    """
    defaults = default_columns()
    known = {column.key for column in defaults}
    merged = [column for column in ordered_columns(saved) if column.key in known]
    present = {column.key for column in merged}
    merged.extend(column for column in defaults if column.key not in present)
    return renumber_columns(merged)
