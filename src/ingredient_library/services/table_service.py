"""
Table service - derives the rows to display from records and view state.

Pipeline (derive_table):
    records -> query + filters (flat) -> build_hierarchy -> sort
            -> group -> paginate roots -> expand into visible rows

Filtering always runs on the flat list before the hierarchy is built, so a
parent stays visible only if it matches on its own; children of a parent
that was filtered out are dropped with it.
"""

from dataclasses import dataclass, field
from typing import AbstractSet, Any, Dict, List, Optional, Sequence, Tuple

from ..models.enums import StockLevel
from ..models.ingredient import Ingredient
from ..utils.constants import STATUS_ACTIVE
from .dto import SortSpec, page_count
from .filter_service import (
    FilterDefinition,
    apply_filters,
    get_field_value,
    get_stock_level,
    matches_query,
)
from .hierarchy_service import HierarchyAnomaly, HierarchyNode, build_hierarchy
from .view_state_service import ViewState

NO_GROUP_KEY = "(none)"


# ============================================================================
# Sorting
# ============================================================================


def _is_missing(value: Any) -> bool:
    return value is None or value == "" or value == []


def _sort_key(value: Any) -> Tuple[int, Any]:
    # Numbers sort before text so mixed columns never compare across types
    if isinstance(value, bool):
        return (0, int(value))
    if isinstance(value, (int, float)):
        return (0, float(value))
    if isinstance(value, (list, tuple)):
        return (1, "; ".join(str(item) for item in value).casefold())
    return (1, str(value).casefold())


def sort_records(records: Sequence[Ingredient], sort_by: Sequence[SortSpec]) -> List[Ingredient]:
    """
    Sort records by several columns, highest priority first.

    The sort is stable, text compares case-insensitively and missing values
    go last in either direction.

    Example:
        rows = sort_records(records, [SortSpec("category"), SortSpec("cost_per_kg", desc=True)])
    """
    ordered = list(records)
    for spec in reversed(list(sort_by)):
        present = [r for r in ordered if not _is_missing(get_field_value(r, spec.id))]
        missing = [r for r in ordered if _is_missing(get_field_value(r, spec.id))]
        present.sort(key=lambda r: _sort_key(get_field_value(r, spec.id)), reverse=spec.desc)
        ordered = present + missing
    return ordered


def sort_hierarchy(roots: Sequence[HierarchyNode], sort_by: Sequence[SortSpec]) -> List[HierarchyNode]:
    """Sort roots, and every child list, without moving children between parents."""
    if not sort_by:
        return list(roots)
    by_id = {id(node.record): node for node in roots}
    ordered = [by_id[id(record)] for record in sort_records([node.record for node in roots], sort_by)]
    for node in ordered:
        node.children = sort_hierarchy(node.children, sort_by)
    return ordered


def drop_detached_children(
    filtered: Sequence[Ingredient], records: Sequence[Ingredient]
) -> List[Ingredient]:
    """
    Remove records whose parent exists in records but not in filtered.

    Repeats until stable so grandchildren go with their parent. Records whose
    parent is unknown to the whole list are orphans and stay.
    """
    known = {record.id for record in records}
    kept = list(filtered)
    while True:
        present = {record.id for record in kept}
        remaining = [
            record
            for record in kept
            if not record.has_parent_reference or record.parent_id not in known or record.parent_id in present
        ]
        if len(remaining) == len(kept):
            return kept
        kept = remaining


# ============================================================================
# Grouping
# ============================================================================


@dataclass
class RowGroup:
    """
    Root rows sharing one value of the grouping field.

    Attributes:
        key: Group value (NO_GROUP_KEY for records without one)
        rows: Root nodes in the group, in sorted order
        collapsed: Whether the group's rows are hidden
    """

    key: str
    rows: List[HierarchyNode] = field(default_factory=list)
    collapsed: bool = False

    @property
    def count(self) -> int:
        return len(self.rows)


def group_key_for(record: Ingredient, group_by: str) -> str:
    value = get_field_value(record, group_by)
    if _is_missing(value):
        return NO_GROUP_KEY
    return str(value)


def group_rows(
    roots: Sequence[HierarchyNode],
    group_by: str,
    collapsed_groups: Sequence[str] = (),
) -> List[RowGroup]:
    """
    Group root nodes by a record field; groups are sorted by key.

    Children stay with their parent whatever their own field value.
    """
    groups: Dict[str, RowGroup] = {}
    for node in roots:
        key = group_key_for(node.record, group_by)
        if key not in groups:
            groups[key] = RowGroup(key=key, collapsed=key in collapsed_groups)
        groups[key].rows.append(node)
    return [groups[key] for key in sorted(groups, key=str.casefold)]


# ============================================================================
# Stats
# ============================================================================


@dataclass(frozen=True)
class TableStats:
    total: int = 0
    active: int = 0
    low_stock: int = 0
    favorites: int = 0


def calculate_stats(records: Sequence[Ingredient]) -> TableStats:
    return TableStats(
        total=len(records),
        active=sum(1 for r in records if r.status == STATUS_ACTIVE),
        low_stock=sum(1 for r in records if get_stock_level(r.stock) is StockLevel.LOW),
        favorites=sum(1 for r in records if r.favorite is True),
    )


# ============================================================================
# Derived table
# ============================================================================


@dataclass(frozen=True)
class VisibleRow:
    """One displayed row."""

    record: Ingredient
    depth: int
    is_expandable: bool
    is_expanded: bool
    group_key: Optional[str] = None

    @property
    def id(self) -> str:
        return self.record.id


@dataclass
class DerivedTable:
    """
    Everything rendering needs for one view state.

    Attributes:
        records: Flat records that passed query and filters
        roots: Hierarchy rebuilt from records, sorted
        groups: Row groups (empty when not grouped)
        page_roots: Root nodes on the current page
        visible_rows: Page rows with expanded children, in display order
        total_rows: Number of root rows across all pages (rows of collapsed
            groups are not paginated and not counted)
        page_index: Page actually shown (clamped to the last page)
        page_count: Number of pages (at least 1)
        stats: Summary counts over the filtered records
        anomalies: Hierarchy anomalies found while building
    """

    records: List[Ingredient]
    roots: List[HierarchyNode]
    groups: List[RowGroup]
    page_roots: List[HierarchyNode]
    visible_rows: List[VisibleRow]
    total_rows: int
    page_index: int
    page_count: int
    stats: TableStats
    anomalies: List[HierarchyAnomaly] = field(default_factory=list)

    @property
    def visible_ids(self) -> List[str]:
        return [row.id for row in self.visible_rows]


def _expand(
    node: HierarchyNode,
    expanded: AbstractSet[str],
    group_key: Optional[str],
    rows: List[VisibleRow],
) -> None:
    is_expanded = node.is_expandable and node.id in expanded
    rows.append(
        VisibleRow(
            record=node.record,
            depth=node.depth,
            is_expandable=node.is_expandable,
            is_expanded=is_expanded,
            group_key=group_key,
        )
    )
    if is_expanded:
        for child in node.children:
            _expand(child, expanded, group_key, rows)


def derive_table(
    records: Sequence[Ingredient],
    definitions: Sequence[FilterDefinition],
    state: ViewState,
) -> DerivedTable:
    """
    Derive the displayed table from the full record list and a view state.

    Pagination counts root rows outside collapsed groups; a parent's expanded
    children are shown on the same page as the parent. An out-of-range page
    index is clamped to the last page.
    """
    matched = [
        record
        for record in apply_filters(records, definitions, state.filters)
        if matches_query(record, state.query)
    ]
    filtered = drop_detached_children(matched, records)

    anomalies: List[HierarchyAnomaly] = []
    roots = sort_hierarchy(build_hierarchy(filtered, anomalies), state.sort_by)

    groups: List[RowGroup] = []
    group_of: Dict[int, str] = {}
    ordered_roots = roots
    if state.group_by:
        groups = group_rows(roots, state.group_by, tuple(state.collapsed_groups))
        ordered_roots = [node for group in groups if not group.collapsed for node in group.rows]
        group_of = {id(node): group.key for group in groups for node in group.rows}

    total_rows = len(ordered_roots)
    page_size = state.pagination.page_size
    pages = page_count(total_rows, page_size)
    page_index = min(state.pagination.page_index, pages - 1)
    start = page_index * page_size
    page_roots = ordered_roots[start:start + page_size]

    visible_rows: List[VisibleRow] = []
    for node in page_roots:
        _expand(node, state.expanded, group_of.get(id(node)), visible_rows)

    return DerivedTable(
        records=filtered,
        roots=roots,
        groups=groups,
        page_roots=page_roots,
        visible_rows=visible_rows,
        total_rows=total_rows,
        page_index=page_index,
        page_count=pages,
        stats=calculate_stats(filtered),
        anomalies=anomalies,
    )
