"""
Tests for view_state_service.py.

Tests cover:
- create_view_state() defaults from TableConfig
- Query and filter transitions reset the page index
- clear_filters() resets query, filters, grouping and sort together
- Group toggling, sort cycling, pagination and clamping
- Column visibility, width, moving and merging
- Expansion and selection transitions
"""

from dataclasses import FrozenInstanceError

import pytest

from ingredient_library.services.dto import ColumnConfig, Pagination, SortSpec
from ingredient_library.services.view_state_service import (
    clamp_pagination,
    clear_filters,
    create_view_state,
    default_columns,
    merge_columns,
    move_column,
    ordered_columns,
    remove_filter,
    reset_columns,
    set_column_visibility,
    set_column_width,
    set_filters,
    set_group_by,
    set_pagination,
    set_query,
    set_selection,
    toggle_expanded,
    toggle_group_by,
    toggle_group_expansion,
    toggle_sort,
    visible_column_keys,
)
from ingredient_library.utils.config import DEFAULT_TABLE_CONFIG, merge_config


@pytest.fixture
def state():
    return create_view_state()


def _on_page(state, index):
    return set_pagination(state, page_index=index)


class TestCreateViewState:
    """Tests for create_view_state()."""

    def test_defaults(self, state):
        """Should start on page 0 sorted by name with neutral filters."""
        assert state.query == ""
        assert state.pagination == Pagination(page_index=0, page_size=25)
        assert state.sort_by == (SortSpec(id="name", desc=False),)
        assert state.group_by is None
        assert state.filters["statuses"] == []

    def test_config_values(self):
        """Should take page size and default grouping from the config."""
        config = merge_config(
            DEFAULT_TABLE_CONFIG,
            {"pagination": {"default_page_size": 50}, "grouping": {"default_group_by": "category"}},
        )

        state = create_view_state(config)

        assert state.pagination.page_size == 50
        assert state.group_by == "category"

    def test_state_is_immutable(self, state):
        """Should not allow attribute assignment."""
        with pytest.raises(FrozenInstanceError):
            state.query = "x"


class TestQueryAndFilters:
    """Tests for query and filter transitions."""

    def test_set_filters_resets_page(self, state):
        """Should return to page 0 when filters change, even from page 3."""
        on_page_3 = _on_page(state, 3)

        filtered = set_filters(on_page_3, {"statuses": ["Active"]})

        assert on_page_3.pagination.page_index == 3
        assert filtered.pagination.page_index == 0
        assert filtered.filters["statuses"] == ["Active"]

    def test_set_filters_merges(self, state):
        """Should keep filters not named in the partial update."""
        first = set_filters(state, {"statuses": ["Active"]})
        second = set_filters(first, {"favorites_only": True})

        assert second.filters["statuses"] == ["Active"]
        assert second.filters["favorites_only"] is True

    def test_set_query_resets_page(self, state):
        """Should return to page 0 when the query changes."""
        updated = set_query(_on_page(state, 2), "rose")

        assert updated.query == "rose"
        assert updated.pagination.page_index == 0

    def test_remove_filter(self, state):
        """Should remove one value and reset the page."""
        filtered = _on_page(set_filters(state, {"statuses": ["Active", "Limited"]}), 1)

        updated = remove_filter(filtered, "statuses", "Active")

        assert updated.filters["statuses"] == ["Limited"]
        assert updated.pagination.page_index == 0

    def test_clear_filters_resets_everything_at_once(self, state):
        """Should reset query, filters, grouping and sort in one transition."""
        busy = set_group_by(set_filters(set_query(state, "rose"), {"statuses": ["Active"]}), "category")

        cleared = clear_filters(busy)

        assert cleared.query == ""
        assert cleared.filters["statuses"] == []
        assert cleared.group_by is None
        assert cleared.sort_by == ()
        assert busy.query == "rose"


class TestGroupingAndSorting:
    """Tests for grouping and sorting transitions."""

    def test_toggle_group_by(self, state):
        """Should set, replace and clear the group key."""
        grouped = toggle_group_by(state, "category")
        assert grouped.group_by == "category"

        assert toggle_group_by(grouped, "family").group_by == "family"
        assert toggle_group_by(grouped, "category").group_by is None

    def test_toggle_group_by_unknown_key(self, state):
        """Should reject keys outside the available list."""
        with pytest.raises(ValueError):
            toggle_group_by(state, "color", available=["category", "family"])

    def test_toggle_sort_cycles(self, state):
        """Should cycle asc -> desc -> unsorted."""
        asc = toggle_sort(state, "cost_per_kg")
        desc = toggle_sort(asc, "cost_per_kg")
        off = toggle_sort(desc, "cost_per_kg")

        assert asc.sort_by == (SortSpec("cost_per_kg", False),)
        assert desc.sort_by == (SortSpec("cost_per_kg", True),)
        assert off.sort_by == ()

    def test_toggle_sort_multi(self, state):
        """Should append a secondary sort and keep the primary."""
        multi = toggle_sort(state, "stock", multi=True)

        assert multi.sort_by == (SortSpec("name", False), SortSpec("stock", False))


class TestPagination:
    """Tests for set_pagination() and clamp_pagination()."""

    def test_page_size_change_resets_index(self, state):
        """Should go back to page 0 when the page size changes."""
        updated = set_pagination(_on_page(state, 4), page_size=50)

        assert updated.pagination == Pagination(page_index=0, page_size=50)

    def test_invalid_values(self, state):
        """Should reject a negative index and a non-positive size."""
        with pytest.raises(ValueError):
            set_pagination(state, page_index=-1)
        with pytest.raises(ValueError):
            set_pagination(state, page_size=0)

    def test_clamp(self, state):
        """Should pull an out-of-range index back to the last page."""
        far = _on_page(state, 9)

        assert clamp_pagination(far, 60).pagination.page_index == 2
        assert clamp_pagination(far, 0).pagination.page_index == 0
        assert clamp_pagination(_on_page(state, 1), 60) == _on_page(state, 1)


class TestColumns:
    """Tests for column transitions."""

    def test_move_column_renumbers(self, state):
        """Should renumber orders 0..n-1 with no gaps after a move."""
        moved = move_column(state, "stock", 0)
        columns = ordered_columns(moved.columns)

        assert columns[0].key == "stock"
        assert [c.order for c in columns] == list(range(len(columns)))

    def test_move_column_clamps_index(self, state):
        """Should clamp the target index to the column range."""
        moved = move_column(state, "select", 99)

        assert ordered_columns(moved.columns)[-1].key == "select"

    def test_move_unknown_column(self, state):
        """Should reject an unknown column key."""
        with pytest.raises(ValueError):
            move_column(state, "color", 0)

    def test_visibility_and_width(self, state):
        """Should update one column's visibility and width."""
        hidden = set_column_visibility(state, "supplier", False)
        wide = set_column_width(hidden, "name", 320)

        assert "supplier" not in visible_column_keys(wide)
        assert next(c for c in wide.columns if c.key == "name").width == 320
        with pytest.raises(ValueError):
            set_column_width(state, "name", 0)

    def test_reset_columns(self, state):
        """Should restore the default layout."""
        assert reset_columns(move_column(state, "stock", 0)).columns == default_columns()

    def test_merge_columns(self):
        """Should drop unknown keys and append missing defaults."""
        saved = [ColumnConfig("stock", order=0), ColumnConfig("retired", order=1), ColumnConfig("name", order=2)]

        merged = merge_columns(saved)

        assert [c.key for c in merged[:2]] == ["stock", "name"]
        assert "retired" not in [c.key for c in merged]
        assert len(merged) == len(default_columns())
        assert [c.order for c in merged] == list(range(len(merged)))


class TestExpansionAndSelection:
    """Tests for expansion and selection transitions."""

    def test_toggle_expanded(self, state):
        """Should add and remove an id from the expansion set."""
        expanded = toggle_expanded(state, "INGR-001")

        assert expanded.expanded == frozenset({"INGR-001"})
        assert toggle_expanded(expanded, "INGR-001").expanded == frozenset()

    def test_toggle_group_expansion(self, state):
        """Should collapse and re-open a group."""
        collapsed = toggle_group_expansion(state, "Citrus")

        assert "Citrus" in collapsed.collapsed_groups
        assert toggle_group_expansion(collapsed, "Citrus").collapsed_groups == frozenset()

    def test_set_selection_keeps_true_only(self, state):
        """Should store only selected ids."""
        selected = set_selection(state, {"a": True, "b": False})

        assert selected.selection == {"a": True}
        assert selected.selected_ids == ["a"]
