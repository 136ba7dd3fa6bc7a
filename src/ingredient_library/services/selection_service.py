"""
Selection service - which records are selected, and which may be.

Selection state is a dictionary from record id to True. Operations never
mutate the dictionary they are given; they return a new one.

Policy (from SelectionConfig):
- enable_row_selection=False: nothing can be added
- enable_child_row_selection=False: records nested under a parent cannot be
  selected by any route, including a direct toggle; such attempts leave the
  state unchanged
- enable_multi_row_selection=False: selecting a record replaces the selection
- max_selections: toggle and set_all additions stop once the limit is
  reached; select-all-visible is not capped

Deselecting is always allowed.
"""

import logging
from typing import Dict, Iterable, List, Sequence, Set

from ..models.ingredient import Ingredient
from ..utils.config import SelectionConfig
from ..utils.constants import DEFAULT_COMPARE_MAX, DEFAULT_COMPARE_MIN
from .hierarchy_service import get_child_ids
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

Selection = Dict[str, bool]


class SelectionPolicy:
    """
    Applies the selection rules for one record list.

    Build a new policy whenever the base record list changes; the set of
    child ids is computed from it once.
    """

    def __init__(self, config: SelectionConfig, records: Sequence[Ingredient] = ()):
        self.config = config
        self._child_ids: Set[str] = get_child_ids(records)

    def is_child(self, record_id: str) -> bool:
        return record_id in self._child_ids

    def can_select(self, record_id: str) -> bool:
        if not self.config.enable_row_selection:
            return False
        if not self.config.enable_child_row_selection and self.is_child(record_id):
            return False
        return True

    def _at_limit(self, selection: Selection) -> bool:
        limit = self.config.max_selections
        return limit is not None and count_selected(selection) >= limit

    def toggle(self, selection: Selection, record_id: str) -> Selection:
        """Flip one record; a disallowed selection is a no-op."""
        if selection.get(record_id):
            new_selection = dict(selection)
            del new_selection[record_id]
            return new_selection

        if not self.can_select(record_id):
            log_operation(
                logger,
                operation="toggle_selection",
                outcome="rejected",
                level=logging.DEBUG,
                record_id=record_id,
            )
            return selection

        if not self.config.enable_multi_row_selection:
            return {record_id: True}
        if self._at_limit(selection):
            log_operation(
                logger,
                operation="toggle_selection",
                outcome="limit_reached",
                level=logging.DEBUG,
                record_id=record_id,
                max_selections=self.config.max_selections,
            )
            return selection

        new_selection = dict(selection)
        new_selection[record_id] = True
        return new_selection

    def set_all(self, selection: Selection, record_ids: Iterable[str], selected: bool) -> Selection:
        """
        Select or deselect several records at once.

        When selecting, ids the policy rejects are skipped and additions
        stop at max_selections.
        """
        new_selection = dict(selection)
        if not selected:
            for record_id in record_ids:
                new_selection.pop(record_id, None)
            return new_selection

        return self._add(selection, record_ids, capped=True)

    def _add(self, selection: Selection, record_ids: Iterable[str], capped: bool) -> Selection:
        if not self.config.enable_multi_row_selection:
            return selection

        new_selection = dict(selection)
        for record_id in record_ids:
            if new_selection.get(record_id) or not self.can_select(record_id):
                continue
            if capped and self._at_limit(new_selection):
                break
            new_selection[record_id] = True
        return new_selection

    def select_all_visible(self, selection: Selection, visible_ids: Iterable[str]) -> Selection:
        """
        Select every visible record the policy allows.

        With child selection disabled only root-level records are added, even
        when their children are visible. max_selections does not apply here;
        it limits one-by-one additions only.
        """
        return self._add(selection, visible_ids, capped=False)

    def toggle_all_visible(self, selection: Selection, visible_ids: Sequence[str]) -> Selection:
        """Deselect all visible records if every selectable one is selected, else select them."""
        selectable = [record_id for record_id in visible_ids if self.can_select(record_id)]
        if selectable and all(selection.get(record_id) for record_id in selectable):
            return self.set_all(selection, visible_ids, False)
        return self.select_all_visible(selection, visible_ids)

    def clear_all(self) -> Selection:
        return {}

    def restrict(self, selection: Selection) -> Selection:
        """
        Drop ids the policy does not allow from a selection built elsewhere.

        Used for selections restored from preferences or carried across a
        refresh, which never went through toggle(). In single-selection mode
        only the first selected id is kept.
        """
        allowed = {key: True for key, value in selection.items() if value and self.can_select(key)}
        if not self.config.enable_multi_row_selection and len(allowed) > 1:
            allowed = {next(iter(allowed)): True}
        return allowed


def count_selected(selection: Selection) -> int:
    return sum(1 for selected in selection.values() if selected)


def selected_records(records: Sequence[Ingredient], selection: Selection) -> List[Ingredient]:
    """Selected records from the flat list, in list order."""
    return [record for record in records if selection.get(record.id)]


def can_compare(
    selection_count: int,
    min_items: int = DEFAULT_COMPARE_MIN,
    max_items: int = DEFAULT_COMPARE_MAX,
) -> bool:
    """
    Check whether a selection size is eligible for comparison.

    Examples:
        >>> can_compare(1), can_compare(2), can_compare(5), can_compare(6)
        (False, True, True, False)
    """
    return min_items <= selection_count <= max_items
