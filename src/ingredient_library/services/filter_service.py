"""
Filter service - predicate evaluation over ingredient records.

A FilterDefinition names one facet of the catalog (search text, category,
stock level, cost range, ...). The Filters State is a plain dictionary from
definition key to the facet's current value:

- text: str
- multiselect: list of str
- range: {"min": number | None, "max": number | None}
- boolean: bool

A record passes when it passes every definition. A definition whose value is
missing or neutral ("", [], None, False) passes every record, and malformed
record fields never raise; they simply fail an active constraint.

Facet options (categories, suppliers, families, allergens) are always
computed from the full record list, never from the filtered one.

Usage:
    from ingredient_library.services.filter_service import (
        DEFAULT_FILTER_DEFINITIONS,
        apply_filters,
        create_empty_filters_state,
    )

    state = create_empty_filters_state()
    state["statuses"] = ["Active"]
    active = apply_filters(records, DEFAULT_FILTER_DEFINITIONS, state)
"""

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..models.enums import FilterKind, StockLevel
from ..models.ingredient import Ingredient
from ..utils.constants import (
    INGREDIENT_STATUSES,
    INGREDIENT_TYPES,
    SEARCHABLE_FIELDS,
    STOCK_HIGH_MIN,
    STOCK_MEDIUM_MIN,
)

Predicate = Callable[[Ingredient], bool]
FiltersState = Dict[str, Any]

# Computed record attribute, never stored
STOCK_LEVEL_FIELD = "stock_level"


@dataclass(frozen=True)
class FilterOption:
    value: str
    label: str


@dataclass(frozen=True)
class FilterDefinition:
    """
    One filter facet.

    Attributes:
        key: Key of the value in the Filters State
        label: Display label
        kind: Evaluation strategy
        fields: Record fields the predicate reads (several for text search)
        options: Static or populated options for multiselect filters
        option_source: Record field whose distinct values populate options
        min_bound / max_bound: Slider limits for range filters (display only)
        placeholder: Hint text for text filters
    """

    key: str
    label: str
    kind: FilterKind
    fields: Tuple[str, ...]
    options: Tuple[FilterOption, ...] = ()
    option_source: Optional[str] = None
    min_bound: Optional[float] = None
    max_bound: Optional[float] = None
    placeholder: Optional[str] = None

    def option_label(self, value: Any) -> str:
        for option in self.options:
            if option.value == value:
                return option.label
        return str(value)


def _options(values: Sequence[str]) -> Tuple[FilterOption, ...]:
    return tuple(FilterOption(value=value, label=value) for value in values)


DEFAULT_FILTER_DEFINITIONS: Tuple[FilterDefinition, ...] = (
    FilterDefinition(
        key="search",
        label="Search",
        kind=FilterKind.TEXT,
        fields=SEARCHABLE_FIELDS,
        placeholder="Search by name, CAS number, or supplier...",
    ),
    FilterDefinition(
        key="categories",
        label="Category",
        kind=FilterKind.MULTISELECT,
        fields=("category",),
        option_source="category",
    ),
    FilterDefinition(
        key="families",
        label="Family",
        kind=FilterKind.MULTISELECT,
        fields=("family",),
        option_source="family",
    ),
    FilterDefinition(
        key="statuses",
        label="Status",
        kind=FilterKind.MULTISELECT,
        fields=("status",),
        options=_options(INGREDIENT_STATUSES),
    ),
    FilterDefinition(
        key="types",
        label="Type",
        kind=FilterKind.MULTISELECT,
        fields=("type",),
        options=_options(INGREDIENT_TYPES),
    ),
    FilterDefinition(
        key="suppliers",
        label="Supplier",
        kind=FilterKind.MULTISELECT,
        fields=("supplier",),
        option_source="supplier",
    ),
    FilterDefinition(
        key="stock_levels",
        label="Stock Level",
        kind=FilterKind.MULTISELECT,
        fields=(STOCK_LEVEL_FIELD,),
        options=(
            FilterOption(StockLevel.HIGH.value, "High (200+ kg)"),
            FilterOption(StockLevel.MEDIUM.value, "Medium (50-199 kg)"),
            FilterOption(StockLevel.LOW.value, "Low (1-49 kg)"),
            FilterOption(StockLevel.OUT_OF_STOCK.value, "Out of Stock"),
        ),
    ),
    FilterDefinition(
        key="allergens",
        label="Allergens",
        kind=FilterKind.MULTISELECT,
        fields=("allergens",),
        option_source="allergens",
    ),
    FilterDefinition(
        key="favorites_only",
        label="Favorites Only",
        kind=FilterKind.BOOLEAN,
        fields=("favorite",),
    ),
    FilterDefinition(
        key="cost_range",
        label="Cost Range ($/kg)",
        kind=FilterKind.RANGE,
        fields=("cost_per_kg",),
        min_bound=0,
        max_bound=1000,
    ),
    FilterDefinition(
        key="stock_range",
        label="Stock Range (kg)",
        kind=FilterKind.RANGE,
        fields=("stock",),
        min_bound=0,
        max_bound=1000,
    ),
)


# ============================================================================
# Field access
# ============================================================================


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def get_stock_level(stock: Any) -> StockLevel:
    """
    Bucket a raw stock quantity.

    Any positive quantity below the medium threshold is Low, so fractional
    amounts such as 0.5 kg still count as in stock. Non-numeric and negative
    values count as out of stock.

    Examples:
        >>> get_stock_level(0)
        <StockLevel.OUT_OF_STOCK: 'OutOfStock'>
        >>> get_stock_level(49).value, get_stock_level(50).value, get_stock_level(200).value
        ('Low', 'Medium', 'High')
    """
    quantity = _as_number(stock)
    if quantity is None or quantity <= 0:
        return StockLevel.OUT_OF_STOCK
    if quantity < STOCK_MEDIUM_MIN:
        return StockLevel.LOW
    if quantity < STOCK_HIGH_MIN:
        return StockLevel.MEDIUM
    return StockLevel.HIGH


def get_field_value(record: Ingredient, field_name: str) -> Any:
    """Read a record field, including computed ones such as the stock level."""
    if field_name == STOCK_LEVEL_FIELD:
        return get_stock_level(record.stock).value
    return getattr(record, field_name, None)


# ============================================================================
# Predicates (one per filter kind)
# ============================================================================


def _pass_all(record: Ingredient) -> bool:
    return True


def _text_predicate(fields: Tuple[str, ...], value: Any) -> Predicate:
    if not isinstance(value, str) or value.strip() == "":
        return _pass_all
    term = value.strip().lower()

    def predicate(record: Ingredient) -> bool:
        for field_name in fields:
            field_value = get_field_value(record, field_name)
            if field_value is None:
                continue
            if term in str(field_value).lower():
                return True
        return False

    return predicate


def _multiselect_predicate(fields: Tuple[str, ...], value: Any) -> Predicate:
    if not isinstance(value, (list, tuple, set, frozenset)) or len(value) == 0:
        return _pass_all
    selected = set(value)

    def predicate(record: Ingredient) -> bool:
        for field_name in fields:
            field_value = get_field_value(record, field_name)
            if isinstance(field_value, (list, tuple, set)):
                if selected.intersection(field_value):
                    return True
            elif field_value is not None and field_value in selected:
                return True
        return False

    return predicate


def _range_predicate(fields: Tuple[str, ...], value: Any) -> Predicate:
    if not isinstance(value, dict):
        return _pass_all
    low = _as_number(value.get("min"))
    high = _as_number(value.get("max"))
    if low is None and high is None:
        return _pass_all

    def predicate(record: Ingredient) -> bool:
        for field_name in fields:
            number = _as_number(get_field_value(record, field_name))
            if number is None:
                continue
            if low is not None and number < low:
                continue
            if high is not None and number > high:
                continue
            return True
        return False

    return predicate


def _boolean_predicate(fields: Tuple[str, ...], value: Any) -> Predicate:
    if value is not True:
        return _pass_all

    def predicate(record: Ingredient) -> bool:
        return any(get_field_value(record, field_name) is True for field_name in fields)

    return predicate


def build_predicate(definition: FilterDefinition, value: Any) -> Predicate:
    """
    Build the record predicate for one definition and its current value.

    Raises:
        ValueError: If the definition has an unknown kind
    """
    kind = definition.kind
    if kind is FilterKind.TEXT:
        return _text_predicate(definition.fields, value)
    elif kind is FilterKind.MULTISELECT:
        return _multiselect_predicate(definition.fields, value)
    elif kind is FilterKind.RANGE:
        return _range_predicate(definition.fields, value)
    elif kind is FilterKind.BOOLEAN:
        return _boolean_predicate(definition.fields, value)
    raise ValueError(f"Unknown filter kind: {kind!r}")


def apply_filters(
    records: Sequence[Ingredient],
    definitions: Sequence[FilterDefinition],
    state: Optional[FiltersState],
) -> List[Ingredient]:
    """
    Keep the records that pass every filter, in input order.

    Args:
        records: Flat records (filter before building the hierarchy)
        definitions: Filter definitions to evaluate
        state: Filters State; missing keys impose no constraint

    Returns:
        Matching records (the same objects, not copies)
    """
    state = state or {}
    predicates = [build_predicate(definition, state.get(definition.key)) for definition in definitions]
    predicates = [predicate for predicate in predicates if predicate is not _pass_all]
    if not predicates:
        return list(records)
    return [record for record in records if all(predicate(record) for predicate in predicates)]


def matches_query(record: Ingredient, query: Optional[str]) -> bool:
    """Check a record against the free-text table query."""
    return _text_predicate(SEARCHABLE_FIELDS, query)(record)


# ============================================================================
# Facet options
# ============================================================================


def _distinct_values(records: Sequence[Ingredient], field_name: str) -> List[str]:
    values = set()
    for record in records:
        value = get_field_value(record, field_name)
        if isinstance(value, (list, tuple, set)):
            values.update(str(item) for item in value if item)
        elif value:
            values.add(str(value))
    return sorted(values)


def get_filter_options(records: Sequence[Ingredient]) -> Dict[str, List[FilterOption]]:
    """
    Get distinct sorted facet values present in the full record list.

    Returns:
        Dict with keys categories, suppliers, families and allergens
    """
    return {
        "categories": list(_options(_distinct_values(records, "category"))),
        "suppliers": list(_options(_distinct_values(records, "supplier"))),
        "families": list(_options(_distinct_values(records, "family"))),
        "allergens": list(_options(_distinct_values(records, "allergens"))),
    }


def get_filter_definitions_with_options(
    records: Sequence[Ingredient],
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> List[FilterDefinition]:
    """Populate dynamic option lists from the full (unfiltered) record list."""
    populated = []
    for definition in definitions:
        if definition.option_source:
            definition = replace(
                definition, options=_options(_distinct_values(records, definition.option_source))
            )
        populated.append(definition)
    return populated


# ============================================================================
# Filters State helpers
# ============================================================================


def neutral_value(definition: FilterDefinition) -> Any:
    """Value that makes a definition pass every record."""
    if definition.kind is FilterKind.TEXT:
        return ""
    elif definition.kind is FilterKind.MULTISELECT:
        return []
    elif definition.kind is FilterKind.BOOLEAN:
        return False
    return None


def create_empty_filters_state(
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> FiltersState:
    return {definition.key: neutral_value(definition) for definition in definitions}


def is_value_active(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, bool):
        return value
    if isinstance(value, (list, tuple, set)):
        return len(value) > 0
    if isinstance(value, dict):
        return value.get("min") is not None or value.get("max") is not None
    return False


def has_active_filters(state: Optional[FiltersState]) -> bool:
    return any(is_value_active(value) for value in (state or {}).values())


def normalize_filters(
    state: Optional[FiltersState],
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> FiltersState:
    """
    Fill missing keys with neutral values and copy list values.

    Keys without a definition are kept as they are.
    """
    normalized = create_empty_filters_state(definitions)
    for key, value in (state or {}).items():
        if isinstance(value, (list, tuple, set)):
            value = list(value)
        elif isinstance(value, dict):
            value = dict(value)
        normalized[key] = value
    return normalized


@dataclass(frozen=True)
class FilterChip:
    """
    One removable summary of an active filter value.

    Multiselect filters produce one chip per selected value; raw_value is the
    value to hand to remove_filter_value() for that chip.
    """

    key: str
    label: str
    value: str
    raw_value: Optional[str] = None
    removable: bool = True


def _format_number(value: Any) -> str:
    number = _as_number(value)
    if number is None:
        return str(value)
    if number.is_integer():
        return str(int(number))
    return str(number)


def get_active_filter_chips(
    state: Optional[FiltersState],
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> List[FilterChip]:
    state = state or {}
    chips = []
    for definition in definitions:
        value = state.get(definition.key)
        if not is_value_active(value):
            continue

        if definition.kind is FilterKind.TEXT and isinstance(value, str):
            chips.append(FilterChip(definition.key, definition.label, f'"{value}"'))
        elif definition.kind is FilterKind.MULTISELECT and isinstance(value, (list, tuple, set)):
            for item in value:
                chips.append(
                    FilterChip(definition.key, definition.label, definition.option_label(item), raw_value=item)
                )
        elif definition.kind is FilterKind.BOOLEAN and value is True:
            chips.append(FilterChip(definition.key, definition.label, "On"))
        elif definition.kind is FilterKind.RANGE and isinstance(value, dict):
            low, high = value.get("min"), value.get("max")
            if low is not None and high is not None:
                text = f"{_format_number(low)} - {_format_number(high)}"
            elif low is not None:
                text = f"≥ {_format_number(low)}"
            else:
                text = f"≤ {_format_number(high)}"
            chips.append(FilterChip(definition.key, definition.label, text))
    return chips


def remove_filter_value(
    state: Optional[FiltersState],
    key: str,
    value: Optional[str] = None,
    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS,
) -> FiltersState:
    """
    Remove one selected value, or reset a whole filter to neutral.

    Args:
        state: Current Filters State (not modified)
        key: Filter key
        value: Multiselect value to remove; None resets the filter

    Returns:
        New Filters State
    """
    new_state = dict(state or {})
    if value is not None:
        current = new_state.get(key)
        if isinstance(current, (list, tuple)):
            new_state[key] = [item for item in current if item != value]
        return new_state

    for definition in definitions:
        if definition.key == key:
            new_state[key] = neutral_value(definition)
            break
    else:
        new_state.pop(key, None)
    return new_state
