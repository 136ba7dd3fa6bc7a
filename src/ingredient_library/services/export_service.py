"""
Export Service - tabular export and side-by-side comparison of records.

Exports work on a record list plus an ordered list of column keys. Headers
come from COLUMN_HEADERS (unknown keys are used as given), list values are
joined with "; " and missing values become empty strings.

Usage:
    from ingredient_library.services.export_service import export_to_csv

    csv_text = export_to_csv(records, ["name", "category", "cost_per_kg"])
"""

import csv
import io
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..models.ingredient import Ingredient
from ..utils.constants import (
    COLUMN_HEADERS,
    COMPARISON_FIELDS,
    DEFAULT_COMPARE_MAX,
    DEFAULT_COMPARE_MIN,
    DEFAULT_EXPORT_COLUMNS,
    LIST_VALUE_SEPARATOR,
)
from ..utils.datetime_utils import parse_iso
from .exceptions import ValidationError
from .logging_utils import get_service_logger, log_operation
from .selection_service import Selection, selected_records

logger = get_service_logger(__name__)

EXPORT_FORMAT_CSV = "csv"
EXPORT_FORMAT_JSON = "json"


# ============================================================================
# Export
# ============================================================================


def column_header(key: str) -> str:
    return COLUMN_HEADERS.get(key, key)


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_cell(value: Any) -> str:
    """
    Text for one exported cell.

    Examples:
        >>> format_cell(["Limonene", "Linalool"])
        'Limonene; Linalool'
        >>> format_cell(None)
        ''
        >>> format_cell(125.0)
        '125'
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return LIST_VALUE_SEPARATOR.join(str(item) for item in value)
    if isinstance(value, (int, float)):
        return _format_number(value)
    return str(value)


def build_export_table(
    records: Sequence[Ingredient], columns: Sequence[str] = DEFAULT_EXPORT_COLUMNS
) -> Tuple[List[str], List[List[str]]]:
    """
    Headers and formatted rows for an export.

    Returns:
        Tuple of (headers, rows); each row holds one string per column
    """
    headers = [column_header(key) for key in columns]
    rows = [[format_cell(getattr(record, key, None)) for key in columns] for record in records]
    return headers, rows


def export_to_csv(
    records: Sequence[Ingredient], columns: Sequence[str] = DEFAULT_EXPORT_COLUMNS
) -> str:
    """
    Export records as CSV text.

    Fields containing a comma, quote or newline are quoted with internal
    quotes doubled.
    """
    headers, rows = build_export_table(records, columns)
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    log_operation(logger, "export_csv", "success", level=logging.DEBUG, row_count=len(rows))
    return buffer.getvalue().rstrip("\n")


def export_to_json(records: Sequence[Ingredient], columns: Optional[Sequence[str]] = None) -> str:
    """
    Export records as a JSON array.

    With columns=None every record field is written; otherwise only the
    named fields, in column order.
    """
    if columns is None:
        payload = [record.to_dict() for record in records]
    else:
        payload = [{key: getattr(record, key, None) for key in columns} for record in records]
    return json.dumps(payload, indent=2, ensure_ascii=False)


def export_selected(
    records: Sequence[Ingredient],
    selection: Selection,
    fmt: str = EXPORT_FORMAT_CSV,
    columns: Optional[Sequence[str]] = None,
) -> str:
    """
    Export only the selected records (flat list order).

    Raises:
        ValueError: If fmt is not "csv" or "json"
    """
    chosen = selected_records(records, selection)
    if fmt == EXPORT_FORMAT_CSV:
        return export_to_csv(chosen, columns if columns is not None else DEFAULT_EXPORT_COLUMNS)
    if fmt == EXPORT_FORMAT_JSON:
        return export_to_json(chosen, columns)
    raise ValueError(f"Unsupported export format: {fmt}")


# ============================================================================
# Comparison
# ============================================================================


@dataclass(frozen=True)
class ComparisonRow:
    key: str
    label: str
    values: Tuple[str, ...]

    @property
    def differs(self) -> bool:
        return len(set(self.values)) > 1


@dataclass(frozen=True)
class ComparisonTable:
    """Records side by side: one column per record, one row per field."""

    record_ids: Tuple[str, ...]
    titles: Tuple[str, ...]
    rows: Tuple[ComparisonRow, ...]


COMPARISON_LABELS: Dict[str, str] = {
    "cost_per_kg": "Cost/kg",
    "ifra_limit_pct": "IFRA Limit",
    "updated_at": "Updated",
}


def format_currency(value: Any) -> str:
    """
    Examples:
        >>> format_currency(1000)
        '$1,000.00'
    """
    if value is None or isinstance(value, bool):
        return "N/A"
    try:
        return f"${float(value):,.2f}"
    except (TypeError, ValueError):
        return "N/A"


def _format_comparison_value(key: str, value: Any) -> str:
    if key == "cost_per_kg":
        return format_currency(value)
    if key == "stock":
        return f"{format_cell(value)} kg" if value is not None else "N/A"
    if key == "ifra_limit_pct":
        return f"{format_cell(value)}%" if value else "N/A"
    if key == "allergens":
        return format_cell(value) if value else "None"
    if key == "updated_at":
        parsed = parse_iso(value)
        return parsed.date().isoformat() if parsed else "N/A"
    if value is None or value == "":
        return "N/A"
    return format_cell(value)


def build_comparison(
    records: Sequence[Ingredient],
    fields: Optional[Sequence[str]] = None,
    min_items: int = DEFAULT_COMPARE_MIN,
    max_items: int = DEFAULT_COMPARE_MAX,
) -> ComparisonTable:
    """
    Build the comparison table for the given records.

    Args:
        records: Records to compare, in display order
        fields: Field keys to compare (default: COMPARISON_FIELDS)
        min_items: Minimum number of records (inclusive)
        max_items: Maximum number of records (inclusive)

    Raises:
        ValidationError: If the record count is outside [min_items, max_items]
    """
    if not min_items <= len(records) <= max_items:
        raise ValidationError(
            [f"Select between {min_items} and {max_items} ingredients to compare (got {len(records)})"]
        )
    fields = list(fields) if fields is not None else list(COMPARISON_FIELDS)
    rows = tuple(
        ComparisonRow(
            key=key,
            label=COMPARISON_LABELS.get(key, column_header(key)),
            values=tuple(_format_comparison_value(key, getattr(record, key, None)) for record in records),
        )
        for key in fields
    )
    return ComparisonTable(
        record_ids=tuple(record.id for record in records),
        titles=tuple(record.name for record in records),
        rows=rows,
    )
