"""
Enumerations for the table engine.

This module contains enums used across filters and stock reporting:
- StockLevel: Derived bucket for a raw stock quantity
- FilterKind: Closed set of filter evaluation strategies
- SortDirection: Column sort direction
"""

from enum import Enum


class StockLevel(str, Enum):
    """
    Stock level bucket derived from a numeric stock quantity.

    Never stored on a record; always computed from the current stock value.

    Values:
        OUT_OF_STOCK: stock == 0
        LOW: 1 - 49
        MEDIUM: 50 - 199
        HIGH: 200 and above
    """

    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    OUT_OF_STOCK = "OutOfStock"


class FilterKind(str, Enum):
    """
    Filter evaluation strategy.

    Values:
        TEXT: Case-insensitive substring match over a set of fields
        MULTISELECT: Membership (or intersection for list fields)
        RANGE: Inclusive numeric {min, max} bounds
        BOOLEAN: When on, only records whose field is True
    """

    TEXT = "text"
    MULTISELECT = "multiselect"
    RANGE = "range"
    BOOLEAN = "boolean"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"
