"""
Constants for the Ingredient Library table engine.

This module defines all system-wide constants including:
- Application metadata and schema versions
- Ingredient statuses, types and stock level thresholds
- Searchable fields and export column headers
- Default column layout and grouping keys
- Validation error messages
"""

from typing import Dict, List, Tuple

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Ingredient Library"
APP_VERSION = "0.1.0"
DATABASE_FILENAME = "ingredient_library.db"

# Schema version written into every saved user preferences blob
PREFERENCES_SCHEMA_VERSION = "1.0.0"

DEFAULT_USER_ID = "default"

# ============================================================================
# Ingredient Attributes
# ============================================================================

STATUS_ACTIVE = "Active"
STATUS_INACTIVE = "Inactive"
STATUS_LIMITED = "Limited"

INGREDIENT_STATUSES: List[str] = [
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    STATUS_LIMITED,
]

TYPE_NATURAL = "Natural"
TYPE_SYNTHETIC = "Synthetic"

INGREDIENT_TYPES: List[str] = [
    TYPE_NATURAL,
    TYPE_SYNTHETIC,
]

# Stock level thresholds: 0 is OutOfStock, below MEDIUM is Low, below HIGH is Medium
STOCK_MEDIUM_MIN = 50
STOCK_HIGH_MIN = 200

# Fields matched by the free-text search, in match order
SEARCHABLE_FIELDS: Tuple[str, ...] = (
    "name",
    "id",
    "cas_number",
    "supplier",
    "category",
    "family",
)

# ============================================================================
# Grouping
# ============================================================================

GROUP_BY_OPTIONS: List[str] = [
    "category",
    "family",
    "supplier",
    "status",
]

# ============================================================================
# Columns
# ============================================================================

# (key, visible, width)
DEFAULT_COLUMN_LAYOUT: List[Tuple[str, bool, int]] = [
    ("select", True, 40),
    ("favorite", True, 80),
    ("name", True, 200),
    ("category", True, 150),
    ("family", True, 120),
    ("status", True, 100),
    ("type", True, 100),
    ("supplier", True, 120),
    ("cost_per_kg", True, 100),
    ("stock", True, 100),
    ("cas_number", False, 120),
    ("ifra_limit_pct", False, 120),
    ("allergens", False, 150),
    ("updated_at", False, 120),
    ("actions", True, 60),
]

DEFAULT_EXPORT_COLUMNS: List[str] = [
    "name",
    "category",
    "family",
    "status",
    "type",
    "supplier",
    "cost_per_kg",
    "stock",
]

COLUMN_HEADERS: Dict[str, str] = {
    "id": "ID",
    "name": "Name",
    "category": "Category",
    "family": "Family",
    "status": "Status",
    "type": "Type",
    "supplier": "Supplier",
    "cost_per_kg": "Cost per Kg",
    "stock": "Stock",
    "favorite": "Favorite",
    "cas_number": "CAS Number",
    "ifra_limit_pct": "IFRA Limit %",
    "allergens": "Allergens",
    "updated_at": "Updated At",
    "parent_id": "Parent ID",
}

LIST_VALUE_SEPARATOR = "; "

# Fields shown side by side in the comparison dialog
COMPARISON_FIELDS: List[str] = [
    "name",
    "category",
    "family",
    "status",
    "type",
    "supplier",
    "cost_per_kg",
    "stock",
    "cas_number",
    "ifra_limit_pct",
    "allergens",
]

# ============================================================================
# Pagination / Comparison Defaults
# ============================================================================

DEFAULT_PAGE_SIZE = 25
PAGE_SIZE_OPTIONS: List[int] = [10, 25, 50, 100]

DEFAULT_COMPARE_MIN = 2
DEFAULT_COMPARE_MAX = 5

# ============================================================================
# Error Messages
# ============================================================================

ERROR_REQUIRED_FIELD = "This field is required"
ERROR_INVALID_NUMBER = "Please enter a valid number"
ERROR_INVALID_POSITIVE = "Value must be greater than zero"
ERROR_INVALID_NON_NEGATIVE = "Value must be zero or greater"
