"""
Input validation functions for the Ingredient Library.

This module provides validation functions used by the record stores and the
configuration layer:
- Numeric validation (positive, non-negative, ranges)
- String validation (required fields, length)
- Whole-record validation for ingredient create/update payloads

Every validator returns a (is_valid, error_message) tuple so callers can
collect all problems instead of stopping at the first one.
"""

from typing import Any, Optional, Tuple

from .constants import (
    ERROR_INVALID_NON_NEGATIVE,
    ERROR_INVALID_NUMBER,
    ERROR_INVALID_POSITIVE,
    ERROR_REQUIRED_FIELD,
)

MAX_NAME_LENGTH = 200


def validate_required_string(value: Optional[str], field_name: str = "Field") -> Tuple[bool, str]:
    """
    Validate that a string field is not empty.

    Args:
        value: The string value to validate
        field_name: Name of the field for error messages

    Returns:
        Tuple of (is_valid, error_message)
    """
    if value is None or not isinstance(value, str) or value.strip() == "":
        return False, f"{field_name}: {ERROR_REQUIRED_FIELD}"
    return True, ""


def validate_string_length(
    value: str, max_length: int, field_name: str = "Field"
) -> Tuple[bool, str]:
    """Validate that a string doesn't exceed maximum length."""
    if value and len(value) > max_length:
        return False, f"{field_name}: Must be {max_length} characters or less"
    return True, ""


def _as_number(value: Any) -> Optional[float]:
    # bool is an int subclass; a checkbox value is never a valid quantity
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def validate_positive_number(value: Any, field_name: str = "Field") -> Tuple[bool, str]:
    """
    Validate that a value is a positive number (> 0).

    Args:
        value: The value to validate
        field_name: Name of the field for error messages

    Returns:
        Tuple of (is_valid, error_message)
    """
    num_value = _as_number(value)
    if num_value is None:
        return False, f"{field_name}: {ERROR_INVALID_NUMBER}"
    if num_value <= 0:
        return False, f"{field_name}: {ERROR_INVALID_POSITIVE}"
    return True, ""


def validate_non_negative_number(value: Any, field_name: str = "Field") -> Tuple[bool, str]:
    """
    Validate that a value is a non-negative number (>= 0).

    Args:
        value: The value to validate
        field_name: Name of the field for error messages

    Returns:
        Tuple of (is_valid, error_message)
    """
    num_value = _as_number(value)
    if num_value is None:
        return False, f"{field_name}: {ERROR_INVALID_NUMBER}"
    if num_value < 0:
        return False, f"{field_name}: {ERROR_INVALID_NON_NEGATIVE}"
    return True, ""


def validate_number_range(
    value: Any, min_value: float, max_value: float, field_name: str = "Field"
) -> Tuple[bool, str]:
    """Validate that a number is within a specified inclusive range."""
    num_value = _as_number(value)
    if num_value is None:
        return False, f"{field_name}: {ERROR_INVALID_NUMBER}"
    if num_value < min_value or num_value > max_value:
        return False, f"{field_name}: Must be between {min_value} and {max_value}"
    return True, ""


def validate_ingredient_data(data: dict, partial: bool = False) -> Tuple[bool, list]:  # noqa: C901
    """
    Validate all fields for an ingredient payload.

    Args:
        data: Dictionary containing ingredient fields
        partial: If True, only fields present in data are checked (update)

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = []

    for field_name, label in (
        ("name", "Name"),
        ("category", "Category"),
        ("family", "Family"),
        ("supplier", "Supplier"),
    ):
        if partial and field_name not in data:
            continue
        is_valid, error = validate_required_string(data.get(field_name), label)
        if not is_valid:
            errors.append(error)

    if "name" in data and isinstance(data.get("name"), str):
        is_valid, error = validate_string_length(data["name"], MAX_NAME_LENGTH, "Name")
        if not is_valid:
            errors.append(error)

    for field_name, label in (("cost_per_kg", "Cost per Kg"), ("stock", "Stock")):
        if partial and field_name not in data:
            continue
        is_valid, error = validate_non_negative_number(data.get(field_name, 0), label)
        if not is_valid:
            errors.append(error)

    # Optional: regulatory limit percentage (0-100 if provided)
    if data.get("ifra_limit_pct") is not None:
        is_valid, error = validate_number_range(data["ifra_limit_pct"], 0, 100, "IFRA Limit %")
        if not is_valid:
            errors.append(error)

    allergens = data.get("allergens")
    if allergens is not None and (
        not isinstance(allergens, (list, tuple)) or not all(isinstance(a, str) for a in allergens)
    ):
        errors.append("Allergens: Must be a list of names")

    if "favorite" in data and not isinstance(data["favorite"], bool):
        errors.append("Favorite: Must be true or false")

    return len(errors) == 0, errors
