"""Tests for service layer exception classes."""

import pytest

from ingredient_library.services.exceptions import (
    PreferencesNotFound,
    RecordNotFound,
    SerializationError,
    ServiceError,
    TransientIOError,
    ValidationError,
    ViewNotFound,
)


class TestExceptions:
    """Tests for exception messages and attributes."""

    def test_record_not_found(self):
        """Should name the missing ingredient."""
        error = RecordNotFound("INGR-001")

        assert error.record_id == "INGR-001"
        assert str(error) == "Ingredient with ID INGR-001 not found"

    def test_view_and_preferences_not_found(self):
        """Should name the missing view or user."""
        assert str(ViewNotFound("v1")) == "View v1 not found"
        assert str(PreferencesNotFound("u1")) == "No preferences found for user 'u1'"

    def test_validation_error_keeps_all_errors(self):
        """Should join every message and keep the list."""
        error = ValidationError(["Name: This field is required", "Stock: Value must be zero or greater"])

        assert error.errors == ["Name: This field is required", "Stock: Value must be zero or greater"]
        assert str(error) == (
            "Validation failed: Name: This field is required; Stock: Value must be zero or greater"
        )

    def test_serialization_error_keeps_cause(self):
        """Should keep the underlying parser error."""
        cause = ValueError("bad")

        error = SerializationError("Invalid preferences JSON", cause)

        assert error.original_error is cause
        assert str(error) == "Serialization error: Invalid preferences JSON"

    def test_transient_error_attempts(self):
        """Should report how many attempts were made."""
        error = TransientIOError("database is locked", attempts=3)

        assert error.attempts == 3
        assert str(error) == "Storage error after 3 attempt(s): database is locked"

    @pytest.mark.parametrize(
        "error",
        [
            RecordNotFound("x"),
            ViewNotFound("x"),
            PreferencesNotFound("x"),
            ValidationError([]),
            SerializationError("x"),
            TransientIOError("x"),
        ],
    )
    def test_all_are_service_errors(self, error):
        """Should derive every exception from ServiceError."""
        assert isinstance(error, ServiceError)
