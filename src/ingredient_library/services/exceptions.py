"""Service layer exception classes for the Ingredient Library.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the application.

Exceptions are raised inside store and persistence adapters and converted to
StoreResult envelopes at the boundary; the table engine only ever sees the
envelope. The import functions are the one exception: they raise
SerializationError directly so callers can tell an unreadable blob apart from
a readable-but-invalid one (ValidationError).

Exception Hierarchy:
    ServiceError (base)
    ├── RecordNotFound
    ├── ViewNotFound
    ├── PreferencesNotFound
    ├── ValidationError
    ├── SerializationError
    └── TransientIOError
"""

from typing import List, Optional


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.
    """

    pass


class RecordNotFound(ServiceError):
    """Raised when an ingredient record cannot be found by ID.

    Args:
        record_id: The identifier that was not found

    Example:
        >>> raise RecordNotFound("INGR-001")
        RecordNotFound: Ingredient with ID INGR-001 not found
    """

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Ingredient with ID {record_id} not found")


class ViewNotFound(ServiceError):
    """Raised when a saved view cannot be found by ID."""

    def __init__(self, view_id: str):
        self.view_id = view_id
        super().__init__(f"View {view_id} not found")


class PreferencesNotFound(ServiceError):
    """Raised when no stored preferences exist for a user."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No preferences found for user '{user_id}'")


class ValidationError(ServiceError):
    """Raised when data or configuration validation fails.

    Carries every problem found, not just the first.

    Args:
        errors: List of human-readable error messages
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        error_msg = "; ".join(self.errors)
        super().__init__(f"Validation failed: {error_msg}")


class SerializationError(ServiceError):
    """Raised when a serialized view, preferences or config blob cannot be parsed.

    Args:
        message: Description of what could not be read
        original_error: Underlying parser exception, if any
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(f"Serialization error: {message}")


class TransientIOError(ServiceError):
    """Raised when a storage operation still fails after all retry attempts.

    Args:
        message: Description of the failed operation
        attempts: Number of attempts made before giving up
        original_error: Last underlying exception
    """

    def __init__(self, message: str, attempts: int = 1, original_error: Optional[Exception] = None):
        self.attempts = attempts
        self.original_error = original_error
        super().__init__(f"Storage error after {attempts} attempt(s): {message}")
