"""Service layer logging utilities.

Provides structured logging functions for engine and persistence operations,
enabling consistent log format and context across hierarchy building, saved
views, preferences and record store calls.

Usage:
    from ingredient_library.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="create_view",
        outcome="success",
        view_id="3f2c...",
    )

    log_operation(
        logger,
        operation="build_hierarchy",
        outcome="cycle_detected",
        level=logging.WARNING,
        record_id="INGR-007",
    )
"""

import logging
from typing import Any

LOGGER_PREFIX = "ingredient_library.services"


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance with the 'ingredient_library.services' prefix.

    Example:
        >>> logger = get_service_logger("ingredient_library.services.filter_service")
        >>> logger.name
        'ingredient_library.services.filter_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The message is always "<operation>: <outcome>"; the context is passed via
    the 'extra' parameter so handlers can emit it as structured fields.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "set_default_view", "refresh")
        outcome: Outcome description (e.g., "success", "stale_discarded", "error")
        level: Log level (default: INFO). Use DEBUG for frequent logs.
        **context: Additional context fields (view_id, user_id, error, ...)
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
