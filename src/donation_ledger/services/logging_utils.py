"""Service layer logging utilities.

Provides structured logging functions for ledger operations, enabling a
consistent log format and context across delivery, replenishment and
recipient operations.

Usage:
    from donation_ledger.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    # Log successful operation
    log_operation(
        logger,
        operation="submit_batch",
        outcome="success",
        batch_id="5f0c...",
        record_count=12,
    )

    # Log a rejected operation
    log_operation(
        logger,
        operation="submit_batch",
        outcome="insufficient_stock",
        level=logging.WARNING,
        donation_id=7,
        available=4,
        requested=5,
    )
"""

import logging
from typing import Any

LOGGER_PREFIX = "donation_ledger.services"


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger named '<LOGGER_PREFIX>.<module>'.

    Example:
        >>> logger = get_service_logger(__name__)
        >>> logger.name
        'donation_ledger.services.delivery_service'
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

    The context is passed via the 'extra' parameter so handlers can emit it
    as structured fields.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "submit_batch", "add_supply")
        outcome: Outcome description (e.g., "success", "insufficient_stock")
        level: Log level (default: INFO)
        **context: Additional context fields (donation_id, batch_id, amounts, ...)
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
