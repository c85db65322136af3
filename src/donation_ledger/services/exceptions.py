"""Service layer exception classes for the donation ledger.

Every ledger failure is raised before any write in a call reaches the
database, and carries enough detail for the caller to act on it.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    ├── DatabaseError
    ├── InsufficientStock          (recoverable: re-query and retry smaller)
    ├── DonationNotFound
    ├── DonationInUse
    ├── RecipientAssignmentMissing
    ├── AuthorizationDenied
    │   └── RecipientNotAuthorized (location mismatch inside a delivery entry)
    ├── ConcurrencyConflict        (retryable: re-run the whole call)
    ├── ConsumptionRecordNotFound
    ├── LocationNotFound
    ├── ChildNotFound
    └── ImmutableRecordError
"""

from typing import Optional


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions inherit from this class.
    """

    retryable = False


class ValidationError(ServiceError):
    """Raised when input validation fails.

    Args:
        errors: List of human-readable validation messages

    Example:
        >>> raise ValidationError(["Amount must be a positive integer"])
        ValidationError: Validation failed: Amount must be a positive integer
    """

    def __init__(self, errors: list):
        self.errors = errors
        error_msg = "; ".join(errors)
        super().__init__(f"Validation failed: {error_msg}")


class DatabaseError(ServiceError):
    """Raised when a database operation fails for reasons outside the ledger rules."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(f"Database error: {message}")


class InsufficientStock(ServiceError):
    """Raised when a delivery requests more than a donation has left.

    Args:
        donation_id: Donation that would be oversold
        available: Remaining stock at validation time
        requested: Total amount the call asked for

    Example:
        >>> raise InsufficientStock(7, available=4, requested=5)
        InsufficientStock: Insufficient stock for donation 7: available 4, requested 5
    """

    def __init__(self, donation_id: int, available: int, requested: int):
        self.donation_id = donation_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for donation {donation_id}: "
            f"available {available}, requested {requested}"
        )


class DonationNotFound(ServiceError):
    """Raised when a donation cannot be found by ID."""

    def __init__(self, donation_id: int):
        self.donation_id = donation_id
        super().__init__(f"Donation with ID {donation_id} not found")


class DonationInUse(ServiceError):
    """Raised when deleting a donation that consumption records still reference."""

    def __init__(self, donation_id: int, record_count: int):
        self.donation_id = donation_id
        self.record_count = record_count
        super().__init__(
            f"Cannot delete donation {donation_id}: "
            f"referenced by {record_count} consumption record(s)"
        )


class RecipientAssignmentMissing(ServiceError):
    """Raised when delivering a gift to a child never declared as its recipient.

    Example:
        >>> raise RecipientAssignmentMissing(3, 12)
        RecipientAssignmentMissing: Child 12 is not a declared recipient of donation 3
    """

    def __init__(self, donation_id: int, child_id: int):
        self.donation_id = donation_id
        self.child_id = child_id
        super().__init__(f"Child {child_id} is not a declared recipient of donation {donation_id}")


class AuthorizationDenied(ServiceError):
    """Raised when the actor has no access to a location."""

    def __init__(self, location_id: Optional[int]):
        self.location_id = location_id
        super().__init__(f"Access denied to location {location_id}")


class RecipientNotAuthorized(AuthorizationDenied):
    """Raised when a delivery entry crosses locations.

    The entry's location must own the donation it draws from and be the
    location the child is registered at. ``location_id`` names the location
    the entry tried to reach.

    Example:
        >>> raise RecipientNotAuthorized(entry_location_id=1, location_id=2, donation_id=9)
        RecipientNotAuthorized: Delivery at location 1 cannot draw from donation 9 of location 2
    """

    def __init__(
        self,
        entry_location_id: int,
        location_id: Optional[int],
        donation_id: Optional[int] = None,
        child_id: Optional[int] = None,
    ):
        self.entry_location_id = entry_location_id
        self.donation_id = donation_id
        self.child_id = child_id
        self.location_id = location_id
        if donation_id is not None:
            detail = f"cannot draw from donation {donation_id} of location {location_id}"
        else:
            detail = f"cannot serve child {child_id} registered at location {location_id}"
        ServiceError.__init__(self, f"Delivery at location {entry_location_id} {detail}")


class ConcurrencyConflict(ServiceError):
    """Raised when the donation lock cannot be acquired or a serialization check fails.

    Nothing from the call was written; re-running the whole call is safe.
    """

    retryable = True

    def __init__(self, message: str = "Ledger write conflicted with a concurrent transaction",
                 original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(message)


class ConsumptionRecordNotFound(ServiceError):
    """Raised when a consumption record cannot be found by ID."""

    def __init__(self, record_id: int):
        self.record_id = record_id
        super().__init__(f"Consumption record with ID {record_id} not found")


class LocationNotFound(ServiceError):
    """Raised when a location cannot be found by ID."""

    def __init__(self, location_id: int):
        self.location_id = location_id
        super().__init__(f"Location with ID {location_id} not found")


class ChildNotFound(ServiceError):
    """Raised when a child cannot be found by ID."""

    def __init__(self, child_id: int):
        self.child_id = child_id
        super().__init__(f"Child with ID {child_id} not found")


class ImmutableRecordError(ServiceError):
    """Raised when code attempts to update a consumption record.

    Records are append-only; administrative deletion is the only correction.
    """

    def __init__(self, record_id: int):
        self.record_id = record_id
        super().__init__(f"Consumption record {record_id} is immutable")
