"""
Delivery Service - batch and single delivery submission.

This module records delivery events (consumption records) against donations:
- Validates every entry and the actor's access to every referenced location
- Locks every referenced donation for the rest of the transaction
- Keeps each entry inside its location: the donation and the child must both belong to it
- Checks gift entries against the donation's declared recipients
- Checks aggregate demand per donation against derived remaining stock
- Writes all records of the call, or none
- Marks gift recipients delivered

Every check runs inside the locked transaction before the first write, so a
failing entry leaves no record from its batch behind, and two concurrent
batches can never both pass validation against the same remaining stock.
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from donation_ledger.models import Child, ConsumptionRecord, Donation, Location

from .authorization import Actor, require_admin, require_locations_access
from .database import ledger_scope, lock_for_update
from .dto import DeliveryEntry, DeliveryResult
from .exceptions import (
    ChildNotFound,
    ConsumptionRecordNotFound,
    DatabaseError,
    DonationNotFound,
    InsufficientStock,
    LocationNotFound,
    RecipientAssignmentMissing,
    RecipientNotAuthorized,
    ServiceError,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation
from .stock_service import effective_amount, stock_level_for

logger = get_service_logger(__name__)

EntryLike = Union[DeliveryEntry, Mapping[str, Any]]


# =============================================================================
# Validation Helpers
# =============================================================================


def _coerce_entry(entry: EntryLike) -> DeliveryEntry:
    if isinstance(entry, DeliveryEntry):
        return entry
    return DeliveryEntry.from_dict(entry)


def _is_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _validate_entries(entries: List[DeliveryEntry]) -> None:
    """Reject malformed entries before touching the database."""
    errors = []

    if not entries:
        errors.append("At least one delivery entry is required")

    for index, entry in enumerate(entries):
        if not _is_id(entry.child_id):
            errors.append(f"Entry {index}: child_id must be a positive integer")
        if not _is_id(entry.location_id):
            errors.append(f"Entry {index}: location_id must be a positive integer")
        if entry.donation_id is not None and not _is_id(entry.donation_id):
            errors.append(f"Entry {index}: donation_id must be a positive integer")
        if not isinstance(entry.attended, bool):
            errors.append(f"Entry {index}: attended must be true or false")
        if entry.amount is not None and not _is_id(entry.amount):
            errors.append(f"Entry {index}: amount must be a positive integer")

    if errors:
        raise ValidationError(errors)


def requested_by_donation(entries: Iterable[DeliveryEntry]) -> Dict[int, int]:
    """
    Sum requested amounts per donation over the entries that consume stock.

    Absent entries are skipped; entries without an amount request one unit.

    Returns:
        OrderedDict of donation_id -> requested amount, in first-seen order
    """
    requested: Dict[int, int] = OrderedDict()
    for entry in entries:
        if not entry.consumes_stock:
            continue
        requested[entry.donation_id] = requested.get(entry.donation_id, 0) + effective_amount(
            entry.amount
        )
    return requested


def _check_references(session: Session, entries: List[DeliveryEntry]) -> Dict[int, Optional[int]]:
    """
    Verify that every referenced child and location exists.

    Returns:
        Dict of child_id -> the location the child is registered at
    """
    child_ids = {entry.child_id for entry in entries}
    child_locations = dict(
        session.query(Child.id, Child.location_id).filter(Child.id.in_(child_ids)).all()
    )
    found_children = set(child_locations)
    missing_children = sorted(child_ids - found_children)
    if missing_children:
        raise ChildNotFound(missing_children[0])

    location_ids = {entry.location_id for entry in entries}
    found_locations = {
        row[0] for row in session.query(Location.id).filter(Location.id.in_(location_ids)).all()
    }
    missing_locations = sorted(location_ids - found_locations)
    if missing_locations:
        raise LocationNotFound(missing_locations[0])

    return child_locations


def _check_entry_locations(
    entries: List[DeliveryEntry],
    donations: Dict[int, Donation],
    child_locations: Dict[int, Optional[int]],
) -> None:
    """Each entry stays inside its own location: donation owner and child registration."""
    for entry in entries:
        donation = donations.get(entry.donation_id)
        if donation is not None and donation.location_id != entry.location_id:
            mismatch = RecipientNotAuthorized(
                entry.location_id, donation.location_id, donation_id=donation.id
            )
        elif child_locations[entry.child_id] != entry.location_id:
            mismatch = RecipientNotAuthorized(
                entry.location_id, child_locations[entry.child_id], child_id=entry.child_id
            )
        else:
            continue

        log_operation(
            logger,
            operation="submit_delivery",
            outcome="location_mismatch",
            level=logging.WARNING,
            entry_location_id=entry.location_id,
            location_id=mismatch.location_id,
            donation_id=entry.donation_id,
            child_id=entry.child_id,
        )
        raise mismatch


def _check_gift_recipients(entries: List[DeliveryEntry], donations: Dict[int, Donation]) -> None:
    """Every delivered gift must go to a declared recipient."""
    for entry in entries:
        if not entry.consumes_stock:
            continue
        donation = donations[entry.donation_id]
        if donation.is_gift and donation.assignment_for(entry.child_id) is None:
            log_operation(
                logger,
                operation="submit_delivery",
                outcome="recipient_assignment_missing",
                level=logging.WARNING,
                donation_id=donation.id,
                child_id=entry.child_id,
            )
            raise RecipientAssignmentMissing(donation.id, entry.child_id)


def _check_stock(
    session: Session,
    entries: List[DeliveryEntry],
    donations: Dict[int, Donation],
) -> None:
    """Fail on the first tracked donation whose demand exceeds its remaining stock."""
    for donation_id, requested in requested_by_donation(entries).items():
        donation = donations[donation_id]
        if not donation.is_tracked:
            continue

        level = stock_level_for(donation, session)
        if requested > level.remaining:
            log_operation(
                logger,
                operation="submit_delivery",
                outcome="insufficient_stock",
                level=logging.WARNING,
                donation_id=donation_id,
                available=level.remaining,
                requested=requested,
            )
            raise InsufficientStock(donation_id, available=level.remaining, requested=requested)


# =============================================================================
# Internal Implementation Functions
# =============================================================================


def _submit_impl(
    entries: List[DeliveryEntry],
    with_batch_id: bool,
    session: Session,
) -> DeliveryResult:
    """Validate, then write, all entries inside the caller's locked transaction."""
    donation_ids = {entry.donation_id for entry in entries if entry.donation_id is not None}
    donations = lock_for_update(session, Donation, donation_ids)

    for donation_id in sorted(donation_ids):
        if donation_id not in donations:
            raise DonationNotFound(donation_id)

    child_locations = _check_references(session, entries)
    _check_entry_locations(entries, donations, child_locations)
    _check_gift_recipients(entries, donations)
    _check_stock(session, entries, donations)

    batch_id = str(uuid4()) if with_batch_id else None

    records = []
    for entry in entries:
        record = ConsumptionRecord(
            donation_id=entry.donation_id,
            child_id=entry.child_id,
            location_id=entry.location_id,
            batch_id=batch_id,
            attended=entry.attended,
            amount_consumed=effective_amount(entry.amount) if entry.consumes_stock else None,
            notes=entry.notes,
        )
        session.add(record)
        records.append(record)

    session.flush()

    delivered = 0
    for entry in entries:
        if not entry.consumes_stock:
            continue
        donation = donations[entry.donation_id]
        if donation.is_gift and donation.assignment_for(entry.child_id).mark_delivered():
            delivered += 1

    session.flush()

    log_operation(
        logger,
        operation="submit_delivery",
        outcome="success",
        batch_id=batch_id,
        record_count=len(records),
        donation_ids=sorted(donation_ids),
        gifts_delivered=delivered,
    )
    return DeliveryResult(records=records, batch_id=batch_id)


def _submit(
    entries: List[DeliveryEntry],
    actor: Actor,
    with_batch_id: bool,
    session: Optional[Session],
) -> DeliveryResult:
    _validate_entries(entries)
    require_locations_access(actor, (entry.location_id for entry in entries))

    if session is not None:
        return _submit_impl(entries, with_batch_id, session)

    try:
        with ledger_scope() as sess:
            return _submit_impl(entries, with_batch_id, sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to record deliveries: {str(e)}", original_error=e) from e


def _delete_consumption_record_impl(record_id: int, actor: Actor, session: Session) -> None:
    record = lock_for_update(session, ConsumptionRecord, [record_id]).get(record_id)
    if record is None:
        raise ConsumptionRecordNotFound(record_id)

    require_admin(actor, record.location_id)

    session.delete(record)
    session.flush()

    log_operation(
        logger,
        operation="delete_consumption_record",
        outcome="success",
        record_id=record_id,
        donation_id=record.donation_id,
        attended=record.attended,
        amount_consumed=record.amount_consumed,
    )


# =============================================================================
# Public API Functions
# =============================================================================


def submit_batch(
    entries: List[EntryLike],
    actor: Actor,
    session: Optional[Session] = None,
) -> DeliveryResult:
    """
    Record a batch of delivery events atomically.

    All entries share one generated batch id. The call either creates one
    consumption record per entry or creates nothing.

    Args:
        entries: DeliveryEntry objects or dicts with child_id, location_id and
            optional donation_id, attended, amount, notes
        actor: Authenticated caller
        session: Optional session. It must come from ledger_scope() so the
            stock check runs under the donation lock.

    Returns:
        DeliveryResult with the created records and the batch id

    Raises:
        ValidationError: If an entry is malformed or the batch is empty
        AuthorizationDenied: If the actor lacks any referenced location
        DonationNotFound: If a referenced donation doesn't exist
        ChildNotFound / LocationNotFound: If a referenced child or location doesn't exist
        RecipientNotAuthorized: If an entry draws from another location's donation
            or serves a child registered at another location
        RecipientAssignmentMissing: If a gift goes to an undeclared child
        InsufficientStock: If a donation's total demand exceeds its remaining stock
        ConcurrencyConflict: If the donation lock timed out (retryable)

    Example:
        >>> result = submit_batch(
        ...     [
        ...         {"child_id": 1, "location_id": 1, "donation_id": 7, "amount": 2},
        ...         {"child_id": 2, "location_id": 1, "donation_id": 7},
        ...         {"child_id": 3, "location_id": 1, "attended": False},
        ...     ],
        ...     actor,
        ... )
        >>> len(result.records)
        3
    """
    coerced = [_coerce_entry(entry) for entry in entries]
    return _submit(coerced, actor, with_batch_id=True, session=session)


def submit_one(
    entry: EntryLike,
    actor: Actor,
    session: Optional[Session] = None,
) -> DeliveryResult:
    """
    Record a single delivery event.

    Same rules as submit_batch() for a batch of one; no batch id is assigned.

    Args:
        entry: DeliveryEntry or dict
        actor: Authenticated caller
        session: Optional session from ledger_scope()

    Returns:
        DeliveryResult with one record and batch_id None

    Raises:
        Same as submit_batch()
    """
    return _submit([_coerce_entry(entry)], actor, with_batch_id=False, session=session)


def delete_consumption_record(
    record_id: int,
    actor: Actor,
    session: Optional[Session] = None,
) -> None:
    """
    Delete a consumption record to correct a mistake.

    Administrative correction only: this is the sole mutation path for
    consumption records. Deleting an attended record returns its amount to
    the donation's remaining stock. Gift assignments stay delivered.

    Args:
        record_id: Record to delete
        actor: Must be an administrator
        session: Optional session from ledger_scope()

    Raises:
        ConsumptionRecordNotFound: If the record doesn't exist
        AuthorizationDenied: If the actor is not an administrator
    """
    if session is not None:
        return _delete_consumption_record_impl(record_id, actor, session)

    try:
        with ledger_scope() as sess:
            _delete_consumption_record_impl(record_id, actor, sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(
            f"Failed to delete consumption record: {str(e)}", original_error=e
        ) from e
