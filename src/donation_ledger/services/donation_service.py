"""
Donation Service - donation lifecycle.

This service provides:
- create_donation: stock or gift donations, gifts with their declared recipients
- get_donation: lookup by id
- update_donation: descriptive fields only
- delete_donation: only while no consumption record references the donation

Capacity changes go through replenishment_service.add_supply(), and a
donation's category cannot change after creation because it selects the
consumption model (stock vs gift).
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from donation_ledger.models import (
    Child,
    ConsumptionRecord,
    Donation,
    GiftDonation,
    Location,
    RecipientAssignment,
    donation_class_for,
)
from donation_ledger.utils.constants import (
    GIFT_CATEGORY,
    MAX_CATEGORY_LENGTH,
    MAX_NAME_LENGTH,
    MAX_UNIT_LENGTH,
    MIN_DONOR_NAME_LENGTH,
)

from .authorization import Actor, require_location_access
from .database import ledger_scope, lock_for_update, session_scope
from .exceptions import (
    DatabaseError,
    DonationInUse,
    DonationNotFound,
    LocationNotFound,
    ServiceError,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

UPDATABLE_FIELDS = ("donor_name", "description", "unit", "location_id")


# =============================================================================
# Validation Helpers
# =============================================================================


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _validate_descriptive_fields(data: Dict, errors: List[str]) -> None:
    if "donor_name" in data:
        donor_name = (data.get("donor_name") or "").strip()
        if len(donor_name) < MIN_DONOR_NAME_LENGTH:
            errors.append(f"Donor name must have at least {MIN_DONOR_NAME_LENGTH} characters")
        elif len(donor_name) > MAX_NAME_LENGTH:
            errors.append(f"Donor name must have at most {MAX_NAME_LENGTH} characters")

    unit = data.get("unit")
    if unit is not None:
        if not str(unit).strip():
            errors.append("Unit cannot be empty")
        elif len(str(unit)) > MAX_UNIT_LENGTH:
            errors.append(f"Unit must have at most {MAX_UNIT_LENGTH} characters")

    if "location_id" in data and not _is_positive_int(data.get("location_id")):
        errors.append("Location ID must be a positive integer")


def _validate_new_donation(data: Dict) -> List[int]:
    """
    Validate creation data.

    Returns:
        Declared recipient child ids (empty for stock donations)
    """
    errors = []

    for required in ("donor_name", "location_id"):
        if required not in data:
            errors.append(f"{required} is required")
    _validate_descriptive_fields(data, errors)

    category = (data.get("category") or "").strip()
    if not category:
        errors.append("Category is required")
    elif len(category) > MAX_CATEGORY_LENGTH:
        errors.append(f"Category must have at most {MAX_CATEGORY_LENGTH} characters")

    capacity = data.get("total_capacity")
    if capacity is not None and not _is_positive_int(capacity):
        errors.append("Total capacity must be a positive integer")

    recipients = list(data.get("recipient_child_ids") or [])
    if category == GIFT_CATEGORY:
        if not recipients:
            errors.append(f"A '{GIFT_CATEGORY}' donation needs at least one recipient")
        if any(not _is_positive_int(child_id) for child_id in recipients):
            errors.append("Recipient child IDs must be positive integers")
        elif len(set(recipients)) != len(recipients):
            errors.append("Recipients must not repeat")
        if _is_positive_int(capacity) and capacity < len(recipients):
            errors.append("Total capacity must be at least the number of recipients")
    elif recipients:
        errors.append(f"Only '{GIFT_CATEGORY}' donations declare recipients")

    if errors:
        raise ValidationError(errors)
    return recipients


# =============================================================================
# Internal Implementation Functions
# =============================================================================


def _check_location(session: Session, location_id: int) -> None:
    if session.query(Location.id).filter(Location.id == location_id).first() is None:
        raise LocationNotFound(location_id)


def _check_recipients(session: Session, location_id: int, child_ids: List[int]) -> None:
    """Every recipient must be an active child of the donation's location."""
    found = {
        row[0]
        for row in session.query(Child.id)
        .filter(Child.id.in_(child_ids))
        .filter(Child.location_id == location_id)
        .filter(Child.active.is_(True))
        .all()
    }
    missing = [child_id for child_id in child_ids if child_id not in found]
    if missing:
        raise ValidationError(
            [
                "Recipients not found or not registered at the donation's location: "
                + ", ".join(str(child_id) for child_id in missing)
            ]
        )


def _create_donation_impl(
    data: Dict, recipients: List[int], actor: Actor, session: Session
) -> Donation:
    location_id = data["location_id"]
    _check_location(session, location_id)

    category = data["category"].strip()
    donation_class = donation_class_for(category)
    if donation_class is GiftDonation:
        _check_recipients(session, location_id, recipients)

    donation = donation_class(
        location_id=location_id,
        donor_name=data["donor_name"].strip(),
        category=category,
        description=data.get("description"),
        total_capacity=data.get("total_capacity"),
        unit=data.get("unit"),
    )
    if data.get("donated_at") is not None:
        donation.donated_at = data["donated_at"]
    if donation_class is GiftDonation:
        donation.recipient_assignments = [
            RecipientAssignment(child_id=child_id) for child_id in recipients
        ]

    session.add(donation)
    session.flush()

    log_operation(
        logger,
        operation="create_donation",
        outcome="success",
        donation_id=donation.id,
        kind=donation.kind,
        location_id=location_id,
        total_capacity=donation.total_capacity,
        recipient_count=len(recipients),
        user_id=actor.user_id,
    )
    return donation


def _update_donation_impl(
    donation_id: int, data: Dict, actor: Actor, session: Session
) -> Donation:
    donation = lock_for_update(session, Donation, [donation_id]).get(donation_id)
    if donation is None:
        raise DonationNotFound(donation_id)

    require_location_access(actor, donation.location_id)

    if "category" in data and (data["category"] or "").strip() != donation.category:
        raise ValidationError(["Category cannot change after creation"])

    new_location = data.get("location_id")
    if new_location is not None and new_location != donation.location_id:
        require_location_access(actor, new_location)
        _check_location(session, new_location)
        if isinstance(donation, GiftDonation):
            raise ValidationError(["Gift donations cannot move to another location"])

    for field_name in UPDATABLE_FIELDS:
        if field_name in data and data[field_name] is not None:
            value = data[field_name]
            if field_name == "donor_name":
                value = value.strip()
            setattr(donation, field_name, value)
    if "description" in data and data["description"] is None:
        donation.description = None

    session.flush()
    log_operation(
        logger,
        operation="update_donation",
        outcome="success",
        donation_id=donation_id,
        fields=sorted(k for k in data if k in UPDATABLE_FIELDS),
    )
    return donation


def _delete_donation_impl(donation_id: int, actor: Actor, session: Session) -> None:
    donation = lock_for_update(session, Donation, [donation_id]).get(donation_id)
    if donation is None:
        raise DonationNotFound(donation_id)

    require_location_access(actor, donation.location_id)

    record_count = (
        session.query(ConsumptionRecord)
        .filter(ConsumptionRecord.donation_id == donation_id)
        .count()
    )
    if record_count > 0:
        raise DonationInUse(donation_id, record_count)

    session.delete(donation)
    session.flush()
    log_operation(logger, operation="delete_donation", outcome="success", donation_id=donation_id)


# =============================================================================
# Public API Functions
# =============================================================================


def create_donation(data: Dict, actor: Actor, session: Optional[Session] = None) -> Donation:
    """
    Create a donation, with its declared recipients when it is a gift.

    Args:
        data: Dictionary with donation fields:
            - location_id (required)
            - donor_name (required, at least 2 characters)
            - category (required; "Birthday Gift" creates a GiftDonation)
            - description, unit, donated_at (optional)
            - total_capacity (optional positive int; None means untracked)
            - recipient_child_ids (required for gifts, forbidden otherwise)
        actor: Authenticated caller with access to location_id
        session: Optional session from ledger_scope()

    Returns:
        The created StockDonation or GiftDonation

    Raises:
        ValidationError: If data validation fails
        AuthorizationDenied: If the actor lacks the location
        LocationNotFound: If the location doesn't exist
    """
    recipients = _validate_new_donation(data)
    require_location_access(actor, data["location_id"])

    if session is not None:
        return _create_donation_impl(data, recipients, actor, session)

    try:
        with ledger_scope() as sess:
            return _create_donation_impl(data, recipients, actor, sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to create donation: {str(e)}", original_error=e) from e


def get_donation(donation_id: int, session: Optional[Session] = None) -> Donation:
    """
    Get a donation by ID.

    Gift donations are returned with their recipient assignments loaded.

    Raises:
        DonationNotFound: If the donation doesn't exist
    """

    def _impl(sess: Session) -> Donation:
        donation = sess.query(Donation).filter(Donation.id == donation_id).first()
        if donation is None:
            raise DonationNotFound(donation_id)
        if isinstance(donation, GiftDonation):
            donation.recipient_assignments  # load before the session closes
        return donation

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def update_donation(
    donation_id: int, data: Dict, actor: Actor, session: Optional[Session] = None
) -> Donation:
    """
    Update descriptive fields of a donation.

    Args:
        donation_id: Donation to update
        data: Any of donor_name, description, unit, location_id. A
            total_capacity key is rejected (use add_supply), and category may
            only be repeated unchanged.
        actor: Authenticated caller with access to the donation's location
            (and the new location, if it moves)
        session: Optional session from ledger_scope()

    Returns:
        The updated donation

    Raises:
        ValidationError: If data validation fails
        DonationNotFound: If the donation doesn't exist
        AuthorizationDenied: If the actor lacks a location involved
        LocationNotFound: If the new location doesn't exist
    """
    errors = []
    if "total_capacity" in data:
        errors.append("Capacity changes go through add_supply")
    _validate_descriptive_fields(data, errors)
    if errors:
        raise ValidationError(errors)

    if session is not None:
        return _update_donation_impl(donation_id, data, actor, session)

    try:
        with ledger_scope() as sess:
            return _update_donation_impl(donation_id, data, actor, sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to update donation: {str(e)}", original_error=e) from e


def delete_donation(donation_id: int, actor: Actor, session: Optional[Session] = None) -> None:
    """
    Delete a donation that no consumption record references.

    Recipient assignments of a gift donation are deleted with it.

    Raises:
        DonationNotFound: If the donation doesn't exist
        AuthorizationDenied: If the actor lacks the donation's location
        DonationInUse: If consumption records reference the donation
    """
    if session is not None:
        _delete_donation_impl(donation_id, actor, session)
        return

    try:
        with ledger_scope() as sess:
            _delete_donation_impl(donation_id, actor, sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to delete donation: {str(e)}", original_error=e) from e
