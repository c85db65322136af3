"""
Recipient Assignment Service - delivery tracking for gift donations.

Gift ("Birthday Gift") donations declare their recipients at creation time.
Each (donation, child) pair moves Pending -> Delivered exactly once, either
through a delivery recorded by delivery_service or through mark_delivered()
below. There is no way back to Pending.
"""

from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from donation_ledger.models import Donation, GiftDonation, RecipientAssignment

from .authorization import Actor, require_location_access
from .database import ledger_scope, lock_for_update, session_scope
from .dto import GiftProgress
from .exceptions import (
    DatabaseError,
    DonationNotFound,
    RecipientAssignmentMissing,
    ServiceError,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


# =============================================================================
# Internal Implementation Functions
# =============================================================================


def _get_donation(session: Session, donation_id: int) -> Donation:
    donation = session.query(Donation).filter(Donation.id == donation_id).first()
    if donation is None:
        raise DonationNotFound(donation_id)
    return donation


def _mark_delivered_impl(
    donation_id: int,
    child_id: int,
    actor: Actor,
    session: Session,
) -> RecipientAssignment:
    donation = lock_for_update(session, Donation, [donation_id]).get(donation_id)
    if donation is None:
        raise DonationNotFound(donation_id)

    require_location_access(actor, donation.location_id)

    # Stock donations have no declared recipients
    if not isinstance(donation, GiftDonation):
        raise RecipientAssignmentMissing(donation_id, child_id)

    assignment = donation.assignment_for(child_id)
    if assignment is None:
        raise RecipientAssignmentMissing(donation_id, child_id)

    changed = assignment.mark_delivered()
    session.flush()

    log_operation(
        logger,
        operation="mark_delivered",
        outcome="delivered" if changed else "already_delivered",
        donation_id=donation_id,
        child_id=child_id,
    )
    return assignment


def _list_assignments_impl(donation_id: int, session: Session) -> List[RecipientAssignment]:
    donation = _get_donation(session, donation_id)
    if not isinstance(donation, GiftDonation):
        return []
    return list(donation.recipient_assignments)


def _get_gift_progress_impl(donation_id: int, session: Session) -> GiftProgress:
    donation = _get_donation(session, donation_id)
    if not isinstance(donation, GiftDonation):
        raise ValidationError([f"Donation {donation_id} is not a gift donation"])

    assignments = donation.recipient_assignments
    return GiftProgress(
        donation_id=donation_id,
        declared=len(assignments),
        delivered=sum(1 for a in assignments if a.delivered),
        pending_child_ids=[a.child_id for a in assignments if not a.delivered],
    )


# =============================================================================
# Public API Functions
# =============================================================================


def mark_delivered(
    donation_id: int,
    child_id: int,
    actor: Actor,
    session: Optional[Session] = None,
) -> RecipientAssignment:
    """
    Mark a declared gift recipient as delivered without recording consumption.

    Calling it again for an already delivered pair is a no-op.

    Args:
        donation_id: Gift donation
        child_id: Declared recipient
        actor: Authenticated caller with access to the donation's location
        session: Optional session from ledger_scope()

    Returns:
        The updated RecipientAssignment

    Raises:
        DonationNotFound: If the donation doesn't exist
        AuthorizationDenied: If the actor lacks the donation's location
        RecipientAssignmentMissing: If the child was never declared a recipient
    """
    if session is not None:
        return _mark_delivered_impl(donation_id, child_id, actor, session)

    try:
        with ledger_scope() as sess:
            return _mark_delivered_impl(donation_id, child_id, actor, sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to mark delivery: {str(e)}", original_error=e) from e


def list_assignments(
    donation_id: int,
    session: Optional[Session] = None,
) -> List[RecipientAssignment]:
    """
    Declared recipients of a donation, in declaration order.

    Stock donations have none and return an empty list.

    Raises:
        DonationNotFound: If the donation doesn't exist
    """
    if session is not None:
        return _list_assignments_impl(donation_id, session)
    with session_scope() as sess:
        return _list_assignments_impl(donation_id, sess)


def get_gift_progress(
    donation_id: int,
    session: Optional[Session] = None,
) -> GiftProgress:
    """
    Delivery coverage of a gift donation.

    Raises:
        DonationNotFound: If the donation doesn't exist
        ValidationError: If the donation is not a gift donation
    """
    if session is not None:
        return _get_gift_progress_impl(donation_id, session)
    with session_scope() as sess:
        return _get_gift_progress_impl(donation_id, sess)
