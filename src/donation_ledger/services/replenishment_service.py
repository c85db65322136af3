"""
Replenishment Service - adding supply to a donation.

add_supply() treats the two capacity states differently:

- Untracked donation (capacity None): the supplied amount becomes the first
  capacity. The donation goes under inventory control from this point on,
  and consumption recorded while it was untracked is counted against it.
- Tracked donation: the supplied amount is added to the capacity. Recorded
  consumption is untouched, so remaining stock grows by exactly the amount.

Capacity therefore never decreases through this path.

TODO: confirm with the program coordinators that first-capacity replacement
(rather than addition) is the intended policy for untracked donations.
"""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from donation_ledger.models import Donation

from .authorization import Actor, require_location_access
from .database import ledger_scope, lock_for_update
from .dto import SupplyChange
from .exceptions import DatabaseError, DonationNotFound, ServiceError, ValidationError
from .logging_utils import get_service_logger, log_operation
from .stock_service import stock_level_for

logger = get_service_logger(__name__)


def _validate_amount(additional_amount) -> None:
    if (
        not isinstance(additional_amount, int)
        or isinstance(additional_amount, bool)
        or additional_amount < 1
    ):
        raise ValidationError(["Additional amount must be a positive integer"])


def _add_supply_impl(
    donation_id: int,
    additional_amount: int,
    actor: Actor,
    session: Session,
) -> SupplyChange:
    donation = lock_for_update(session, Donation, [donation_id]).get(donation_id)
    if donation is None:
        raise DonationNotFound(donation_id)

    require_location_access(actor, donation.location_id)

    before = stock_level_for(donation, session)

    if before.total_capacity is None:
        first_capacity = True
        capacity_after = additional_amount
    else:
        first_capacity = False
        capacity_after = before.total_capacity + additional_amount

    donation.total_capacity = capacity_after
    session.flush()

    change = SupplyChange(
        donation_id=donation_id,
        added=additional_amount,
        first_capacity=first_capacity,
        capacity_before=before.total_capacity,
        capacity_after=capacity_after,
        consumed=before.total_consumed,
        remaining_before=before.remaining,
        remaining_after=max(0, capacity_after - before.total_consumed),
    )

    log_operation(
        logger,
        operation="add_supply",
        outcome="first_capacity" if first_capacity else "replenished",
        **change.to_dict(),
    )
    return change


def add_supply(
    donation_id: int,
    additional_amount: int,
    actor: Actor,
    session: Optional[Session] = None,
) -> SupplyChange:
    """
    Merge newly reported supply into a donation's capacity.

    Args:
        donation_id: Donation to replenish
        additional_amount: Positive number of units received
        actor: Authenticated caller with access to the donation's location
        session: Optional session from ledger_scope()

    Returns:
        SupplyChange with before/after capacity and remaining stock

    Raises:
        ValidationError: If additional_amount is not a positive integer
        DonationNotFound: If the donation doesn't exist
        AuthorizationDenied: If the actor lacks the donation's location
        ConcurrencyConflict: If the donation lock timed out (retryable)

    Example:
        >>> change = add_supply(donation.id, 10, actor)  # capacity 50, 30 consumed
        >>> change.capacity_after, change.remaining_after
        (60, 30)
    """
    _validate_amount(additional_amount)

    if session is not None:
        return _add_supply_impl(donation_id, additional_amount, actor, session)

    try:
        with ledger_scope() as sess:
            return _add_supply_impl(donation_id, additional_amount, actor, sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to add supply: {str(e)}", original_error=e) from e
