"""
Stock Service - derived remaining stock for donations.

Remaining stock is never stored. It is recomputed from the full consumption
history on every call:

    remaining = max(0, total_capacity - sum(amount over attended records))

- Records with attended = False never count, whatever amount they carry.
- A record with no amount counts as exactly one unit (effective_amount()).
- A donation with no capacity is untracked: remaining is None.

All functions here are read-only and accept an optional session, so the
delivery and replenishment services can call them inside their locked
transaction.
"""

from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from donation_ledger.models import ConsumptionRecord, Donation
from donation_ledger.utils.constants import DEFAULT_CONSUMED_AMOUNT
from donation_ledger.utils.datetime_utils import end_of_day_exclusive, start_of_day

from .authorization import Actor, require_location_access
from .database import session_scope
from .dto import ConsumptionSummary, StockLevel
from .exceptions import DonationNotFound


# =============================================================================
# Pure Arithmetic
# =============================================================================


def effective_amount(amount_consumed: Optional[int]) -> int:
    """
    Apply the business default for a consumed amount.

    An attended delivery that names no amount consumes exactly one unit.

    Args:
        amount_consumed: Stored or requested amount, possibly None

    Returns:
        The amount to count

    Example:
        >>> effective_amount(None)
        1
        >>> effective_amount(4)
        4
    """
    if amount_consumed is None:
        return DEFAULT_CONSUMED_AMOUNT
    return amount_consumed


def compute_stock(
    total_capacity: Optional[int], amounts: Iterable[Optional[int]]
) -> Tuple[int, Optional[int]]:
    """
    Compute (total_consumed, remaining) from a capacity and attended amounts.

    Args:
        total_capacity: Donation capacity, or None if untracked
        amounts: amount_consumed of every attended record

    Returns:
        Tuple of (total_consumed, remaining); remaining is None when untracked
    """
    total_consumed = sum(effective_amount(amount) for amount in amounts)
    if total_capacity is None:
        return total_consumed, None
    return total_consumed, max(0, total_capacity - total_consumed)


# =============================================================================
# Internal Implementation Functions
# =============================================================================


def _attended_amounts(session: Session, donation_ids: Iterable[int]) -> Dict[int, List[Optional[int]]]:
    """Fetch amount_consumed of attended records grouped by donation."""
    ids = list(set(donation_ids))
    grouped: Dict[int, List[Optional[int]]] = defaultdict(list)
    if not ids:
        return grouped

    rows = (
        session.query(ConsumptionRecord.donation_id, ConsumptionRecord.amount_consumed)
        .filter(ConsumptionRecord.donation_id.in_(ids))
        .filter(ConsumptionRecord.attended.is_(True))
        .all()
    )
    for donation_id, amount in rows:
        grouped[donation_id].append(amount)
    return grouped


def stock_level_for(donation: Donation, session: Session) -> StockLevel:
    """
    Compute the stock level of an already loaded donation.

    Used by the write services inside their locked transaction.
    """
    amounts = _attended_amounts(session, [donation.id])[donation.id]
    total_consumed, remaining = compute_stock(donation.total_capacity, amounts)
    return StockLevel(
        donation_id=donation.id,
        kind=donation.kind,
        total_capacity=donation.total_capacity,
        total_consumed=total_consumed,
        remaining=remaining,
    )


def _get_stock_level_impl(donation_id: int, session: Session) -> StockLevel:
    donation = session.query(Donation).filter(Donation.id == donation_id).first()
    if donation is None:
        raise DonationNotFound(donation_id)
    return stock_level_for(donation, session)


def _list_stock_levels_impl(
    actor: Actor,
    location_id: Optional[int],
    session: Session,
) -> List[StockLevel]:
    query = session.query(Donation)
    if location_id is not None:
        require_location_access(actor, location_id)
        query = query.filter(Donation.location_id == location_id)
    elif not actor.is_admin:
        query = query.filter(Donation.location_id.in_(sorted(actor.location_ids)))

    donations = query.order_by(Donation.donated_at.desc(), Donation.id.desc()).all()
    amounts = _attended_amounts(session, [d.id for d in donations])

    levels = []
    for donation in donations:
        total_consumed, remaining = compute_stock(donation.total_capacity, amounts[donation.id])
        levels.append(
            StockLevel(
                donation_id=donation.id,
                kind=donation.kind,
                total_capacity=donation.total_capacity,
                total_consumed=total_consumed,
                remaining=remaining,
            )
        )
    return levels


def _get_consumption_summary_impl(
    donation_id: int,
    start: Optional[date],
    end: Optional[date],
    session: Session,
) -> ConsumptionSummary:
    donation = session.query(Donation).filter(Donation.id == donation_id).first()
    if donation is None:
        raise DonationNotFound(donation_id)

    query = (
        session.query(ConsumptionRecord)
        .filter(ConsumptionRecord.donation_id == donation_id)
        .filter(ConsumptionRecord.attended.is_(True))
    )
    if start is not None:
        query = query.filter(ConsumptionRecord.recorded_at >= start_of_day(start))
    if end is not None:
        query = query.filter(ConsumptionRecord.recorded_at < end_of_day_exclusive(end))

    records = query.order_by(
        ConsumptionRecord.recorded_at.desc(), ConsumptionRecord.id.desc()
    ).all()

    return ConsumptionSummary(
        stock=stock_level_for(donation, session),
        records=[record.to_dict() for record in records],
        total_deliveries=len(records),
        total_consumed=sum(effective_amount(r.amount_consumed) for r in records),
        distinct_children=len({r.child_id for r in records}),
    )


# =============================================================================
# Public API Functions
# =============================================================================


def get_stock_level(donation_id: int, session: Optional[Session] = None) -> StockLevel:
    """
    Derive the current stock of a donation.

    Side-effect free and never cached: consumption records are appended
    continuously, so every call reads the full history again.

    Args:
        donation_id: Donation to inspect
        session: Optional database session

    Returns:
        StockLevel with total_consumed and remaining (None when untracked)

    Raises:
        DonationNotFound: If the donation doesn't exist

    Example:
        >>> level = get_stock_level(donation.id)
        >>> level.total_capacity, level.total_consumed, level.remaining
        (10, 6, 4)
    """
    if session is not None:
        return _get_stock_level_impl(donation_id, session)
    with session_scope() as sess:
        return _get_stock_level_impl(donation_id, sess)


def list_stock_levels(
    actor: Actor,
    location_id: Optional[int] = None,
    session: Optional[Session] = None,
) -> List[StockLevel]:
    """
    Stock levels of every donation the actor can see, newest first.

    Args:
        actor: Caller; non-admins only see their own locations
        location_id: Optional location to restrict to
        session: Optional database session

    Returns:
        List of StockLevel

    Raises:
        AuthorizationDenied: If location_id is given and not accessible
    """
    if session is not None:
        return _list_stock_levels_impl(actor, location_id, session)
    with session_scope() as sess:
        return _list_stock_levels_impl(actor, location_id, sess)


def get_consumption_summary(
    donation_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    session: Optional[Session] = None,
) -> ConsumptionSummary:
    """
    Attended consumption history of a donation.

    Args:
        donation_id: Donation to inspect
        start: Optional first day to include
        end: Optional last day to include (the whole day is included)
        session: Optional database session

    Returns:
        ConsumptionSummary with window totals and the overall stock level

    Raises:
        DonationNotFound: If the donation doesn't exist
    """
    if session is not None:
        return _get_consumption_summary_impl(donation_id, start, end, session)
    with session_scope() as sess:
        return _get_consumption_summary_impl(donation_id, start, end, sess)
