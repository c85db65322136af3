"""Tests for adding supply to donations."""

import logging

import pytest

from donation_ledger.services.delivery_service import submit_one
from donation_ledger.services.exceptions import (
    AuthorizationDenied,
    DonationNotFound,
    ValidationError,
)
from donation_ledger.services.replenishment_service import add_supply
from donation_ledger.services.stock_service import get_stock_level


def _consume(seed, donation, amount, actor):
    submit_one(
        {
            "child_id": seed.ana.id,
            "location_id": seed.north.id,
            "donation_id": donation.id,
            "amount": amount,
        },
        actor,
    )


class TestAddSupply:
    def test_tracked_donation_adds_to_capacity(self, make_donation, seed, admin):
        """Capacity 50 with 30 consumed, +10 gives capacity 60 and remaining 30."""
        donation = make_donation(total_capacity=50)
        _consume(seed, donation, 30, admin)

        change = add_supply(donation.id, 10, admin)

        assert change.first_capacity is False
        assert change.capacity_before == 50
        assert change.capacity_after == 60
        assert change.remaining_before == 20
        assert change.remaining_after == 30

        level = get_stock_level(donation.id)
        assert level.total_capacity == 60
        assert level.remaining == 30

    def test_untracked_donation_gets_first_capacity(self, untracked_donation, admin):
        change = add_supply(untracked_donation.id, 25, admin)

        assert change.first_capacity is True
        assert change.capacity_before is None
        assert change.remaining_before is None
        assert change.capacity_after == 25
        assert get_stock_level(untracked_donation.id).total_capacity == 25

    def test_first_capacity_counts_earlier_consumption(self, untracked_donation, seed, admin):
        """Consumption recorded while untracked is charged against the new capacity."""
        _consume(seed, untracked_donation, 4, admin)

        change = add_supply(untracked_donation.id, 10, admin)

        assert change.consumed == 4
        assert change.remaining_after == 6
        assert get_stock_level(untracked_donation.id).remaining == 6

    def test_first_capacity_below_consumption_clamps_remaining(
        self, untracked_donation, seed, admin
    ):
        _consume(seed, untracked_donation, 8, admin)

        change = add_supply(untracked_donation.id, 5, admin)

        assert change.remaining_after == 0
        assert get_stock_level(untracked_donation.id).remaining == 0

    def test_replenish_unblocks_deliveries(self, make_donation, seed, admin):
        donation = make_donation(total_capacity=1)
        _consume(seed, donation, 1, admin)

        add_supply(donation.id, 2, admin)
        _consume(seed, donation, 2, admin)

        assert get_stock_level(donation.id).remaining == 0

    def test_outcome_is_logged(self, untracked_donation, stock_donation, admin, caplog):
        with caplog.at_level(logging.INFO):
            add_supply(untracked_donation.id, 3, admin)
            add_supply(stock_donation.id, 3, admin)

        outcomes = [
            r.outcome for r in caplog.records if getattr(r, "operation", None) == "add_supply"
        ]
        assert outcomes == ["first_capacity", "replenished"]

    @pytest.mark.parametrize("amount", [0, -5, 2.5, None, True])
    def test_amount_must_be_positive_integer(self, stock_donation, admin, amount):
        with pytest.raises(ValidationError):
            add_supply(stock_donation.id, amount, admin)
        assert get_stock_level(stock_donation.id).total_capacity == 10

    def test_missing_donation(self, test_db, admin):
        with pytest.raises(DonationNotFound):
            add_supply(999, 5, admin)

    def test_foreign_location_is_denied(self, make_donation, seed, north_user):
        donation = make_donation(total_capacity=5, location=seed.south)

        with pytest.raises(AuthorizationDenied):
            add_supply(donation.id, 5, north_user)
        assert get_stock_level(donation.id).total_capacity == 5
