"""Tests for derived stock levels.

Tests for:
- effective_amount / compute_stock arithmetic
- get_stock_level over real consumption history
- list_stock_levels visibility per actor
- get_consumption_summary date windows
"""

from datetime import date, datetime, timedelta

import pytest

from donation_ledger.models import ConsumptionRecord
from donation_ledger.services import delivery_service
from donation_ledger.services.exceptions import AuthorizationDenied, DonationNotFound
from donation_ledger.services.stock_service import (
    compute_stock,
    effective_amount,
    get_consumption_summary,
    get_stock_level,
    list_stock_levels,
)


# =============================================================================
# Pure Arithmetic
# =============================================================================


class TestEffectiveAmount:
    def test_none_counts_as_one(self):
        assert effective_amount(None) == 1

    def test_explicit_amount_is_kept(self):
        assert effective_amount(4) == 4


class TestComputeStock:
    def test_tracked_capacity(self):
        assert compute_stock(10, [2, None, 3]) == (6, 4)

    def test_untracked_capacity_has_no_remaining(self):
        assert compute_stock(None, [5, 5]) == (10, None)

    def test_remaining_never_negative(self):
        """Consumption above capacity clamps remaining at zero."""
        assert compute_stock(3, [2, 2]) == (4, 0)

    def test_no_consumption(self):
        assert compute_stock(7, []) == (0, 7)


# =============================================================================
# get_stock_level
# =============================================================================


class TestGetStockLevel:
    def test_fresh_donation_has_full_capacity(self, stock_donation):
        level = get_stock_level(stock_donation.id)
        assert level.total_capacity == 10
        assert level.total_consumed == 0
        assert level.remaining == 10
        assert level.is_tracked

    def test_counts_attended_amounts_only(self, stock_donation, seed, admin):
        """Absent entries never count, whatever amount they carry."""
        delivery_service.submit_batch(
            [
                {"child_id": seed.ana.id, "location_id": seed.north.id,
                 "donation_id": stock_donation.id, "amount": 2},
                {"child_id": seed.bruno.id, "location_id": seed.north.id,
                 "donation_id": stock_donation.id},
                {"child_id": seed.carla.id, "location_id": seed.north.id,
                 "donation_id": stock_donation.id, "attended": False, "amount": 5},
            ],
            admin,
        )

        level = get_stock_level(stock_donation.id)
        assert level.total_consumed == 3
        assert level.remaining == 7

    def test_untracked_donation(self, untracked_donation, seed, admin):
        delivery_service.submit_one(
            {"child_id": seed.ana.id, "location_id": seed.north.id,
             "donation_id": untracked_donation.id, "amount": 8},
            admin,
        )

        level = get_stock_level(untracked_donation.id)
        assert level.total_capacity is None
        assert level.total_consumed == 8
        assert level.remaining is None
        assert not level.is_tracked

    def test_reads_history_written_outside_the_service(self, test_db, stock_donation, seed):
        """Stock is recomputed from records on every call; nothing is cached."""
        assert get_stock_level(stock_donation.id).remaining == 10

        session = test_db()
        session.add(
            ConsumptionRecord(
                donation_id=stock_donation.id,
                child_id=seed.ana.id,
                location_id=seed.north.id,
                attended=True,
                amount_consumed=None,
            )
        )
        session.commit()

        assert get_stock_level(stock_donation.id).remaining == 9

    def test_missing_donation(self, test_db):
        with pytest.raises(DonationNotFound) as exc_info:
            get_stock_level(999)
        assert exc_info.value.donation_id == 999


# =============================================================================
# list_stock_levels
# =============================================================================


class TestListStockLevels:
    def test_admin_sees_every_location(self, make_donation, seed, admin):
        north = make_donation(total_capacity=5)
        south = make_donation(total_capacity=3, location=seed.south)

        ids = {level.donation_id for level in list_stock_levels(admin)}
        assert ids == {north.id, south.id}

    def test_user_sees_own_locations(self, make_donation, seed, north_user):
        north = make_donation(total_capacity=5)
        make_donation(total_capacity=3, location=seed.south)

        levels = list_stock_levels(north_user)
        assert [level.donation_id for level in levels] == [north.id]

    def test_user_cannot_filter_foreign_location(self, make_donation, seed, north_user):
        make_donation(total_capacity=3, location=seed.south)

        with pytest.raises(AuthorizationDenied):
            list_stock_levels(north_user, location_id=seed.south.id)

    def test_newest_first(self, make_donation, admin):
        older = make_donation(total_capacity=1, donated_at=datetime(2024, 1, 1))
        newer = make_donation(total_capacity=1, donated_at=datetime(2024, 6, 1))

        levels = list_stock_levels(admin)
        assert [level.donation_id for level in levels] == [newer.id, older.id]


# =============================================================================
# get_consumption_summary
# =============================================================================


class TestConsumptionSummary:
    @pytest.fixture
    def history(self, test_db, stock_donation, seed):
        """Attended records on three days plus one absence."""
        session = test_db()
        today = datetime.combine(date.today(), datetime.min.time())
        rows = [
            (seed.ana, True, 2, today - timedelta(days=2) + timedelta(hours=10)),
            (seed.bruno, True, None, today - timedelta(days=1) + timedelta(hours=23)),
            (seed.ana, True, 3, today + timedelta(hours=9)),
            (seed.carla, False, None, today + timedelta(hours=9)),
        ]
        for child, attended, amount, recorded_at in rows:
            session.add(
                ConsumptionRecord(
                    donation_id=stock_donation.id,
                    child_id=child.id,
                    location_id=seed.north.id,
                    attended=attended,
                    amount_consumed=amount if attended else None,
                    recorded_at=recorded_at,
                )
            )
        session.commit()
        return date.today()

    def test_whole_history(self, stock_donation, history):
        summary = get_consumption_summary(stock_donation.id)

        assert summary.total_deliveries == 3
        assert summary.total_consumed == 6
        assert summary.distinct_children == 2
        assert summary.stock.remaining == 4

    def test_end_date_includes_the_whole_day(self, stock_donation, history):
        yesterday = history - timedelta(days=1)
        summary = get_consumption_summary(stock_donation.id, start=yesterday, end=yesterday)

        assert summary.total_deliveries == 1
        assert summary.total_consumed == 1

    def test_window_does_not_change_overall_stock(self, stock_donation, history):
        summary = get_consumption_summary(stock_donation.id, start=history)

        assert summary.total_consumed == 3
        assert summary.stock.total_consumed == 6

    def test_records_newest_first(self, stock_donation, history):
        summary = get_consumption_summary(stock_donation.id)
        recorded = [record["recorded_at"] for record in summary.records]
        assert recorded == sorted(recorded, reverse=True)

    def test_missing_donation(self, test_db):
        with pytest.raises(DonationNotFound):
            get_consumption_summary(404)
