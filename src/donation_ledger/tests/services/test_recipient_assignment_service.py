"""Tests for gift recipient assignments."""

import logging

import pytest

from donation_ledger.models import ConsumptionRecord
from donation_ledger.services.exceptions import (
    AuthorizationDenied,
    DonationNotFound,
    RecipientAssignmentMissing,
    ValidationError,
)
from donation_ledger.services.recipient_assignment_service import (
    get_gift_progress,
    list_assignments,
    mark_delivered,
)


class TestMarkDelivered:
    def test_marks_pending_recipient(self, gift_donation, seed, admin):
        assignment = mark_delivered(gift_donation.id, seed.ana.id, admin)

        assert assignment.delivered is True
        assert assignment.delivered_at is not None
        assert assignment.status == "delivered"

    def test_is_idempotent(self, gift_donation, seed, admin, caplog):
        with caplog.at_level(logging.INFO):
            mark_delivered(gift_donation.id, seed.ana.id, admin)
            second = mark_delivered(gift_donation.id, seed.ana.id, admin)

        assert second.delivered is True
        outcomes = [
            r.outcome for r in caplog.records if getattr(r, "operation", None) == "mark_delivered"
        ]
        assert outcomes == ["delivered", "already_delivered"]

    def test_writes_no_consumption(self, test_db, gift_donation, seed, admin):
        mark_delivered(gift_donation.id, seed.ana.id, admin)
        assert test_db().query(ConsumptionRecord).count() == 0

    def test_undeclared_child(self, gift_donation, seed, admin):
        with pytest.raises(RecipientAssignmentMissing):
            mark_delivered(gift_donation.id, seed.carla.id, admin)

    def test_stock_donation_has_no_recipients(self, stock_donation, seed, admin):
        with pytest.raises(RecipientAssignmentMissing):
            mark_delivered(stock_donation.id, seed.ana.id, admin)

    def test_missing_donation(self, test_db, seed, admin):
        with pytest.raises(DonationNotFound):
            mark_delivered(999, seed.ana.id, admin)

    def test_requires_location_access(self, make_donation, seed):
        from donation_ledger.services.authorization import Actor

        gift = make_donation(category="Birthday Gift", recipients=[seed.ana])
        south_user = Actor(user_id="user-south", location_ids={seed.south.id})

        with pytest.raises(AuthorizationDenied):
            mark_delivered(gift.id, seed.ana.id, south_user)
        assert list_assignments(gift.id)[0].delivered is False


class TestGiftProgress:
    def test_progress_counts(self, gift_donation, seed, admin):
        mark_delivered(gift_donation.id, seed.bruno.id, admin)

        progress = get_gift_progress(gift_donation.id)
        assert progress.declared == 2
        assert progress.delivered == 1
        assert progress.pending == 1
        assert progress.pending_child_ids == [seed.ana.id]
        assert not progress.is_complete

    def test_complete_when_all_delivered(self, gift_donation, seed, admin):
        mark_delivered(gift_donation.id, seed.ana.id, admin)
        mark_delivered(gift_donation.id, seed.bruno.id, admin)

        assert get_gift_progress(gift_donation.id).is_complete

    def test_stock_donation_is_rejected(self, stock_donation):
        with pytest.raises(ValidationError):
            get_gift_progress(stock_donation.id)


class TestListAssignments:
    def test_declaration_order(self, gift_donation, seed):
        child_ids = [a.child_id for a in list_assignments(gift_donation.id)]
        assert child_ids == [seed.ana.id, seed.bruno.id]

    def test_all_start_pending(self, gift_donation):
        assert {a.status for a in list_assignments(gift_donation.id)} == {"pending"}

    def test_missing_donation(self, test_db):
        with pytest.raises(DonationNotFound):
            list_assignments(404)
