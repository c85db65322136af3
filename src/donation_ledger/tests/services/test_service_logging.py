"""Tests for service layer structured logging.

These tests verify that ledger operations emit structured log entries with
appropriate context information.
"""

import logging

from donation_ledger.services.delivery_service import submit_batch
from donation_ledger.services.logging_utils import get_service_logger, log_operation


class TestLoggingUtilities:
    """Tests for logging utility functions."""

    def test_get_service_logger_returns_logger(self):
        """get_service_logger returns a configured Logger instance."""
        logger = get_service_logger("test_module")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "donation_ledger.services.test_module"

    def test_get_service_logger_extracts_module_name(self):
        """get_service_logger extracts module name from full path."""
        logger = get_service_logger("donation_ledger.services.delivery_service")
        assert logger.name == "donation_ledger.services.delivery_service"

    def test_log_operation_logs_at_info_level(self, caplog):
        """log_operation logs at INFO level by default."""
        logger = get_service_logger("test")

        with caplog.at_level(logging.INFO):
            log_operation(logger, operation="test_op", outcome="success", donation_id=123)

        assert "test_op: success" in caplog.text
        assert caplog.records[0].levelno == logging.INFO

    def test_log_operation_includes_extra_context(self, caplog):
        """log_operation includes extra context in log records."""
        logger = get_service_logger("test")

        with caplog.at_level(logging.INFO):
            log_operation(
                logger,
                operation="context_test",
                outcome="success",
                donation_id=42,
                requested=3,
            )

        assert len(caplog.records) == 1
        record = caplog.records[0]
        assert record.operation == "context_test"
        assert record.outcome == "success"
        assert record.donation_id == 42
        assert record.requested == 3


class TestSubmitBatchLogging:
    """Tests for delivery submission logging."""

    def test_success_logs_batch_context(self, stock_donation, seed, admin, caplog):
        with caplog.at_level(logging.INFO):
            result = submit_batch(
                [
                    {"child_id": seed.ana.id, "location_id": seed.north.id,
                     "donation_id": stock_donation.id},
                    {"child_id": seed.bruno.id, "location_id": seed.north.id},
                ],
                admin,
            )

        records = [
            r for r in caplog.records
            if getattr(r, "operation", None) == "submit_delivery" and r.outcome == "success"
        ]
        assert len(records) == 1
        assert records[0].batch_id == result.batch_id
        assert records[0].record_count == 2
        assert records[0].donation_ids == [stock_donation.id]
