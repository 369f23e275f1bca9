"""
Tests for structured logging.

Covers:
- One JSON object per record with context and extra fields
- LogContext.bind restores the previous values
- Exception fields from SettlementError subclasses
- configure_logging is idempotent
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

from settlement_kernel.exceptions import InsufficientStockError
from settlement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
)


def _format(record_logger, emit):
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    record_logger.addHandler(handler)
    try:
        emit()
    finally:
        record_logger.removeHandler(handler)
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestStructuredFormatter:

    def test_record_is_json_with_extras(self):
        log = get_logger("tests.formatter")
        records = _format(
            log,
            lambda: log.info(
                "sale_created", extra={"total_amount": Decimal("12.50"), "line_count": 2}
            ),
        )

        assert len(records) == 1
        record = records[0]
        assert record["message"] == "sale_created"
        assert record["logger"] == "settlement_kernel.tests.formatter"
        assert record["level"] == "INFO"
        assert record["total_amount"] == "12.50"
        assert record["line_count"] == 2

    def test_context_fields_are_included(self):
        log = get_logger("tests.context")
        org = uuid4()
        with LogContext.bind(organization_id=org, operation="create_sale"):
            records = _format(log, lambda: log.info("inside"))

        assert records[0]["organization_id"] == str(org)
        assert records[0]["operation"] == "create_sale"

    def test_exception_fields(self):
        log = get_logger("tests.exc")

        def emit():
            try:
                raise InsufficientStockError("p-1", "Whisky", 20, 15)
            except InsufficientStockError:
                log.exception("failed")

        record = _format(log, emit)[0]
        assert record["exc_type"] == "InsufficientStockError"
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_requested"] == 20
        assert record["exc_available"] == 15
        assert "traceback" in record


class TestLogContext:

    def test_bind_restores_previous_values(self):
        LogContext.set(operation="outer")
        with LogContext.bind(operation="inner", actor_id=uuid4()):
            assert LogContext.get_all()["operation"] == "inner"

        ctx = LogContext.get_all()
        assert ctx["operation"] == "outer"
        assert "actor_id" not in ctx

    def test_none_values_are_ignored(self):
        with LogContext.bind(organization_id=None, operation="x"):
            assert "organization_id" not in LogContext.get_all()


class TestConfigureLogging:

    def test_is_idempotent(self):
        root = logging.getLogger("settlement_kernel")
        before = list(root.handlers)

        configure_logging(level=logging.INFO)
        configure_logging(level=logging.INFO)

        assert root.handlers == before
