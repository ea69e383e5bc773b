"""
Structured logging tests.

Verifies:
- Every record is a single JSON object with the mandatory envelope
- LogContext fields appear on records and are restored after bind()
- MarketKernelError attributes are flattened into exc_* fields
"""

import logging
from decimal import Decimal
from uuid import uuid4

from market_kernel.exceptions import UnknownSellerError
from market_kernel.logging_config import LogContext, get_logger


class TestEnvelope:

    def test_mandatory_fields(self, captured_logs):
        get_logger("tests.logging").info("something_happened")
        record = captured_logs()[-1]
        assert record["message"] == "something_happened"
        assert record["level"] == "INFO"
        assert record["logger"] == "market_kernel.tests.logging"
        assert "ts" in record

    def test_extra_values_are_serialized(self, captured_logs):
        seller_id = uuid4()
        get_logger("tests.logging").info(
            "with_extra",
            extra={"seller_id_value": seller_id, "rate": Decimal("0.70")},
        )
        record = captured_logs()[-1]
        assert record["seller_id_value"] == str(seller_id)
        assert record["rate"] == "0.70"


class TestLogContext:

    def test_bound_fields_are_attached(self, captured_logs):
        with LogContext.bind(correlation_id="pi_123", seller_id="s-1"):
            get_logger("tests.logging").info("inside")
        record = captured_logs()[-1]
        assert record["correlation_id"] == "pi_123"
        assert record["seller_id"] == "s-1"

    def test_bind_restores_previous_values(self, captured_logs):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner"):
            assert LogContext.get_all()["correlation_id"] == "inner"
        assert LogContext.get_all()["correlation_id"] == "outer"

    def test_clear(self):
        LogContext.set(job_id="job-1")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestExceptionFields:

    def test_error_attributes_flattened(self, captured_logs):
        logger = get_logger("tests.logging")
        try:
            raise UnknownSellerError("seller-42")
        except UnknownSellerError:
            logger.error("lookup_failed", exc_info=True)
        record = captured_logs()[-1]
        assert record["level"] == logging.getLevelName(logging.ERROR)
        assert record["exc_type"] == "UnknownSellerError"
        assert record["exc_code"] == "UNKNOWN_SELLER"
        assert record["exc_seller_id"] == "seller-42"
        assert "traceback" in record
