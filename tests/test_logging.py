"""Tests for the structured logging system (costing_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from costing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "costing_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("stage1_completed", extra={"accounts_allocated": 3})

        assert _parse_log(stream)["accounts_allocated"] == 3

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(job_id="job-1", period_id="p-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["job_id"] == "job-1"
        assert record["period_id"] == "p-1"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "job_id" not in record
        assert "hospital_id" not in record

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_costing_exception_code_extracted(self):
        from costing_kernel.exceptions import CalculationInProgressError

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise CalculationInProgressError("period-1", "job-9")
        except CalculationInProgressError:
            get_logger("test").error("trigger_rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "CALCULATION_IN_PROGRESS"
        assert record["exc_type"] == "CalculationInProgressError"

    def test_uuid_and_decimal_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_values", extra={"period_id": uid, "amount": Decimal("1.10")})

        record = _parse_log(stream)
        assert record["period_id"] == str(uid)
        assert record["amount"] == "1.10"


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.set(unknown_field="x")

    def test_none_values_are_ignored(self):
        LogContext.set(job_id="job-1")
        LogContext.set(job_id=None)

        assert LogContext.get_all() == {"job_id": "job-1"}

    def test_bind_restores_previous_values(self):
        LogContext.set(job_id="outer")
        with LogContext.bind(job_id="inner", hospital_id="h-1"):
            assert LogContext.get_all() == {"job_id": "inner", "hospital_id": "h-1"}

        assert LogContext.get_all() == {"job_id": "outer"}

    def test_clear(self):
        LogContext.set(job_id="job-1", actor_id="u-1")
        LogContext.clear()

        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        second, second_stream = _make_handler()
        configure_logging(handler=second)

        get_logger("test").info("once")

        assert len(_parse_all_logs(stream)) == 1
        assert second_stream.getvalue() == ""

    def test_level_filters_records(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        logger = get_logger("test")
        logger.info("dropped")
        logger.warning("kept")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]

    def test_level_accepts_names(self):
        handler, stream = _make_handler()
        configure_logging(level="ERROR", handler=handler)
        get_logger("test").warning("dropped")

        assert stream.getvalue() == ""
