"""Tests for the structured logging system (orderflow_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from orderflow_engines import Allocation, LedgerLine, compute_ledger
from orderflow_engines.status_derivation import DocumentKind, OrderStatus, derive_status
from orderflow_engines.tracer import compute_input_fingerprint
from orderflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


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
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "orderflow.test"
        assert "ts" in record

    def test_extra_fields_and_decimal(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "receipt_created", extra={"quantity_received": Decimal("4.5"), "line_number": 2}
        )

        record = _parse_log(stream)
        assert record["quantity_received"] == "4.5"
        assert record["line_number"] == 2

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        actor = uuid4()
        with LogContext.bind(actor_id=actor, order_id="po-1"):
            get_logger("test").info("inside")

        record = _parse_log(stream)
        assert record["actor_id"] == str(actor)
        assert record["order_id"] == "po-1"

    def test_orderflow_exception_fields_extracted(self):
        """Orderflow exceptions carry .code and their structured attributes."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        from orderflow_kernel.exceptions import QuantityExceedsRemainingError

        try:
            raise QuantityExceedsRemainingError("line-1", Decimal("15"), Decimal("10"))
        except QuantityExceedsRemainingError:
            get_logger("test").error("rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "QUANTITY_EXCEEDS_REMAINING"
        assert record["exc_line_id"] == "line-1"
        assert record["exc_remaining"] == "10"
        assert "traceback" in record

    def test_debug_suppressed_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.debug("second")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first"]

    def test_configure_is_idempotent(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        get_logger("test").info("once")

        assert len(_parse_all_logs(stream)) == 1


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(actor_id="x", document_id="y")
        assert LogContext.get_all() == {"actor_id": "x", "document_id": "y"}

    def test_unknown_fields_are_ignored(self):
        LogContext.set(correlation_id="x", order_id="o")
        with LogContext.bind(session_id="s"):
            assert LogContext.get_all() == {"order_id": "o"}
        assert LogContext.FIELDS == ("actor_id", "order_id", "document_id")

    def test_clear(self):
        LogContext.set(actor_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(order_id="outer")
        with LogContext.bind(order_id="inner"):
            assert LogContext.get_all()["order_id"] == "inner"
        assert LogContext.get_all()["order_id"] == "outer"

    def test_bind_ignores_none(self):
        with LogContext.bind(order_id=None, document_id="d"):
            assert LogContext.get_all() == {"document_id": "d"}


# ---------------------------------------------------------------------------
# Engine trace
# ---------------------------------------------------------------------------


class TestEngineTrace:
    def test_engine_call_emits_trace(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.DEBUG, handler=handler)
        line = LedgerLine(line_id=uuid4(), quantity_ordered=Decimal("10"))

        compute_ledger(lines=[line], allocations=[Allocation(line_id=line.line_id, quantity=Decimal("1"))])

        [trace] = [r for r in _parse_all_logs(stream) if r["message"] == "ORDERFLOW_ENGINE_TRACE"]
        assert trace["engine_name"] == "quantity_ledger"
        assert trace["engine_version"] == "1.0"
        assert len(trace["input_fingerprint"]) == 16

    def test_fingerprint_is_deterministic(self):
        line_id = uuid4()
        kwargs = {"lines": [LedgerLine(line_id=line_id, quantity_ordered=Decimal("3"))]}

        first = compute_input_fingerprint(("lines",), kwargs)
        second = compute_input_fingerprint(("lines",), dict(kwargs))
        other = compute_input_fingerprint(
            ("lines",), {"lines": [LedgerLine(line_id=line_id, quantity_ordered=Decimal("4"))]}
        )

        assert first == second
        assert first != other

    def test_status_trace_fingerprints_the_snapshot(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.DEBUG, handler=handler)
        line = LedgerLine(line_id=uuid4(), quantity_ordered=Decimal("10"))
        for received in ("4", "6"):
            snapshot = compute_ledger(
                lines=[line], allocations=[Allocation(line_id=line.line_id, quantity=Decimal(received))]
            )
            derive_status(
                kind=DocumentKind.PURCHASE_ORDER,
                current_status=OrderStatus.PARTIAL,
                snapshot=snapshot,
            )

        traces = [
            r for r in _parse_all_logs(stream)
            if r["message"] == "ORDERFLOW_ENGINE_TRACE" and r["engine_name"] == "status_derivation"
        ]
        assert len(traces) == 2
        assert traces[0]["input_fingerprint"] != traces[1]["input_fingerprint"]
