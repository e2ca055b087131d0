"""Tests for crm_kernel.logging_config."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from crm_kernel.exceptions import AlreadySignedError
from crm_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from crm_modules.quotes.models import SigningState


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    # Restore the suite-wide configuration from conftest
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def stream():
    buf = StringIO()
    handler = logging.StreamHandler(buf)
    configure_logging(handler=handler)
    return buf


def _records(buf: StringIO) -> list[dict]:
    return [json.loads(line) for line in buf.getvalue().splitlines() if line]


class TestStructuredFormatter:

    def test_event_line(self, stream):
        get_logger("quotes").info("quote_created")

        (record,) = _records(stream)
        assert record["message"] == "quote_created"
        assert record["level"] == "INFO"
        assert record["logger"] == "crm.quotes"
        assert record["ts"].endswith("+00:00")

    def test_extra_values_flattened(self, stream):
        quote_id = uuid4()
        get_logger("quotes").info(
            "quote_fully_signed",
            extra={
                "quote_id": quote_id,
                "total": Decimal("1080.00"),
                "signing_state": SigningState.FULLY_SIGNED,
                "contract_created": True,
            },
        )

        (record,) = _records(stream)
        assert record["quote_id"] == str(quote_id)
        assert record["total"] == "1080.00"
        assert record["signing_state"] == "fully_signed"
        assert record["contract_created"] is True

    def test_context_merged(self, stream):
        company_id = uuid4()
        with LogContext.bind(company_id=company_id, actor_id="user-7"):
            get_logger("invoices").info("invoice_created")

        (record,) = _records(stream)
        assert record["company_id"] == str(company_id)
        assert record["actor_id"] == "user-7"

    def test_crm_error_fields(self, stream):
        try:
            raise AlreadySignedError("quote", "q-1", "customer", "Jane Homeowner")
        except AlreadySignedError:
            get_logger("signing").warning("signature_rejected", exc_info=True)

        (record,) = _records(stream)
        assert record["exc_type"] == "AlreadySignedError"
        assert record["exc_code"] == "ALREADY_SIGNED"
        assert record["exc_signer_name"] == "Jane Homeowner"
        assert record["exc_document_id"] == "q-1"
        assert "Traceback" in record["traceback"]

    def test_plain_exception(self, stream):
        try:
            raise ConnectionError("smtp down")
        except ConnectionError:
            get_logger("notifications").error("dispatch_failed", exc_info=True)

        (record,) = _records(stream)
        assert record["exc_message"] == "smtp down"
        assert "exc_code" not in record

    def test_debug_suppressed_at_info(self, stream):
        log = get_logger("payments")
        log.debug("noise")
        log.info("payment_recorded")

        assert [r["message"] for r in _records(stream)] == ["payment_recorded"]

    def test_formatter_standalone(self):
        record = logging.LogRecord("crm.x", logging.ERROR, __file__, 1, "boom %s", ("now",), None)
        assert json.loads(StructuredFormatter().format(record))["message"] == "boom now"


class TestLogContext:

    def test_set_is_additive(self):
        LogContext.set(correlation_id="req-1")
        LogContext.set(document_id="doc-9")

        assert LogContext.get_all() == {"correlation_id": "req-1", "document_id": "doc-9"}

    def test_bind_restores_previous(self):
        LogContext.set(company_id="outer")
        with LogContext.bind(company_id="inner", document_id=None):
            assert LogContext.get_all() == {"company_id": "inner"}
        assert LogContext.get_all() == {"company_id": "outer"}

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(tenant="acme"):
            assert LogContext.get_all() == {}

    def test_clear(self):
        LogContext.set(actor_id="a")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestConfigureLogging:

    def test_second_call_is_noop(self):
        first, second = logging.NullHandler(), logging.NullHandler()
        configure_logging(handler=first)
        configure_logging(handler=second)

        assert logging.getLogger("crm").handlers == [first]

    def test_level_by_name(self):
        configure_logging(level="warning", handler=logging.NullHandler())
        assert logging.getLogger("crm").level == logging.WARNING

    def test_crm_tree_does_not_propagate(self, stream):
        assert logging.getLogger("crm").propagate is False
        assert get_logger("change_orders.service").name == "crm.change_orders.service"

    def test_reset_clears_handlers(self):
        configure_logging(handler=logging.NullHandler())
        reset_logging()
        assert logging.getLogger("crm").handlers == []
