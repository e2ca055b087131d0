"""
Tests for BestEffortDispatcher.

Validates:
- A successful send returns True and is logged
- Exceptions, refusals and timeouts return False, never raise
- Rendering errors surface as DocumentRenderError for the caller to log
"""

import threading

import pytest

from crm_kernel.exceptions import DispatchTimeoutError, DocumentRenderError
from crm_services.notifications import (
    EXECUTED_CONTRACT,
    BestEffortDispatcher,
    DocumentRenderer,
    LoggingDispatcher,
    NotificationDispatcher,
)


class RecordingDispatcher:
    def __init__(self, accept=True):
        self.accept = accept
        self.sent = []

    def send(self, document_kind, recipient, payload):
        self.sent.append((document_kind, recipient, dict(payload)))
        return self.accept


class FailingDispatcher:
    def send(self, document_kind, recipient, payload):
        raise ConnectionError("SMTP connection refused")


class SlowDispatcher:
    def __init__(self):
        self.release = threading.Event()

    def send(self, document_kind, recipient, payload):
        self.release.wait(5)
        return True


class BrokenRenderer:
    def to_pdf(self, document_data):
        raise RuntimeError("font not found")


@pytest.fixture
def recording():
    return RecordingDispatcher()


class TestDispatch:

    def test_accepted(self, recording, captured_logs):
        notifier = BestEffortDispatcher(recording)

        assert notifier.dispatch(EXECUTED_CONTRACT, "jane@example.com", {"total": "1080.00"})

        assert recording.sent == [(EXECUTED_CONTRACT, "jane@example.com", {"total": "1080.00"})]
        assert any(r["message"] == "notification_dispatched" for r in captured_logs())

    def test_missing_recipient_is_passed_through(self, recording):
        notifier = BestEffortDispatcher(recording)
        assert notifier.dispatch(EXECUTED_CONTRACT, None, {}) is True
        assert recording.sent[0][1] is None

    def test_exception_returns_false(self, captured_logs):
        notifier = BestEffortDispatcher(FailingDispatcher())

        assert notifier.dispatch(EXECUTED_CONTRACT, "jane@example.com", {}) is False

        failures = [r for r in captured_logs() if r["message"] == "notification_dispatch_failed"]
        assert failures[0]["error"] == "ConnectionError"
        assert failures[0]["level"] == "WARNING"

    def test_refusal_returns_false(self):
        notifier = BestEffortDispatcher(RecordingDispatcher(accept=False))
        assert notifier.dispatch(EXECUTED_CONTRACT, "jane@example.com", {}) is False

    def test_timeout_returns_false(self, captured_logs):
        slow = SlowDispatcher()
        notifier = BestEffortDispatcher(slow, timeout_seconds=0.05)
        try:
            assert notifier.dispatch(EXECUTED_CONTRACT, "jane@example.com", {}) is False
        finally:
            slow.release.set()
            notifier.shutdown()

        failures = [r for r in captured_logs() if r["message"] == "notification_dispatch_failed"]
        assert failures[0]["error"] == "DispatchTimeoutError"

    def test_default_dispatcher_logs(self, captured_logs):
        notifier = BestEffortDispatcher()
        assert notifier.dispatch("quote", "jane@example.com", {}) is True
        assert any(r["message"] == "notification_logged" for r in captured_logs())

    @pytest.mark.parametrize("timeout", [0, -1])
    def test_timeout_must_be_positive(self, timeout):
        with pytest.raises(ValueError):
            BestEffortDispatcher(timeout_seconds=timeout)


class TestCall:

    def test_call_timeout_raises(self):
        slow = SlowDispatcher()
        notifier = BestEffortDispatcher(timeout_seconds=0.05)
        try:
            with pytest.raises(DispatchTimeoutError) as exc_info:
                notifier.call("notification_dispatcher", slow.send, "quote", None, {})
            assert exc_info.value.timeout_seconds == 0.05
        finally:
            slow.release.set()
            notifier.shutdown()


class TestRender:

    def test_render_failure(self):
        notifier = BestEffortDispatcher()
        with pytest.raises(DocumentRenderError, match="font not found"):
            notifier.render(BrokenRenderer(), {"id": "x"})

    def test_render_returns_bytes(self):
        class PdfRenderer:
            def to_pdf(self, document_data):
                return b"%PDF-1.7"

        assert BestEffortDispatcher().render(PdfRenderer(), {}) == b"%PDF-1.7"


class TestProtocols:

    def test_runtime_checkable(self, recording):
        assert isinstance(recording, NotificationDispatcher)
        assert isinstance(LoggingDispatcher(), NotificationDispatcher)
        assert isinstance(BrokenRenderer(), DocumentRenderer)
