"""
Tests for crm_kernel.services.saga.Saga.

Validates:
- Compensations run newest first when the block raises
- The original exception propagates unchanged
- A failing compensation does not stop the others
- Nothing is compensated on success, and compensate() runs at most once
"""

import pytest

from crm_kernel.services.saga import Saga


class TestSagaCompensation:

    def test_runs_compensations_in_reverse_order(self):
        calls = []
        with pytest.raises(RuntimeError, match="line items"):
            with Saga("create_invoice") as saga:
                saga.record("insert_invoice", lambda: calls.append("delete_invoice"))
                saga.record("allocate_number", lambda: calls.append("release_number"))
                raise RuntimeError("line items failed")

        assert calls == ["release_number", "delete_invoice"]

    def test_no_compensation_on_success(self):
        calls = []
        with Saga("ok") as saga:
            saga.record("step", lambda: calls.append("undo"))

        assert calls == []
        assert saga.steps == ("step",)

    def test_failing_compensation_is_reported_and_others_still_run(self, captured_logs):
        calls = []

        def broken():
            raise ValueError("cannot undo")

        saga = Saga("partial")
        saga.record("first", lambda: calls.append("first"))
        saga.record("second", broken)

        failed = saga.compensate()

        assert failed == ["second"]
        assert calls == ["first"]
        messages = [r["message"] for r in captured_logs()]
        assert "saga_compensation_failed" in messages
        assert "saga_step_compensated" in messages

    def test_compensate_runs_once(self):
        calls = []
        saga = Saga("once")
        saga.record("step", lambda: calls.append("undo"))

        saga.compensate()
        assert saga.compensate() == []
        assert calls == ["undo"]
