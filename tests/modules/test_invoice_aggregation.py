"""
Tests for InvoiceAggregator.

Validates:
- Lines come from the contract, selected approved change orders and
  additional items, in that order, each tagged with its source
- Change orders that are not approved are dropped
- The invoice total equals the sum of its persisted lines
- A failed line insert removes the invoice row (no empty invoices)
- Send, cancel and overdue transitions
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy.exc import IntegrityError

from crm_kernel.exceptions import (
    ContractNotFoundError,
    InvalidStateError,
    InvoiceLineItemWriteError,
    ValidationError,
)
from crm_modules.invoices.models import AdditionalItem, InvoiceStatus, LineKind, LineSource
from crm_modules.invoices.service import InvoiceAggregator
from crm_modules.payments.models import PaymentMethod
from crm_modules.quotes.models import LineItemInput


@pytest.fixture
def contract_with_change_order(lifecycle, signed_quote, approved_change_order):
    """Signed 1,080.00 quote plus an approved 200.00 change order."""
    quote, _ = signed_quote()
    result = approved_change_order(quote)
    return quote, result.contract_id, result.change_order


class TestAggregation:

    def test_three_line_groups(self, lifecycle, sales_user, contract_with_change_order):
        quote, contract_id, co = contract_with_change_order

        invoice = lifecycle.invoices.create_invoice(
            sales_user,
            contract_id=contract_id,
            selected_change_order_ids=[co.id],
            additional_items=[AdditionalItem("Permit fee", 1, "150.00")],
            tax_rate=Decimal("0.10"),
        )

        assert invoice.invoice_number == "INV-2025-001"
        assert invoice.status is InvoiceStatus.DRAFT
        assert invoice.quote_id == quote.id

        contract_lines = invoice.lines_from(LineSource.CONTRACT)
        assert [line.description for line in contract_lines] == [
            "Architectural shingles",
            "Tear-off and disposal",
            "Sales tax",
        ]
        assert contract_lines[-1].line_kind is LineKind.TAX
        assert sum(line.total for line in contract_lines) == Decimal("1080.00")

        (co_line,) = invoice.lines_from(LineSource.CHANGE_ORDER)
        assert co_line.description == "CO-2025-001: OSB decking sheets"
        assert co_line.source_id == co.id
        assert co_line.total == Decimal("200.00")

        extra = invoice.lines_from(LineSource.ADDITIONAL)
        assert [line.description for line in extra] == [
            "Permit fee",
            "Sales tax on additional items",
        ]
        assert extra[-1].total == Decimal("15.00")

        assert [line.sort_order for line in invoice.line_items] == list(range(6))
        assert invoice.subtotal == Decimal("1350.00")
        assert invoice.tax_amount == Decimal("95.00")
        assert invoice.total == Decimal("1445.00")
        assert invoice.balance_due == Decimal("1445.00")

    def test_defaults(self, lifecycle, sales_user, signed_quote):
        _, contract_id = signed_quote()

        invoice = lifecycle.invoices.create_invoice(sales_user, contract_id=contract_id)

        assert invoice.invoice_date == date(2025, 3, 3)
        assert invoice.due_date == date(2025, 4, 2)
        assert invoice.payment_terms == "Net 30"
        assert invoice.total == Decimal("1080.00")

    def test_contract_discount_line(self, lifecycle, sales_user, signed_quote):
        _, contract_id = signed_quote(discount_amount=Decimal("100.00"))

        invoice = lifecycle.invoices.create_invoice(sales_user, contract_id=contract_id)

        kinds = [line.line_kind for line in invoice.line_items]
        assert kinds == [LineKind.ITEM, LineKind.ITEM, LineKind.DISCOUNT, LineKind.TAX]
        assert invoice.total == Decimal("972.00")

    def test_unapproved_change_order_excluded(
        self, lifecycle, sales_user, signed_quote, captured_logs
    ):
        quote, contract_id = signed_quote()
        pending = lifecycle.change_orders.propose(
            sales_user,
            lead_id=quote.lead_id,
            quote_id=quote.id,
            title="Skylight",
            line_items=[LineItemInput("Skylight", Decimal("1"), Decimal("900.00"))],
        )

        invoice = lifecycle.invoices.create_invoice(
            sales_user, contract_id=contract_id, selected_change_order_ids=[pending.id]
        )

        assert invoice.lines_from(LineSource.CHANGE_ORDER) == ()
        assert invoice.total == Decimal("1080.00")
        excluded = [r for r in captured_logs() if r["message"] == "invoice_change_orders_excluded"]
        assert excluded[0]["excluded_ids"] == [str(pending.id)]

    def test_blank_additional_items_dropped(self, lifecycle, sales_user, signed_quote):
        _, contract_id = signed_quote()

        invoice = lifecycle.invoices.create_invoice(
            sales_user,
            contract_id=contract_id,
            additional_items=[AdditionalItem("   ", 1, "99.00")],
        )

        assert invoice.lines_from(LineSource.ADDITIONAL) == ()


class TestCreationRefusals:

    def test_other_company(self, lifecycle, signed_quote, other_company_user):
        _, contract_id = signed_quote()
        with pytest.raises(ContractNotFoundError):
            lifecycle.invoices.create_invoice(other_company_user, contract_id=contract_id)

    def test_voided_contract(self, lifecycle, sales_user, signed_quote):
        _, contract_id = signed_quote()
        lifecycle.contracts.void(contract_id, "Cancelled", sales_user.user_id)
        with pytest.raises(InvalidStateError, match="voided"):
            lifecycle.invoices.create_invoice(sales_user, contract_id=contract_id)

    def test_superseded_revision_of_voided_chain(
        self, lifecycle, sales_user, contract_with_change_order
    ):
        quote, revision_id, _ = contract_with_change_order
        original_id = lifecycle.contracts.original_for_quote(quote.id).id
        lifecycle.contracts.void(revision_id, "Job cancelled", sales_user.user_id)

        with pytest.raises(InvalidStateError, match="no active revision"):
            lifecycle.invoices.create_invoice(sales_user, contract_id=original_id)
        assert lifecycle.invoices.list_for_lead(quote.lead_id) == []

    def test_superseded_revision_of_live_chain(
        self, lifecycle, sales_user, contract_with_change_order
    ):
        quote, _, _ = contract_with_change_order
        original_id = lifecycle.contracts.original_for_quote(quote.id).id

        invoice = lifecycle.invoices.create_invoice(sales_user, contract_id=original_id)

        assert invoice.total == Decimal("1080.00")

    def test_due_before_invoice_date(self, lifecycle, sales_user, signed_quote):
        _, contract_id = signed_quote()
        with pytest.raises(ValidationError):
            lifecycle.invoices.create_invoice(
                sales_user,
                contract_id=contract_id,
                invoice_date=date(2025, 3, 10),
                due_date=date(2025, 3, 1),
            )

    def test_failed_line_insert_removes_invoice(
        self, lifecycle, sales_user, signed_quote, lead_id, monkeypatch, captured_logs
    ):
        _, contract_id = signed_quote()

        def boom(self, invoice, drafts, actor_id):
            raise IntegrityError("INSERT INTO invoice_line_items", {}, Exception("boom"))

        monkeypatch.setattr(InvoiceAggregator, "_insert_line_items", boom)

        with pytest.raises(InvoiceLineItemWriteError) as exc_info:
            lifecycle.invoices.create_invoice(sales_user, contract_id=contract_id)

        assert exc_info.value.invoice_number == "INV-2025-001"
        assert lifecycle.invoices.list_for_lead(lead_id) == []
        messages = [r["message"] for r in captured_logs()]
        assert "invoice_line_items_failed" in messages
        assert "invoice_compensated" in messages


class TestTotalsProperty:

    @settings(
        max_examples=20,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(
        items=st.lists(
            st.tuples(
                st.integers(min_value=1, max_value=40),
                st.decimals(min_value=0, max_value=5000, places=2),
            ),
            max_size=5,
        ),
        rate=st.decimals(min_value=0, max_value=Decimal("0.15"), places=3),
    )
    def test_total_is_sum_of_lines(self, lifecycle, sales_user, signed_quote, items, rate):
        _, contract_id = signed_quote()

        invoice = lifecycle.invoices.create_invoice(
            sales_user,
            contract_id=contract_id,
            additional_items=[
                AdditionalItem(f"Extra {i}", quantity, price)
                for i, (quantity, price) in enumerate(items)
            ],
            tax_rate=rate,
        )

        assert sum(line.total for line in invoice.line_items) == invoice.total
        assert invoice.subtotal + invoice.tax_amount == invoice.total


class TestInvoiceLifecycle:

    def test_send_issues_share_link(self, lifecycle, sales_user, signed_quote, deterministic_clock):
        _, contract_id = signed_quote()
        invoice = lifecycle.invoices.create_invoice(sales_user, contract_id=contract_id)

        sent = lifecycle.invoices.mark_sent(invoice.id, sales_user)

        assert sent.status is InvoiceStatus.SENT
        assert sent.sent_at == deterministic_clock.now()
        assert sent.share_token
        assert lifecycle.invoices.mark_sent(invoice.id, sales_user).share_token == sent.share_token

    def test_cancel(self, lifecycle, sales_user, signed_quote):
        _, contract_id = signed_quote()
        invoice = lifecycle.invoices.create_invoice(sales_user, contract_id=contract_id)

        cancelled = lifecycle.invoices.cancel(invoice.id, sales_user)

        assert cancelled.status is InvoiceStatus.CANCELLED
        with pytest.raises(InvalidStateError):
            lifecycle.invoices.mark_sent(invoice.id, sales_user)

    def test_cannot_cancel_with_payments(self, lifecycle, sales_user, signed_quote):
        _, contract_id = signed_quote()
        invoice = lifecycle.invoices.create_invoice(sales_user, contract_id=contract_id)
        lifecycle.payments.record_payment(
            sales_user, invoice_id=invoice.id, amount=Decimal("100.00"), method=PaymentMethod.CHECK
        )

        with pytest.raises(InvalidStateError, match="cannot be cancelled"):
            lifecycle.invoices.cancel(invoice.id, sales_user)

    def test_mark_overdue(self, lifecycle, sales_user, signed_quote):
        _, contract_id = signed_quote()
        invoice = lifecycle.invoices.create_invoice(sales_user, contract_id=contract_id)
        draft_only = lifecycle.invoices.create_invoice(sales_user, contract_id=contract_id)
        lifecycle.invoices.mark_sent(invoice.id, sales_user)

        assert lifecycle.invoices.mark_overdue(as_of=date(2025, 4, 2)) == []

        flagged = lifecycle.invoices.mark_overdue(
            as_of=date(2025, 4, 3), company_id=sales_user.company_id
        )

        assert [i.id for i in flagged] == [invoice.id]
        assert flagged[0].status is InvoiceStatus.OVERDUE
        assert lifecycle.invoices.get(draft_only.id).status is InvoiceStatus.DRAFT
