"""
End-to-end quote-to-cash flow.

A 1,000.00 roof at 8% tax is signed by both parties (1,080.00), amended
by a 200.00 decking change order (1,280.00), invoiced in full, and paid
in two halves.  Commissions follow settlement: a deposit commission is
eligible after the first cleared half; a final-paid commission waits
until the second half clears, not merely until it is recorded.
"""

from decimal import Decimal
from uuid import uuid4

from crm_modules.commissions.models import CommissionStatus, CommissionType, PaidWhen
from crm_modules.contracts.models import ContractStatus
from crm_modules.invoices.models import InvoiceStatus, LineSource
from crm_modules.payments.models import PaymentMethod
from crm_modules.quotes.models import QuoteStatus, SigningState


class TestQuoteToCash:

    def test_full_lifecycle(
        self,
        lifecycle,
        create_quote,
        approved_change_order,
        sales_user,
        lead_id,
        customer_payload,
        company_payload,
    ):
        # Commissions assigned before anything is signed
        deposit = lifecycle.commissions.assign(
            sales_user,
            lead_id=lead_id,
            role="sales_rep",
            user_id=sales_user.user_id,
            commission_type=CommissionType.PERCENTAGE,
            rate_or_amount=Decimal("10"),
            paid_when=PaidWhen.WHEN_DEPOSIT_PAID,
        )
        manager_id = uuid4()
        final = lifecycle.commissions.assign(
            sales_user,
            lead_id=lead_id,
            role="sales_manager",
            user_id=manager_id,
            commission_type=CommissionType.PERCENTAGE,
            rate_or_amount=Decimal("2"),
            paid_when=PaidWhen.WHEN_FINAL_PAID,
        )

        # Quote: 1,000.00 + 8% tax
        quote = create_quote()
        assert quote.total_amount == Decimal("1080.00")

        lifecycle.signing.sign_customer_by_token(quote.share_token, customer_payload)
        signed = lifecycle.signing.sign_company(quote.id, company_payload, sales_user)
        assert signed.quote.signing_state is SigningState.FULLY_SIGNED
        assert signed.quote.status is QuoteStatus.ACCEPTED
        original = lifecycle.contracts.get(signed.contract_id)
        assert original.original_total == Decimal("1080.00")

        # Change order: +200.00
        co = approved_change_order(quote)
        assert co.approved is True
        assert lifecycle.quotes.get(quote.id).total_amount == Decimal("1280.00")
        revision = lifecycle.contracts.get(co.contract_id)
        assert revision.revision == 2
        assert revision.original_total == Decimal("1280.00")
        assert lifecycle.contracts.get(original.id).status is ContractStatus.SUPERSEDED

        # Invoice everything
        invoice = lifecycle.invoices.create_invoice(
            sales_user,
            contract_id=revision.id,
            selected_change_order_ids=[co.change_order.id],
        )
        assert invoice.total == Decimal("1280.00")
        assert len(invoice.lines_from(LineSource.CHANGE_ORDER)) == 1
        lifecycle.invoices.mark_sent(invoice.id, sales_user)

        # Pending commissions followed the live total
        assert lifecycle.commissions.get(deposit.id).calculated_amount == Decimal("128.00")

        # First half, cleared
        first = lifecycle.payments.record_payment(
            sales_user,
            invoice_id=invoice.id,
            amount=Decimal("640.00"),
            method=PaymentMethod.CHECK,
            reference_number="1001",
        )
        lifecycle.payments.mark_cleared(first.id, sales_user)

        assert lifecycle.invoices.get(invoice.id).status is InvoiceStatus.PARTIAL
        assert lifecycle.commissions.get(deposit.id).status is CommissionStatus.ELIGIBLE
        assert lifecycle.commissions.get(final.id).status is CommissionStatus.PENDING

        # Second half, recorded only
        second = lifecycle.payments.record_payment(
            sales_user,
            invoice_id=invoice.id,
            amount=Decimal("640.00"),
            method=PaymentMethod.ACH,
        )

        billed = lifecycle.invoices.get(invoice.id)
        assert billed.status is InvoiceStatus.PAID
        assert billed.balance_due == Decimal("0.00")
        assert billed.amount_settled == Decimal("640.00")
        assert lifecycle.commissions.get(final.id).status is CommissionStatus.PENDING

        # Second half clears
        lifecycle.payments.mark_cleared(second.id, sales_user)

        final_now = lifecycle.commissions.get(final.id)
        assert final_now.status is CommissionStatus.ELIGIBLE
        assert final_now.calculated_amount == Decimal("25.60")
        settlement = lifecycle.payments.settlement_for_lead(lead_id)
        assert settlement.fully_settled is True
        assert settlement.cleared_total == Decimal("1280.00")

        # Payout
        paid = lifecycle.commissions.mark_paid(deposit.id, sales_user, reference="PAYROLL-03")
        assert paid.paid_amount == Decimal("128.00")
        summary = lifecycle.commissions.summary_for_user(manager_id, sales_user.company_id)
        assert summary.total_owed == Decimal("25.60")
