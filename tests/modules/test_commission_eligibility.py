"""
Tests for CommissionEligibilityEngine.

Validates:
- Percentage commissions are whole percents of the live quote total
- Each paid_when rule reads settlement (cleared payments), never the
  recorded amount_paid
- Reassigning a role cancels the previous holder's commission
- Exclusive assignment cancels the lead's other roles
- Payout only from eligible, and per-user summaries
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from crm_kernel.exceptions import InvalidTransitionError, ValidationError
from crm_modules.commissions.models import (
    AssignmentPolicy,
    CommissionRole,
    CommissionStatus,
    CommissionType,
    PaidWhen,
)
from crm_modules.commissions.service import calculate_commission, paid_when_satisfied
from crm_modules.payments.models import LeadSettlement, PaymentMethod


def _settlement(invoices=0, invoiced="0", cleared="0", cleared_count=0):
    return LeadSettlement(
        lead_id=uuid4(),
        invoice_count=invoices,
        invoiced_total=Decimal(invoiced),
        recorded_total=Decimal(cleared),
        cleared_total=Decimal(cleared),
        cleared_payment_count=cleared_count,
    )


@pytest.fixture
def assign(lifecycle, sales_user, lead_id):
    def _assign(role=CommissionRole.SALES_REP, user_id=None, **kwargs):
        kwargs.setdefault("commission_type", CommissionType.PERCENTAGE)
        kwargs.setdefault("rate_or_amount", Decimal("10"))
        return lifecycle.commissions.assign(
            sales_user,
            lead_id=lead_id,
            role=role,
            user_id=user_id or sales_user.user_id,
            **kwargs,
        )

    return _assign


@pytest.fixture
def invoiced_contract(lifecycle, sales_user, signed_quote):
    """A signed 1,080.00 quote with a sent invoice for the full amount."""
    _, contract_id = signed_quote()
    invoice = lifecycle.invoices.create_invoice(sales_user, contract_id=contract_id)
    return lifecycle.invoices.mark_sent(invoice.id, sales_user)


class TestCalculation:

    def test_percentage_is_whole_percent(self):
        assert calculate_commission("percentage", Decimal("10"), Decimal("1280.00")) == Decimal(
            "128.00"
        )

    def test_flat_ignores_base(self):
        assert calculate_commission(CommissionType.FLAT_AMOUNT, "250", "99999") == Decimal("250.00")

    @pytest.mark.parametrize(
        "paid_when, contract, settlement, expected",
        [
            (PaidWhen.WHEN_CONTRACT_SIGNED, True, _settlement(), True),
            (PaidWhen.WHEN_CONTRACT_SIGNED, False, _settlement(), False),
            (PaidWhen.WHEN_DEPOSIT_PAID, True, _settlement(1, "1000"), False),
            (PaidWhen.WHEN_DEPOSIT_PAID, True, _settlement(1, "1000", "1", 1), True),
            (PaidWhen.WHEN_INVOICED, True, _settlement(1, "1000"), False),
            (PaidWhen.WHEN_INVOICED, True, _settlement(1, "1000", "500", 1), True),
            (PaidWhen.WHEN_FINAL_PAID, True, _settlement(1, "1000", "999.99", 2), False),
            (PaidWhen.WHEN_FINAL_PAID, True, _settlement(1, "1000", "1000", 2), True),
            (PaidWhen.WHEN_FINAL_PAID, True, _settlement(), False),
        ],
    )
    def test_paid_when_rules(self, paid_when, contract, settlement, expected):
        assert paid_when_satisfied(paid_when, contract, settlement) is expected


class TestAssignment:

    def test_assign_uses_live_quote_total(self, assign, signed_quote):
        signed_quote()

        commission = assign(paid_when=PaidWhen.WHEN_FINAL_PAID)

        assert commission.status is CommissionStatus.PENDING
        assert commission.base_amount == Decimal("1080.00")
        assert commission.calculated_amount == Decimal("108.00")

    def test_contract_signed_rule_is_immediately_eligible(self, assign, signed_quote):
        signed_quote()

        commission = assign(paid_when=PaidWhen.WHEN_CONTRACT_SIGNED)

        assert commission.status is CommissionStatus.ELIGIBLE
        assert commission.eligible_at is not None

    def test_voided_chain_is_not_a_signed_contract(
        self, lifecycle, assign, signed_quote, approved_change_order, sales_user
    ):
        quote, _ = signed_quote()
        revision_id = approved_change_order(quote).contract_id
        lifecycle.contracts.void(revision_id, "Job cancelled", sales_user.user_id)

        commission = assign(paid_when=PaidWhen.WHEN_CONTRACT_SIGNED)

        assert commission.status is CommissionStatus.PENDING
        assert commission.eligible_at is None

    def test_quote_of_another_lead(self, lifecycle, assign, create_quote, lead_id):
        foreign = create_quote(lead=uuid4(), send=False)

        with pytest.raises(ValidationError, match="quote_id"):
            assign(quote_id=foreign.id, paid_when=PaidWhen.WHEN_FINAL_PAID)
        assert lifecycle.commissions.list_for_lead(lead_id) == []

    def test_explicit_quote_of_the_lead(self, assign, create_quote):
        quote = create_quote(send=False)

        commission = assign(quote_id=quote.id, paid_when=PaidWhen.WHEN_FINAL_PAID)

        assert commission.quote_id == quote.id
        assert commission.base_amount == Decimal("1080.00")

    def test_pending_follows_change_orders(
        self, lifecycle, assign, signed_quote, approved_change_order, lead_id
    ):
        quote, _ = signed_quote()
        commission = assign(paid_when=PaidWhen.WHEN_FINAL_PAID)

        approved_change_order(quote)

        refreshed = lifecycle.commissions.get(commission.id)
        assert refreshed.base_amount == Decimal("1280.00")
        assert refreshed.calculated_amount == Decimal("128.00")

    def test_reassignment_cancels_previous(self, lifecycle, assign, signed_quote, lead_id):
        signed_quote()
        first = assign(user_id=uuid4(), paid_when=PaidWhen.WHEN_FINAL_PAID)
        second = assign(user_id=uuid4(), paid_when=PaidWhen.WHEN_FINAL_PAID)

        assert lifecycle.commissions.get(first.id).status is CommissionStatus.CANCELLED
        assert lifecycle.commissions.get(first.id).cancellation_reason == "reassigned"
        live = lifecycle.commissions.list_for_lead(lead_id, include_closed=False)
        assert [c.id for c in live] == [second.id]

    def test_same_user_updates_pending_terms(self, assign, signed_quote):
        signed_quote()
        first = assign(paid_when=PaidWhen.WHEN_FINAL_PAID)

        again = assign(rate_or_amount=Decimal("5"), paid_when=PaidWhen.WHEN_FINAL_PAID)

        assert again.id == first.id
        assert again.calculated_amount == Decimal("54.00")

    def test_concurrent_roles_allowed_by_default(self, lifecycle, assign, signed_quote, lead_id):
        signed_quote()
        assign(CommissionRole.SALES_REP, paid_when=PaidWhen.WHEN_FINAL_PAID)
        assign(CommissionRole.MARKETING_REP, user_id=uuid4(), paid_when=PaidWhen.WHEN_FINAL_PAID)

        live = lifecycle.commissions.list_for_lead(lead_id, include_closed=False)
        assert {c.role for c in live} == {CommissionRole.SALES_REP, CommissionRole.MARKETING_REP}

    def test_exclusive_assignment_cancels_other_roles(
        self, lifecycle, assign, signed_quote, lead_id
    ):
        signed_quote()
        marketing = assign(
            CommissionRole.MARKETING_REP, user_id=uuid4(), paid_when=PaidWhen.WHEN_FINAL_PAID
        )

        assign(
            CommissionRole.SALES_REP,
            paid_when=PaidWhen.WHEN_FINAL_PAID,
            policy=AssignmentPolicy.EXCLUSIVE_ASSIGNMENT,
        )

        cancelled = lifecycle.commissions.get(marketing.id)
        assert cancelled.status is CommissionStatus.CANCELLED
        assert cancelled.cancellation_reason == "exclusive assignment of sales_rep"

    def test_unassign(self, lifecycle, assign, signed_quote, sales_user, lead_id):
        signed_quote()
        commission = assign(paid_when=PaidWhen.WHEN_FINAL_PAID)

        cancelled = lifecycle.commissions.unassign(
            sales_user, lead_id=lead_id, role=CommissionRole.SALES_REP
        )

        assert [c.id for c in cancelled] == [commission.id]
        assert cancelled[0].status is CommissionStatus.CANCELLED

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"rate_or_amount": Decimal("101")},
            {"rate_or_amount": Decimal("-1")},
            {"commission_type": "bonus"},
            {"paid_when": "when_it_rains"},
        ],
    )
    def test_validation(self, assign, kwargs):
        with pytest.raises(ValidationError):
            assign(**kwargs)


class TestSettlementDrivenEligibility:

    def test_recorded_payment_is_not_a_deposit(self, lifecycle, assign, invoiced_contract, sales_user):
        commission = assign(paid_when=PaidWhen.WHEN_DEPOSIT_PAID)
        lifecycle.payments.record_payment(
            sales_user, invoice_id=invoiced_contract.id, amount="1080.00", method=PaymentMethod.CHECK
        )

        assert lifecycle.commissions.get(commission.id).status is CommissionStatus.PENDING

    def test_cleared_deposit_makes_eligible(self, lifecycle, assign, invoiced_contract, sales_user):
        commission = assign(paid_when=PaidWhen.WHEN_DEPOSIT_PAID)
        payment = lifecycle.payments.record_payment(
            sales_user, invoice_id=invoiced_contract.id, amount="100.00", method=PaymentMethod.CHECK
        )

        lifecycle.payments.mark_cleared(payment.id, sales_user)

        assert lifecycle.commissions.get(commission.id).status is CommissionStatus.ELIGIBLE

    def test_invoiced_needs_cleared_payment(self, lifecycle, assign, invoiced_contract, sales_user):
        commission = assign(paid_when=PaidWhen.WHEN_INVOICED)
        assert commission.status is CommissionStatus.PENDING

        lifecycle.payments.record_payment(
            sales_user,
            invoice_id=invoiced_contract.id,
            amount="50.00",
            method=PaymentMethod.CASH,
            cleared=True,
        )

        assert lifecycle.commissions.get(commission.id).status is CommissionStatus.ELIGIBLE

    def test_final_paid_needs_full_clearing(self, lifecycle, assign, invoiced_contract, sales_user):
        commission = assign(paid_when=PaidWhen.WHEN_FINAL_PAID)
        first = lifecycle.payments.record_payment(
            sales_user, invoice_id=invoiced_contract.id, amount="540.00",
            method=PaymentMethod.CHECK, cleared=True,
        )
        second = lifecycle.payments.record_payment(
            sales_user, invoice_id=invoiced_contract.id, amount="540.00", method=PaymentMethod.CHECK
        )
        assert first.cleared is True
        assert lifecycle.invoices.get(invoiced_contract.id).balance_due == Decimal("0.00")
        assert lifecycle.commissions.get(commission.id).status is CommissionStatus.PENDING

        lifecycle.payments.mark_cleared(second.id, sales_user)

        assert lifecycle.commissions.get(commission.id).status is CommissionStatus.ELIGIBLE

    def test_eligible_amount_is_frozen(
        self, lifecycle, assign, signed_quote, approved_change_order
    ):
        quote, _ = signed_quote()
        commission = assign(paid_when=PaidWhen.WHEN_CONTRACT_SIGNED)
        assert commission.calculated_amount == Decimal("108.00")

        approved_change_order(quote)

        assert lifecycle.commissions.get(commission.id).calculated_amount == Decimal("108.00")


class TestPayout:

    def test_mark_paid_defaults_to_calculated(self, lifecycle, assign, signed_quote, sales_user):
        signed_quote()
        commission = assign(paid_when=PaidWhen.WHEN_CONTRACT_SIGNED)

        paid = lifecycle.commissions.mark_paid(commission.id, sales_user, reference="ACH-7781")

        assert paid.status is CommissionStatus.PAID
        assert paid.paid_amount == Decimal("108.00")
        assert paid.payment_reference == "ACH-7781"

    def test_pending_cannot_be_paid(self, lifecycle, assign, signed_quote, sales_user):
        signed_quote()
        commission = assign(paid_when=PaidWhen.WHEN_FINAL_PAID)
        with pytest.raises(InvalidTransitionError):
            lifecycle.commissions.mark_paid(commission.id, sales_user)

    def test_summary(self, lifecycle, assign, signed_quote, sales_user, create_quote):
        signed_quote()
        eligible = assign(CommissionRole.SALES_REP, paid_when=PaidWhen.WHEN_CONTRACT_SIGNED)
        assign(
            CommissionRole.SALES_MANAGER,
            commission_type=CommissionType.FLAT_AMOUNT,
            rate_or_amount=Decimal("75"),
            paid_when=PaidWhen.WHEN_FINAL_PAID,
        )
        paid = assign(
            CommissionRole.PRODUCTION_MANAGER,
            commission_type=CommissionType.FLAT_AMOUNT,
            rate_or_amount=Decimal("40"),
            paid_when=PaidWhen.WHEN_CONTRACT_SIGNED,
        )
        lifecycle.commissions.mark_paid(paid.id, sales_user, paid_amount="35.00")

        summary = lifecycle.commissions.summary_for_user(sales_user.user_id, sales_user.company_id)

        assert eligible.status is CommissionStatus.ELIGIBLE
        assert summary.total_owed == Decimal("108.00")
        assert summary.total_pending == Decimal("75.00")
        assert summary.total_paid == Decimal("35.00")
        assert (summary.count_eligible, summary.count_pending, summary.count_paid) == (1, 1, 1)
