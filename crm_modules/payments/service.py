"""
PaymentLedger -- records payments, clears them, and reconciles invoices.

Responsibility:
    Appends payments against invoices, flips the cleared flag, and keeps
    each invoice's amount_paid / balance_due / status / amount_settled in
    step with its payments.

Settlement:
    There is one canonical notion of "settled": a payment that is
    cleared and not deleted.  The invoice's billing view (amount_paid,
    balance_due, status) follows recorded payments; ``amount_settled``
    and ``settlement_for_lead`` follow settled ones.  Commission
    eligibility reads settlement only, so a recorded-but-uncleared
    payment never makes a commission eligible.

Invariants enforced:
    - Reconciliation sums persisted payment rows; it never increments.
    - Clearing is idempotent; the cleared hook fires once per payment.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from crm_kernel.db.types import round_money, to_money
from crm_kernel.domain.actors import ActingUser
from crm_kernel.domain.clock import Clock, SystemClock
from crm_kernel.domain.hooks import LifecycleHooks
from crm_kernel.exceptions import (
    InvalidStateError,
    InvoiceNotFoundError,
    PaymentNotFoundError,
    ValidationError,
)
from crm_kernel.logging_config import get_logger
from crm_kernel.services.sequence_service import DocumentNumberService
from crm_modules.invoices.models import Invoice
from crm_modules.invoices.orm import InvoiceModel
from crm_modules.invoices.workflows import (
    INVOICE_WORKFLOW,
    PAYABLE_STATUSES,
    payment_status,
)
from crm_modules.payments.models import LeadSettlement, Payment, PaymentMethod
from crm_modules.payments.orm import PaymentModel

logger = get_logger("modules.payments.service")


def _as_decimal(value) -> Decimal:
    return round_money(Decimal(str(value)))


class PaymentLedger:
    """
    Payment recording and settlement.

    Usage:
        ledger = PaymentLedger(session, clock, hooks=hooks)
        payment = ledger.record_payment(
            acting_user, invoice_id=invoice.id, amount=Decimal("640.00"), method="check",
        )
        ledger.mark_cleared(payment.id, acting_user)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        hooks: LifecycleHooks | None = None,
        numbering: DocumentNumberService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._hooks = hooks or LifecycleHooks()
        self._numbering = numbering or DocumentNumberService(session)

    # =========================================================================
    # Queries
    # =========================================================================

    def _load(
        self, payment_id: UUID, company_id: UUID | None = None, lock: bool = False
    ) -> PaymentModel:
        stmt = select(PaymentModel).where(PaymentModel.id == payment_id)
        if lock:
            stmt = stmt.with_for_update()
        payment = self._session.execute(stmt).scalar_one_or_none()
        if payment is None or payment.deleted_at is not None:
            raise PaymentNotFoundError(payment_id)
        if company_id is not None and payment.company_id != company_id:
            raise PaymentNotFoundError(payment_id)
        return payment

    def get(self, payment_id: UUID, company_id: UUID | None = None) -> Payment:
        return self._load(payment_id, company_id).to_dto()

    def list_for_invoice(self, invoice_id: UUID, include_deleted: bool = False) -> list[Payment]:
        stmt = (
            select(PaymentModel)
            .where(PaymentModel.invoice_id == invoice_id)
            .order_by(PaymentModel.payment_date, PaymentModel.payment_number)
        )
        if not include_deleted:
            stmt = stmt.where(PaymentModel.deleted_at.is_(None))
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    # =========================================================================
    # Recording
    # =========================================================================

    def record_payment(
        self,
        acting_user: ActingUser,
        *,
        invoice_id: UUID,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        payment_date: date | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
        cleared: bool = False,
    ) -> Payment:
        """
        Append a payment and reconcile its invoice.

        ``cleared=True`` is for funds already settled (cash); it records
        and then clears in one call.

        Raises:
            InvoiceNotFoundError, ValidationError (amount <= 0, unknown
            method), InvalidStateError (cancelled invoice).
        """
        amount = round_money(to_money(amount))
        if amount <= 0:
            raise ValidationError("amount", "must be positive")
        try:
            method = PaymentMethod(method)
        except ValueError:
            raise ValidationError("method", f"unknown payment method {method!r}") from None

        invoice = self._session.execute(
            select(InvoiceModel).where(InvoiceModel.id == invoice_id).with_for_update()
        ).scalar_one_or_none()
        if (
            invoice is None
            or invoice.deleted_at is not None
            or invoice.company_id != acting_user.company_id
        ):
            raise InvoiceNotFoundError(invoice_id)
        if invoice.status not in PAYABLE_STATUSES:
            raise InvalidStateError("invoice", invoice.id, invoice.status, "record payment")

        payment_date = payment_date or self._clock.today()
        number = self._numbering.next_number(
            invoice.company_id, DocumentNumberService.PAYMENT, payment_date.year
        )
        payment = PaymentModel(
            company_id=invoice.company_id,
            lead_id=invoice.lead_id,
            invoice_id=invoice.id,
            payment_number=number,
            amount=amount,
            method=method.value,
            payment_date=payment_date,
            reference_number=reference_number,
            notes=notes,
            cleared=False,
            created_by_id=acting_user.user_id,
        )
        self._session.add(payment)
        self._session.flush()

        logger.info(
            "payment_recorded",
            extra={
                "payment_id": str(payment.id),
                "payment_number": number,
                "invoice_id": str(invoice.id),
                "amount": str(amount),
                "method": method.value,
            },
        )

        self.reconcile_invoice(invoice.id)
        self._hooks.on_payment_recorded(
            company_id=invoice.company_id,
            lead_id=invoice.lead_id,
            invoice_id=invoice.id,
            payment_id=payment.id,
        )
        if cleared:
            return self.mark_cleared(payment.id, acting_user)
        return payment.to_dto()

    def mark_cleared(self, payment_id: UUID, acting_user: ActingUser) -> Payment:
        """Flag the payment as settled.  Clearing twice is a no-op."""
        payment = self._load(payment_id, acting_user.company_id, lock=True)
        if payment.cleared:
            logger.info("payment_already_cleared", extra={"payment_id": str(payment.id)})
            return payment.to_dto()

        payment.cleared = True
        payment.cleared_at = self._clock.now()
        payment.cleared_by_id = acting_user.user_id
        payment.updated_by_id = acting_user.user_id
        self._session.flush()

        logger.info(
            "payment_cleared",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(payment.invoice_id),
                "amount": str(payment.amount),
            },
        )

        self.reconcile_invoice(payment.invoice_id)
        self._hooks.on_payment_cleared(
            company_id=payment.company_id,
            lead_id=payment.lead_id,
            invoice_id=payment.invoice_id,
            payment_id=payment.id,
        )
        return payment.to_dto()

    def soft_delete(self, payment_id: UUID, reason: str, acting_user: ActingUser) -> Payment:
        """Withdraw a payment recorded in error, then reconcile."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason", "is required to delete a payment")
        payment = self._load(payment_id, acting_user.company_id, lock=True)
        payment.deleted_at = self._clock.now()
        payment.deletion_reason = reason
        payment.updated_by_id = acting_user.user_id
        self._session.flush()

        logger.info(
            "payment_deleted",
            extra={"payment_id": str(payment.id), "invoice_id": str(payment.invoice_id)},
        )
        self.reconcile_invoice(payment.invoice_id)
        return payment.to_dto()

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def reconcile_invoice(self, invoice_id: UUID) -> Invoice:
        """Recompute the invoice's payment figures and status from its payments."""
        invoice = self._session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)

        recorded, settled = self._session.execute(
            select(
                func.coalesce(func.sum(PaymentModel.amount), 0),
                func.coalesce(
                    func.sum(case((PaymentModel.cleared.is_(True), PaymentModel.amount), else_=0)),
                    0,
                ),
            ).where(
                PaymentModel.invoice_id == invoice_id,
                PaymentModel.deleted_at.is_(None),
            )
        ).one()

        previous = invoice.status
        invoice.amount_paid = _as_decimal(recorded)
        invoice.amount_settled = _as_decimal(settled)
        invoice.balance_due = round_money(invoice.total - invoice.amount_paid)
        target = payment_status(
            previous,
            invoice.total,
            invoice.amount_paid,
            invoice.due_date,
            self._clock.today(),
        )
        if target != previous:
            INVOICE_WORKFLOW.require(
                previous,
                "apply_payments",
                entity_type="invoice",
                entity_id=invoice.id,
                to_state=target,
            )
            invoice.status = target
        self._session.flush()

        logger.info(
            "invoice_reconciled",
            extra={
                "invoice_id": str(invoice.id),
                "amount_paid": str(invoice.amount_paid),
                "amount_settled": str(invoice.amount_settled),
                "balance_due": str(invoice.balance_due),
                "from_status": previous,
                "to_status": invoice.status,
            },
        )
        return invoice.to_dto()

    def settlement_for_lead(self, lead_id: UUID) -> LeadSettlement:
        """Invoiced, recorded and settled totals across the lead's live invoices."""
        invoice_count, invoiced = self._session.execute(
            select(
                func.count(InvoiceModel.id),
                func.coalesce(func.sum(InvoiceModel.total), 0),
            ).where(
                InvoiceModel.lead_id == lead_id,
                InvoiceModel.deleted_at.is_(None),
                InvoiceModel.status != "cancelled",
            )
        ).one()

        live = (
            PaymentModel.lead_id == lead_id,
            PaymentModel.deleted_at.is_(None),
        )
        recorded = self._session.execute(
            select(func.coalesce(func.sum(PaymentModel.amount), 0)).where(*live)
        ).scalar_one()
        cleared_total, cleared_count, first_cleared_at = self._session.execute(
            select(
                func.coalesce(func.sum(PaymentModel.amount), 0),
                func.count(PaymentModel.id),
                func.min(PaymentModel.cleared_at),
            ).where(*live, PaymentModel.cleared.is_(True))
        ).one()

        return LeadSettlement(
            lead_id=lead_id,
            invoice_count=invoice_count,
            invoiced_total=_as_decimal(invoiced),
            recorded_total=_as_decimal(recorded),
            cleared_total=_as_decimal(cleared_total),
            cleared_payment_count=cleared_count,
            first_cleared_at=first_cleared_at,
        )
