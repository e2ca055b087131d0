"""
Payment ORM model (``crm_modules.payments.orm``).

Payments are append-only.  Corrections are soft deletes with a reason;
the only in-place change is clearing.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from crm_kernel.db.base import SoftDeleteMixin, TrackedBase


class PaymentModel(SoftDeleteMixin, TrackedBase):

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("company_id", "payment_number", name="uq_payments_number"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "method IN ('cash', 'check', 'credit_card', 'ach', 'wire', 'financing', 'other')",
            name="ck_payments_method",
        ),
        Index("idx_payments_invoice_id", "invoice_id"),
        Index("idx_payments_lead_id", "lead_id"),
    )

    company_id: Mapped[UUID] = mapped_column(nullable=False)
    lead_id: Mapped[UUID] = mapped_column(nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    payment_number: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    cleared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cleared_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cleared_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    deletion_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        from crm_modules.payments.models import Payment, PaymentMethod

        return Payment(
            id=self.id,
            company_id=self.company_id,
            lead_id=self.lead_id,
            invoice_id=self.invoice_id,
            payment_number=self.payment_number,
            amount=self.amount,
            method=PaymentMethod(self.method),
            payment_date=self.payment_date,
            cleared=self.cleared,
            reference_number=self.reference_number,
            notes=self.notes,
            cleared_at=self.cleared_at,
            deleted_at=self.deleted_at,
            deletion_reason=self.deletion_reason,
        )

    def __repr__(self) -> str:
        return f"<PaymentModel {self.payment_number} amount={self.amount} cleared={self.cleared}>"
