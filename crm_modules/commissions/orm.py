"""
Commission ORM model (``crm_modules.commissions.orm``).

``uq_commissions_live_per_role`` allows one live (pending or eligible)
commission per (lead, role); paid and cancelled rows are history.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from crm_kernel.db.base import SoftDeleteMixin, TrackedBase
from crm_kernel.db.types import Rate

_LIVE = "status IN ('pending', 'eligible') AND deleted_at IS NULL"


class CommissionModel(SoftDeleteMixin, TrackedBase):

    __tablename__ = "commissions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'eligible', 'paid', 'cancelled')",
            name="ck_commissions_status",
        ),
        CheckConstraint(
            "role IN ('sales_rep', 'marketing_rep', 'sales_manager', 'production_manager')",
            name="ck_commissions_role",
        ),
        CheckConstraint(
            "paid_when IN ('when_contract_signed', 'when_deposit_paid', "
            "'when_invoiced', 'when_final_paid')",
            name="ck_commissions_paid_when",
        ),
        Index(
            "uq_commissions_live_per_role",
            "lead_id",
            "role",
            unique=True,
            postgresql_where=text(_LIVE),
            sqlite_where=text(_LIVE),
        ),
        Index("idx_commissions_user_id", "user_id"),
    )

    company_id: Mapped[UUID] = mapped_column(nullable=False)
    lead_id: Mapped[UUID] = mapped_column(nullable=False)
    quote_id: Mapped[UUID | None] = mapped_column(nullable=True)
    user_id: Mapped[UUID] = mapped_column(nullable=False)
    role: Mapped[str] = mapped_column(String(30), nullable=False)
    commission_type: Mapped[str] = mapped_column(String(20), nullable=False)
    rate_or_amount: Mapped[Rate] = mapped_column(nullable=False)
    base_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    calculated_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    paid_when: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    eligible_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        from crm_modules.commissions.models import (
            Commission,
            CommissionRole,
            CommissionStatus,
            CommissionType,
            PaidWhen,
        )

        return Commission(
            id=self.id,
            company_id=self.company_id,
            lead_id=self.lead_id,
            user_id=self.user_id,
            role=CommissionRole(self.role),
            commission_type=CommissionType(self.commission_type),
            rate_or_amount=self.rate_or_amount,
            base_amount=self.base_amount,
            calculated_amount=self.calculated_amount,
            paid_when=PaidWhen(self.paid_when),
            status=CommissionStatus(self.status),
            quote_id=self.quote_id,
            eligible_at=self.eligible_at,
            paid_amount=self.paid_amount,
            paid_at=self.paid_at,
            payment_reference=self.payment_reference,
            cancelled_at=self.cancelled_at,
            cancellation_reason=self.cancellation_reason,
        )

    def __repr__(self) -> str:
        return (
            f"<CommissionModel lead={self.lead_id} role={self.role} "
            f"status={self.status} amount={self.calculated_amount}>"
        )
