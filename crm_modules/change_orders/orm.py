"""
Change order ORM models (``crm_modules.change_orders.orm``).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_kernel.db.base import ShareLinkMixin, SoftDeleteMixin, TrackedBase


class ChangeOrderModel(ShareLinkMixin, SoftDeleteMixin, TrackedBase):
    """
    ORM model for change orders.

    Guarantees:
        - change_order_number unique per company.
        - amount/tax_amount/total fixed at proposal time.
    """

    __tablename__ = "change_orders"

    __table_args__ = (
        UniqueConstraint("company_id", "change_order_number", name="uq_change_orders_number"),
        CheckConstraint(
            "status IN ('pending', 'sent', 'pending_company_signature', "
            "'pending_customer_signature', 'approved', 'rejected')",
            name="ck_change_orders_status",
        ),
        Index("idx_change_orders_quote_id", "quote_id"),
        Index("idx_change_orders_lead_id", "lead_id"),
    )

    company_id: Mapped[UUID] = mapped_column(nullable=False)
    lead_id: Mapped[UUID] = mapped_column(nullable=False)
    quote_id: Mapped[UUID] = mapped_column(ForeignKey("quotes.id"), nullable=False)
    change_order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(nullable=False)

    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    line_items: Mapped[list["ChangeOrderLineItemModel"]] = relationship(
        back_populates="change_order",
        cascade="all, delete-orphan",
        order_by="ChangeOrderLineItemModel.sort_order",
        lazy="selectin",
    )

    def to_dto(self):
        from crm_modules.change_orders.models import ChangeOrder, ChangeOrderStatus

        return ChangeOrder(
            id=self.id,
            company_id=self.company_id,
            lead_id=self.lead_id,
            quote_id=self.quote_id,
            change_order_number=self.change_order_number,
            title=self.title,
            status=ChangeOrderStatus(self.status),
            amount=self.amount,
            tax_rate=self.tax_rate,
            tax_amount=self.tax_amount,
            total=self.total,
            line_items=tuple(item.to_dto() for item in self.line_items),
            description=self.description,
            share_token=self.share_token,
            share_link_expires_at=self.share_link_expires_at,
            sent_at=self.sent_at,
            approved_at=self.approved_at,
            approved_by_id=self.approved_by_id,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
        )

    def __repr__(self) -> str:
        return f"<ChangeOrderModel {self.change_order_number} status={self.status} total={self.total}>"


class ChangeOrderLineItemModel(TrackedBase):
    __tablename__ = "change_order_line_items"

    __table_args__ = (Index("idx_change_order_line_items_co_id", "change_order_id"),)

    change_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("change_orders.id"), nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="ea")
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    change_order: Mapped["ChangeOrderModel"] = relationship(back_populates="line_items")

    def to_dto(self):
        from crm_modules.change_orders.models import ChangeOrderLineItem

        return ChangeOrderLineItem(
            id=self.id,
            change_order_id=self.change_order_id,
            description=self.description,
            quantity=self.quantity,
            unit=self.unit,
            unit_price=self.unit_price,
            line_total=self.line_total,
            sort_order=self.sort_order,
            category=self.category,
        )
