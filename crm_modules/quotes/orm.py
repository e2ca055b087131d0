"""
Quote ORM models (``crm_modules.quotes.orm``).

``quotes`` holds the live totals: the quote's own line items plus every
approved change order.  Line items are edited only while the quote is
unlocked.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_kernel.db.base import ShareLinkMixin, SoftDeleteMixin, TrackedBase


class QuoteModel(ShareLinkMixin, SoftDeleteMixin, TrackedBase):
    """
    ORM model for quotes.

    Guarantees:
        - status and signing_state stored as enum values.
        - is_locked becomes true exactly when signing_state reaches
          fully_signed, and never reverts.
    """

    __tablename__ = "quotes"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'sent', 'pending', 'accepted', 'declined', 'expired')",
            name="ck_quotes_status",
        ),
        CheckConstraint(
            "signing_state IN ('unsigned', 'customer_signed', 'company_signed', 'fully_signed')",
            name="ck_quotes_signing_state",
        ),
        Index("idx_quotes_company_id", "company_id"),
        Index("idx_quotes_lead_id", "lead_id"),
    )

    company_id: Mapped[UUID] = mapped_column(nullable=False)
    lead_id: Mapped[UUID] = mapped_column(nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    signing_state: Mapped[str] = mapped_column(
        String(20), nullable=False, default="unsigned"
    )
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tax_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(nullable=True)

    line_items: Mapped[list["QuoteLineItemModel"]] = relationship(
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="QuoteLineItemModel.sort_order",
        lazy="selectin",
    )

    def to_dto(self):
        from crm_modules.quotes.models import Quote, QuoteStatus, SigningState

        return Quote(
            id=self.id,
            company_id=self.company_id,
            lead_id=self.lead_id,
            title=self.title,
            status=QuoteStatus(self.status),
            signing_state=SigningState(self.signing_state),
            is_locked=self.is_locked,
            tax_rate=self.tax_rate,
            subtotal=self.subtotal,
            discount_amount=self.discount_amount,
            tax_amount=self.tax_amount,
            total_amount=self.total_amount,
            line_items=tuple(item.to_dto() for item in self.line_items),
            share_token=self.share_token,
            share_link_expires_at=self.share_link_expires_at,
            sent_at=self.sent_at,
            accepted_at=self.accepted_at,
            declined_at=self.declined_at,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return (
            f"<QuoteModel {self.id} status={self.status} "
            f"signing={self.signing_state} total={self.total_amount}>"
        )


class QuoteLineItemModel(TrackedBase):
    """ORM model for quote line items, ordered by sort_order."""

    __tablename__ = "quote_line_items"

    __table_args__ = (Index("idx_quote_line_items_quote_id", "quote_id"),)

    quote_id: Mapped[UUID] = mapped_column(ForeignKey("quotes.id"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="ea")
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    quote: Mapped["QuoteModel"] = relationship(back_populates="line_items")

    def to_dto(self):
        from crm_modules.quotes.models import QuoteLineItem

        return QuoteLineItem(
            id=self.id,
            quote_id=self.quote_id,
            description=self.description,
            quantity=self.quantity,
            unit=self.unit,
            unit_price=self.unit_price,
            line_total=self.line_total,
            sort_order=self.sort_order,
            category=self.category,
        )
