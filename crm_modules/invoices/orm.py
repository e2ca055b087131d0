"""
Invoice ORM models (``crm_modules.invoices.orm``).

``invoice_line_items`` is append-only (db/immutability.py): an invoice
is a snapshot of its sources at creation time, so voiding a contract or
change order later never rewrites it.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_kernel.db.base import ShareLinkMixin, SoftDeleteMixin, TrackedBase


class InvoiceModel(ShareLinkMixin, SoftDeleteMixin, TrackedBase):
    """
    ORM model for customer invoices.

    Guarantees:
        - invoice_number unique per company.
        - total == sum(line_items.total), written from a SQL sum after the
          line items are inserted.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("company_id", "invoice_number", name="uq_invoices_number"),
        CheckConstraint(
            "status IN ('draft', 'sent', 'partial', 'paid', 'overdue', 'cancelled')",
            name="ck_invoices_status",
        ),
        Index("idx_invoices_lead_id", "lead_id"),
        Index("idx_invoices_contract_id", "contract_id"),
    )

    company_id: Mapped[UUID] = mapped_column(nullable=False)
    lead_id: Mapped[UUID] = mapped_column(nullable=False)
    quote_id: Mapped[UUID] = mapped_column(ForeignKey("quotes.id"), nullable=False)
    contract_id: Mapped[UUID] = mapped_column(ForeignKey("contracts.id"), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_terms: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    tax_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    balance_due: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    amount_settled: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    line_items: Mapped[list["InvoiceLineItemModel"]] = relationship(
        back_populates="invoice",
        order_by="InvoiceLineItemModel.sort_order",
        lazy="selectin",
    )

    def to_dto(self):
        from crm_modules.invoices.models import Invoice, InvoiceStatus

        return Invoice(
            id=self.id,
            company_id=self.company_id,
            lead_id=self.lead_id,
            quote_id=self.quote_id,
            contract_id=self.contract_id,
            invoice_number=self.invoice_number,
            invoice_date=self.invoice_date,
            due_date=self.due_date,
            status=InvoiceStatus(self.status),
            tax_rate=self.tax_rate,
            subtotal=self.subtotal,
            tax_amount=self.tax_amount,
            total=self.total,
            amount_paid=self.amount_paid,
            balance_due=self.balance_due,
            amount_settled=self.amount_settled,
            line_items=tuple(item.to_dto() for item in self.line_items),
            payment_terms=self.payment_terms,
            notes=self.notes,
            share_token=self.share_token,
            share_link_expires_at=self.share_link_expires_at,
            sent_at=self.sent_at,
            cancelled_at=self.cancelled_at,
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number} status={self.status} total={self.total}>"


class InvoiceLineItemModel(TrackedBase):
    """One invoice line with its provenance (source_type, source_id)."""

    __tablename__ = "invoice_line_items"

    __table_args__ = (
        CheckConstraint(
            "source_type IN ('contract', 'change_order', 'additional')",
            name="ck_invoice_line_items_source_type",
        ),
        CheckConstraint(
            "line_kind IN ('item', 'tax', 'discount')",
            name="ck_invoice_line_items_line_kind",
        ),
        Index("idx_invoice_line_items_invoice_id", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="ea")
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total: Mapped[Decimal] = mapped_column(nullable=False)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_id: Mapped[UUID | None] = mapped_column(nullable=True)
    line_kind: Mapped[str] = mapped_column(String(20), nullable=False, default="item")
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    invoice: Mapped["InvoiceModel"] = relationship(back_populates="line_items")

    def to_dto(self):
        from crm_modules.invoices.models import InvoiceLineItem, LineKind, LineSource

        return InvoiceLineItem(
            id=self.id,
            invoice_id=self.invoice_id,
            description=self.description,
            quantity=self.quantity,
            unit=self.unit,
            unit_price=self.unit_price,
            total=self.total,
            source_type=LineSource(self.source_type),
            line_kind=LineKind(self.line_kind),
            sort_order=self.sort_order,
            source_id=self.source_id,
            category=self.category,
            notes=self.notes,
        )
