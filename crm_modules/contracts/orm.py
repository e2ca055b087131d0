"""
Contract ORM models (``crm_modules.contracts.orm``).

Concurrency guarantees live in the schema:

* ``uq_contracts_quote_revision`` -- revision 1 of a quote can be written
  once, so two signers completing at the same moment cannot both create
  a contract.
* ``uq_contracts_active_per_quote`` -- partial unique index: at most one
  active contract per quote.
* ``uq_contracts_change_order`` -- a change order yields at most one
  revision.
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
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_kernel.db.base import TrackedBase


class ContractModel(TrackedBase):
    """
    ORM model for signed contracts.

    Guarantees:
        - Snapshot columns never change after insert (db/immutability.py).
        - status moves active -> voided or active -> superseded only.
    """

    __tablename__ = "contracts"

    __table_args__ = (
        UniqueConstraint("quote_id", "revision", name="uq_contracts_quote_revision"),
        UniqueConstraint("company_id", "contract_number", name="uq_contracts_number"),
        UniqueConstraint("change_order_id", name="uq_contracts_change_order"),
        CheckConstraint(
            "status IN ('active', 'voided', 'superseded')",
            name="ck_contracts_status",
        ),
        Index(
            "uq_contracts_active_per_quote",
            "quote_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_contracts_lead_id", "lead_id"),
    )

    company_id: Mapped[UUID] = mapped_column(nullable=False)
    lead_id: Mapped[UUID] = mapped_column(nullable=False)
    quote_id: Mapped[UUID] = mapped_column(ForeignKey("quotes.id"), nullable=False)
    contract_number: Mapped[str] = mapped_column(String(50), nullable=False)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    original_subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    original_discount: Mapped[Decimal] = mapped_column(nullable=False)
    original_tax: Mapped[Decimal] = mapped_column(nullable=False)
    original_total: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(nullable=False)

    quote_snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    snapshot_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    customer_signed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_signed_at: Mapped[datetime] = mapped_column(nullable=False)
    customer_signature_data: Mapped[str] = mapped_column(Text, nullable=False)
    customer_ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    company_signed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    company_signed_at: Mapped[datetime] = mapped_column(nullable=False)
    company_signature_data: Mapped[str] = mapped_column(Text, nullable=False)
    company_ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    change_order_id: Mapped[UUID | None] = mapped_column(nullable=True)
    supersedes_contract_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("contracts.id"), nullable=True
    )

    voided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    voided_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    superseded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    line_items: Mapped[list["ContractLineItemModel"]] = relationship(
        back_populates="contract",
        order_by="ContractLineItemModel.sort_order",
        lazy="selectin",
    )

    def to_dto(self):
        from crm_modules.contracts.models import Contract, ContractParty, ContractStatus

        return Contract(
            id=self.id,
            company_id=self.company_id,
            lead_id=self.lead_id,
            quote_id=self.quote_id,
            contract_number=self.contract_number,
            revision=self.revision,
            status=ContractStatus(self.status),
            original_subtotal=self.original_subtotal,
            original_discount=self.original_discount,
            original_tax=self.original_tax,
            original_total=self.original_total,
            tax_rate=self.tax_rate,
            snapshot_hash=self.snapshot_hash,
            customer=ContractParty(
                signed_by=self.customer_signed_by,
                signed_at=self.customer_signed_at,
                signature_data=self.customer_signature_data,
                ip_address=self.customer_ip_address,
            ),
            company=ContractParty(
                signed_by=self.company_signed_by,
                signed_at=self.company_signed_at,
                signature_data=self.company_signature_data,
                ip_address=self.company_ip_address,
            ),
            line_items=tuple(item.to_dto() for item in self.line_items),
            change_order_id=self.change_order_id,
            supersedes_contract_id=self.supersedes_contract_id,
            created_at=self.created_at,
            voided_at=self.voided_at,
            void_reason=self.void_reason,
            superseded_at=self.superseded_at,
        )

    def __repr__(self) -> str:
        return (
            f"<ContractModel {self.contract_number} rev={self.revision} "
            f"status={self.status} total={self.original_total}>"
        )


class ContractLineItemModel(TrackedBase):
    """Frozen copy of a quote or change-order line item."""

    __tablename__ = "contract_line_items"

    __table_args__ = (Index("idx_contract_line_items_contract_id", "contract_id"),)

    contract_id: Mapped[UUID] = mapped_column(ForeignKey("contracts.id"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="ea")
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source_change_order_id: Mapped[UUID | None] = mapped_column(nullable=True)

    contract: Mapped["ContractModel"] = relationship(back_populates="line_items")

    def to_dto(self):
        from crm_modules.contracts.models import ContractLineItem

        return ContractLineItem(
            id=self.id,
            contract_id=self.contract_id,
            description=self.description,
            quantity=self.quantity,
            unit=self.unit,
            unit_price=self.unit_price,
            line_total=self.line_total,
            sort_order=self.sort_order,
            category=self.category,
            source_change_order_id=self.source_change_order_id,
        )
