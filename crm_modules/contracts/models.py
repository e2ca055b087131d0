"""
Contract domain models (``crm_modules.contracts.models``).

A contract is an immutable snapshot of a fully signed quote.  Change
orders do not mutate it; they produce a new revision that supersedes the
previous one.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class ContractStatus(Enum):
    ACTIVE = "active"
    VOIDED = "voided"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class ContractLineItem:
    id: UUID
    contract_id: UUID
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    line_total: Decimal
    sort_order: int
    category: str | None = None
    source_change_order_id: UUID | None = None

    @property
    def is_base_item(self) -> bool:
        """True for items frozen from the quote, False for change-order items."""
        return self.source_change_order_id is None


@dataclass(frozen=True)
class ContractParty:
    """One side's signature as copied into the contract."""
    signed_by: str
    signed_at: datetime
    signature_data: str
    ip_address: str | None = None


@dataclass(frozen=True)
class Contract:
    id: UUID
    company_id: UUID
    lead_id: UUID
    quote_id: UUID
    contract_number: str
    revision: int
    status: ContractStatus
    original_subtotal: Decimal
    original_discount: Decimal
    original_tax: Decimal
    original_total: Decimal
    tax_rate: Decimal
    snapshot_hash: str
    customer: ContractParty
    company: ContractParty
    line_items: tuple[ContractLineItem, ...] = field(default_factory=tuple)
    change_order_id: UUID | None = None
    supersedes_contract_id: UUID | None = None
    created_at: datetime | None = None
    voided_at: datetime | None = None
    void_reason: str | None = None
    superseded_at: datetime | None = None

    @property
    def base_line_items(self) -> tuple[ContractLineItem, ...]:
        return tuple(item for item in self.line_items if item.is_base_item)


@dataclass(frozen=True)
class ContractCreation:
    """Result of an at-most-once contract write.

    ``created`` is False when the contract already existed and the call
    was a no-op.
    """
    contract: Contract
    created: bool


@dataclass(frozen=True)
class LineItemRef:
    description: str
    quantity: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class ContractComparison:
    """Current quote versus its active contract."""
    contract_id: UUID
    has_changes: bool
    total_change: Decimal
    added_items: tuple[LineItemRef, ...] = ()
    removed_items: tuple[LineItemRef, ...] = ()
    modified_items: tuple[tuple[LineItemRef, LineItemRef], ...] = ()


@dataclass(frozen=True)
class RevisionLineItem:
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    line_total: Decimal
    category: str | None = None


@dataclass(frozen=True)
class RevisionSource:
    """The approved change order a new contract revision is built from."""
    change_order_id: UUID
    change_order_number: str
    title: str
    amount: Decimal
    tax_amount: Decimal
    total: Decimal
    line_items: tuple[RevisionLineItem, ...]
    customer: ContractParty
    company: ContractParty
