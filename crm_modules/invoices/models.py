"""
Invoice domain models (``crm_modules.invoices.models``).

An invoice is assembled from three sources, never edited line by line:
the contract, approved change orders, and caller-supplied additional
items.  Every line records where it came from.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class InvoiceStatus(Enum):
    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class LineSource(Enum):
    CONTRACT = "contract"
    CHANGE_ORDER = "change_order"
    ADDITIONAL = "additional"


class LineKind(Enum):
    ITEM = "item"
    TAX = "tax"
    DISCOUNT = "discount"


@dataclass(frozen=True)
class AdditionalItem:
    """An ad hoc line supplied by the caller.  Blank descriptions are dropped."""
    description: str
    quantity: Decimal | int | str = Decimal("1")
    unit_price: Decimal | int | str = Decimal("0")
    unit: str = "ea"
    category: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class InvoiceLineItem:
    id: UUID
    invoice_id: UUID
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    total: Decimal
    source_type: LineSource
    line_kind: LineKind
    sort_order: int
    source_id: UUID | None = None
    category: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Invoice:
    id: UUID
    company_id: UUID
    lead_id: UUID
    quote_id: UUID
    contract_id: UUID
    invoice_number: str
    invoice_date: date
    due_date: date
    status: InvoiceStatus
    tax_rate: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    amount_settled: Decimal
    line_items: tuple[InvoiceLineItem, ...] = field(default_factory=tuple)
    payment_terms: str | None = None
    notes: str | None = None
    share_token: str | None = None
    share_link_expires_at: datetime | None = None
    sent_at: datetime | None = None
    cancelled_at: datetime | None = None

    def lines_from(self, source: LineSource) -> tuple[InvoiceLineItem, ...]:
        return tuple(item for item in self.line_items if item.source_type is source)
