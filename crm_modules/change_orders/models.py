"""
Change order domain models (``crm_modules.change_orders.models``).

A change order is a signed amendment to a quote.  Its amount reaches the
quote's live totals only once both parties have signed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from crm_modules.signatures.models import Signature


class ChangeOrderStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    PENDING_COMPANY_SIGNATURE = "pending_company_signature"
    PENDING_CUSTOMER_SIGNATURE = "pending_customer_signature"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ChangeOrderLineItem:
    id: UUID
    change_order_id: UUID
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    line_total: Decimal
    sort_order: int
    category: str | None = None


@dataclass(frozen=True)
class ChangeOrder:
    id: UUID
    company_id: UUID
    lead_id: UUID
    quote_id: UUID
    change_order_number: str
    title: str
    status: ChangeOrderStatus
    amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    line_items: tuple[ChangeOrderLineItem, ...] = field(default_factory=tuple)
    description: str | None = None
    share_token: str | None = None
    share_link_expires_at: datetime | None = None
    sent_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by_id: UUID | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None

    @property
    def is_approved(self) -> bool:
        return self.status is ChangeOrderStatus.APPROVED


@dataclass(frozen=True)
class ChangeOrderSigningResult:
    """Outcome of a change-order signature.

    ``contract_id`` is the revision created on approval, or None when the
    quote had no active contract.
    """
    change_order: ChangeOrder
    signature: Signature
    contract_id: UUID | None = None
    contract_revision_created: bool = False

    @property
    def approved(self) -> bool:
        return self.change_order.is_approved
