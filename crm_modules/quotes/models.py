"""
Quote domain models (``crm_modules.quotes.models``).

Frozen value objects returned by the quote services.  All money fields
are ``Decimal``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from crm_modules.signatures.models import Signature


class QuoteStatus(Enum):
    DRAFT = "draft"
    SENT = "sent"
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class SigningState(Enum):
    """Dual-signature progress. Moves forward only."""
    UNSIGNED = "unsigned"
    CUSTOMER_SIGNED = "customer_signed"
    COMPANY_SIGNED = "company_signed"
    FULLY_SIGNED = "fully_signed"


@dataclass(frozen=True)
class LineItemInput:
    """A line item as submitted by the sales user."""
    description: str
    quantity: Decimal
    unit_price: Decimal
    unit: str = "ea"
    category: str | None = None


@dataclass(frozen=True)
class QuoteLineItem:
    id: UUID
    quote_id: UUID
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    line_total: Decimal
    sort_order: int
    category: str | None = None


@dataclass(frozen=True)
class QuoteTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class Quote:
    id: UUID
    company_id: UUID
    lead_id: UUID
    title: str
    status: QuoteStatus
    signing_state: SigningState
    is_locked: bool
    tax_rate: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    line_items: tuple[QuoteLineItem, ...] = field(default_factory=tuple)
    share_token: str | None = None
    share_link_expires_at: datetime | None = None
    sent_at: datetime | None = None
    accepted_at: datetime | None = None
    declined_at: datetime | None = None
    notes: str | None = None


@dataclass(frozen=True)
class SigningResult:
    """Outcome of a signature submission.

    ``contract_id`` is set once the quote is fully signed;
    ``contract_created`` is False when the contract already existed.
    """
    quote: Quote
    signature: Signature
    contract_id: UUID | None = None
    contract_created: bool = False

    @property
    def fully_signed(self) -> bool:
        return self.quote.signing_state is SigningState.FULLY_SIGNED
