"""
Payment domain models (``crm_modules.payments.models``).

"Recorded" and "cleared" are different facts.  A recorded payment
reduces the invoice balance; only a cleared one counts as settlement.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PaymentMethod(Enum):
    CASH = "cash"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    ACH = "ach"
    WIRE = "wire"
    FINANCING = "financing"
    OTHER = "other"


@dataclass(frozen=True)
class Payment:
    id: UUID
    company_id: UUID
    lead_id: UUID
    invoice_id: UUID
    payment_number: str
    amount: Decimal
    method: PaymentMethod
    payment_date: date
    cleared: bool
    reference_number: str | None = None
    notes: str | None = None
    cleared_at: datetime | None = None
    deleted_at: datetime | None = None
    deletion_reason: str | None = None


@dataclass(frozen=True)
class LeadSettlement:
    """
    Settlement position of a lead: the only notion of "paid" that
    commission eligibility reads.

    Settled means cleared and not deleted.
    """
    lead_id: UUID
    invoice_count: int
    invoiced_total: Decimal
    recorded_total: Decimal
    cleared_total: Decimal
    cleared_payment_count: int
    first_cleared_at: datetime | None = None

    @property
    def has_cleared_payment(self) -> bool:
        return self.cleared_payment_count > 0

    @property
    def fully_settled(self) -> bool:
        return self.invoiced_total > 0 and self.cleared_total >= self.invoiced_total
