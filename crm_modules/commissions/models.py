"""
Commission domain models (``crm_modules.commissions.models``).

One commission per (lead, assigned role).  Several roles may hold live
commissions on the same lead at once.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class CommissionRole(Enum):
    SALES_REP = "sales_rep"
    MARKETING_REP = "marketing_rep"
    SALES_MANAGER = "sales_manager"
    PRODUCTION_MANAGER = "production_manager"


class CommissionType(Enum):
    PERCENTAGE = "percentage"
    FLAT_AMOUNT = "flat_amount"
    CUSTOM = "custom"


class CommissionStatus(Enum):
    PENDING = "pending"
    ELIGIBLE = "eligible"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaidWhen(Enum):
    """The financial event that makes a commission eligible."""
    WHEN_CONTRACT_SIGNED = "when_contract_signed"
    WHEN_DEPOSIT_PAID = "when_deposit_paid"
    WHEN_INVOICED = "when_invoiced"
    WHEN_FINAL_PAID = "when_final_paid"


class AssignmentPolicy(Enum):
    """What assigning a role does to the lead's other live commissions."""
    ALLOW_CONCURRENT_ROLE_COMMISSIONS = "allow_concurrent_role_commissions"
    EXCLUSIVE_ASSIGNMENT = "exclusive_assignment"


@dataclass(frozen=True)
class Commission:
    id: UUID
    company_id: UUID
    lead_id: UUID
    user_id: UUID
    role: CommissionRole
    commission_type: CommissionType
    rate_or_amount: Decimal
    base_amount: Decimal
    calculated_amount: Decimal
    paid_when: PaidWhen
    status: CommissionStatus
    quote_id: UUID | None = None
    eligible_at: datetime | None = None
    paid_amount: Decimal | None = None
    paid_at: datetime | None = None
    payment_reference: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None


@dataclass(frozen=True)
class CommissionSummary:
    """Per-user totals.  ``total_owed`` is eligible but not yet paid."""
    user_id: UUID
    total_owed: Decimal
    total_paid: Decimal
    total_pending: Decimal
    count_eligible: int
    count_paid: int
    count_pending: int
