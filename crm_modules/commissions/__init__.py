"""
Commissions -- per-role sales commissions and their eligibility.

CommissionEligibilityEngine lives in ``crm_modules.commissions.service``.
"""

from crm_modules.commissions.config import CommissionConfig
from crm_modules.commissions.models import (
    AssignmentPolicy,
    Commission,
    CommissionRole,
    CommissionStatus,
    CommissionSummary,
    CommissionType,
    PaidWhen,
)
from crm_modules.commissions.workflows import COMMISSION_WORKFLOW

__all__ = [
    "AssignmentPolicy",
    "COMMISSION_WORKFLOW",
    "Commission",
    "CommissionConfig",
    "CommissionRole",
    "CommissionStatus",
    "CommissionSummary",
    "CommissionType",
    "PaidWhen",
]
