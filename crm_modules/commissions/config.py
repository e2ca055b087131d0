"""
Commission configuration.
"""

from dataclasses import dataclass
from typing import Any, Self

from crm_kernel.logging_config import get_logger
from crm_modules.commissions.models import AssignmentPolicy, PaidWhen

logger = get_logger("modules.commissions.config")


@dataclass
class CommissionConfig:
    """
    Commission defaults.

        config = CommissionConfig.from_dict({"default_paid_when": "when_final_paid"})
    """

    default_paid_when: PaidWhen = PaidWhen.WHEN_DEPOSIT_PAID
    default_policy: AssignmentPolicy = AssignmentPolicy.ALLOW_CONCURRENT_ROLE_COMMISSIONS
    # Pending commissions follow the live quote total until they become eligible.
    recalculate_pending: bool = True

    def __post_init__(self) -> None:
        self.default_paid_when = PaidWhen(self.default_paid_when)
        self.default_policy = AssignmentPolicy(self.default_policy)

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(**data)
