"""
Commission workflow.

Eligibility only moves forward: a commission that became eligible stays
eligible even if the payment that triggered it is later withdrawn.
Payout (eligible -> paid) is an explicit action.
"""

from crm_kernel.domain.workflow import Guard, Transition, Workflow
from crm_kernel.logging_config import get_logger

logger = get_logger("modules.commissions.workflows")


PAID_WHEN_SATISFIED = Guard(
    name="paid_when_satisfied",
    description="The commission's paid_when event has occurred for the lead",
)

COMMISSION_WORKFLOW = Workflow(
    name="commission",
    description="Commission eligibility and payout",
    initial_state="pending",
    states=("pending", "eligible", "paid", "cancelled"),
    transitions=(
        Transition("pending", "eligible", action="evaluate", guard=PAID_WHEN_SATISFIED),
        Transition("eligible", "paid", action="pay"),
        Transition("pending", "cancelled", action="cancel"),
        Transition("eligible", "cancelled", action="cancel"),
    ),
    terminal_states=("paid", "cancelled"),
)

LIVE_STATUSES = frozenset({"pending", "eligible"})

logger.debug(
    "commission_workflow_registered",
    extra={
        "workflow_name": COMMISSION_WORKFLOW.name,
        "transition_count": len(COMMISSION_WORKFLOW.transitions),
    },
)
