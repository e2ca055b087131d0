"""
Change order workflow.

    pending -> sent -> {approved | rejected}

Approval needs both signatures.  The first signer moves the order to
"awaiting the other party": a customer signature to
pending_company_signature, a company signature to
pending_customer_signature.  The second signature approves it.
"""

from crm_kernel.domain.workflow import Guard, Transition, Workflow
from crm_kernel.logging_config import get_logger

logger = get_logger("modules.change_orders.workflows")


LINK_NOT_EXPIRED = Guard(
    name="link_not_expired",
    description="share_link_expires_at is in the future",
)

_OPEN = ("pending", "sent", "pending_company_signature", "pending_customer_signature")

CHANGE_ORDER_WORKFLOW = Workflow(
    name="change_order",
    description="Dual-signature approval of a change order",
    initial_state="pending",
    states=_OPEN + ("approved", "rejected"),
    transitions=(
        Transition("pending", "sent", action="send"),
        Transition(
            "pending", "pending_company_signature",
            action="sign_customer", guard=LINK_NOT_EXPIRED,
        ),
        Transition(
            "sent", "pending_company_signature",
            action="sign_customer", guard=LINK_NOT_EXPIRED,
        ),
        Transition("pending", "pending_customer_signature", action="sign_company"),
        Transition("sent", "pending_customer_signature", action="sign_company"),
        Transition("pending_company_signature", "approved", action="sign_company", notifies=True),
        Transition(
            "pending_customer_signature", "approved",
            action="sign_customer", guard=LINK_NOT_EXPIRED, notifies=True,
        ),
    )
    + tuple(Transition(state, "rejected", action="reject") for state in _OPEN),
    terminal_states=("approved", "rejected"),
)

# Statuses that still accept edits, sending and deletion.
OPEN_STATUSES = frozenset(_OPEN)

logger.debug(
    "change_order_workflow_registered",
    extra={
        "workflow_name": CHANGE_ORDER_WORKFLOW.name,
        "transition_count": len(CHANGE_ORDER_WORKFLOW.transitions),
    },
)
