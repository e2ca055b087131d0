"""
Quote workflows.

Two state machines: the commercial status of the quote and the
dual-signature progress.  Whichever party signs first moves the quote to
a named intermediate state; the second signature completes it.
"""

from crm_kernel.domain.workflow import Guard, Transition, Workflow
from crm_kernel.logging_config import get_logger

logger = get_logger("modules.quotes.workflows")


BOTH_SIGNED = Guard(
    name="both_signed",
    description="Customer and company representative signatures exist",
)

LINK_NOT_EXPIRED = Guard(
    name="link_not_expired",
    description="share_link_expires_at is in the future",
)


QUOTE_WORKFLOW = Workflow(
    name="quote",
    description="Commercial lifecycle of a quote",
    initial_state="draft",
    states=("draft", "sent", "pending", "accepted", "declined", "expired"),
    transitions=(
        Transition("draft", "sent", action="send"),
        Transition("sent", "pending", action="view"),
        Transition("sent", "accepted", action="accept", guard=BOTH_SIGNED),
        Transition("pending", "accepted", action="accept", guard=BOTH_SIGNED),
        Transition("sent", "declined", action="decline"),
        Transition("pending", "declined", action="decline"),
        Transition("sent", "expired", action="expire"),
        Transition("pending", "expired", action="expire"),
    ),
    terminal_states=("accepted", "declined", "expired"),
)

# Statuses in which a customer may sign through the share link.
CUSTOMER_SIGNABLE_STATUSES = frozenset({"sent", "pending"})

# Statuses in which the company representative may sign.
COMPANY_SIGNABLE_STATUSES = frozenset({"draft", "sent", "pending"})


QUOTE_SIGNING_WORKFLOW = Workflow(
    name="quote_signing",
    description="Dual-signature progress of a quote",
    initial_state="unsigned",
    states=("unsigned", "customer_signed", "company_signed", "fully_signed"),
    transitions=(
        Transition("unsigned", "customer_signed", action="sign_customer", guard=LINK_NOT_EXPIRED),
        Transition("unsigned", "company_signed", action="sign_company"),
        Transition("customer_signed", "fully_signed", action="sign_company", notifies=True),
        Transition(
            "company_signed", "fully_signed",
            action="sign_customer", guard=LINK_NOT_EXPIRED, notifies=True,
        ),
    ),
    terminal_states=("fully_signed",),
)

logger.debug(
    "quote_workflows_registered",
    extra={
        "workflows": [QUOTE_WORKFLOW.name, QUOTE_SIGNING_WORKFLOW.name],
        "transition_count": len(QUOTE_WORKFLOW.transitions)
        + len(QUOTE_SIGNING_WORKFLOW.transitions),
    },
)
