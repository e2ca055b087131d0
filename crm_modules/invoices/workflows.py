"""
Invoice workflow.

    draft -> sent -> partial -> paid
    sent/partial -> overdue
    draft/sent/overdue -> cancelled

Payment-driven moves share the ``apply_payments`` action.  The target
is derived by ``payment_status`` from the reconciled amounts, and
``PaymentLedger.reconcile_invoice`` checks it against the declared
transitions.  Removing payments can move partial or paid back to sent
or overdue.
"""

from datetime import date
from decimal import Decimal

from crm_kernel.domain.workflow import Guard, Transition, Workflow
from crm_kernel.logging_config import get_logger

logger = get_logger("modules.invoices.workflows")


NO_LIVE_PAYMENTS = Guard(
    name="no_live_payments",
    description="No non-deleted payment is recorded against the invoice",
)

INVOICE_WORKFLOW = Workflow(
    name="invoice",
    description="Billing lifecycle of a customer invoice",
    initial_state="draft",
    states=("draft", "sent", "partial", "paid", "overdue", "cancelled"),
    transitions=(
        Transition("draft", "sent", action="send"),
        *(
            Transition(source, target, action="apply_payments")
            for source, target in (
                ("draft", "partial"),
                ("draft", "paid"),
                ("sent", "partial"),
                ("sent", "paid"),
                ("partial", "paid"),
                ("partial", "sent"),
                ("partial", "overdue"),
                ("paid", "partial"),
                ("paid", "sent"),
                ("paid", "overdue"),
                ("overdue", "partial"),
                ("overdue", "paid"),
            )
        ),
        Transition("sent", "overdue", action="mark_overdue"),
        Transition("partial", "overdue", action="mark_overdue"),
        Transition("draft", "cancelled", action="cancel", guard=NO_LIVE_PAYMENTS),
        Transition("sent", "cancelled", action="cancel", guard=NO_LIVE_PAYMENTS),
        Transition("overdue", "cancelled", action="cancel", guard=NO_LIVE_PAYMENTS),
    ),
    terminal_states=("cancelled",),
)

# Statuses against which payments may be recorded.
PAYABLE_STATUSES = frozenset({"draft", "sent", "partial", "paid", "overdue"})


def payment_status(
    current: str,
    total: Decimal,
    amount_paid: Decimal,
    due_date: date | None,
    today: date,
) -> str:
    """Status implied by the recorded payments.

    Draft invoices with no payments stay draft; an invoice whose payments
    were all removed falls back to sent, or overdue once past due.
    """
    if current == "cancelled":
        return current
    if amount_paid > 0 and amount_paid >= total:
        return "paid"
    if amount_paid > 0:
        return "partial"
    if current in ("partial", "paid"):
        if due_date is not None and due_date < today:
            return "overdue"
        return "sent"
    return current


logger.debug(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "transition_count": len(INVOICE_WORKFLOW.transitions),
    },
)
