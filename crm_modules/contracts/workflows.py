"""
Contract workflow.

Contracts are created active and leave that state exactly once.
"""

from crm_kernel.domain.workflow import Transition, Workflow

CONTRACT_WORKFLOW = Workflow(
    name="contract",
    description="Status lifecycle of a signed contract revision",
    initial_state="active",
    states=("active", "voided", "superseded"),
    transitions=(
        Transition("active", "voided", action="void"),
        Transition("active", "superseded", action="supersede"),
    ),
    terminal_states=("voided", "superseded"),
)
