"""
Canonical workflow types (``crm_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines.  Quotes, contracts,
change orders, invoices and commissions each declare their lifecycle as
a ``Workflow`` in their module's ``workflows.py``; services ask the
workflow for the next state instead of branching on status strings.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass

from crm_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Guard:
    """A condition that must hold before a transition fires.

    Descriptive only; the owning service evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition.

    ``notifies=True`` marks transitions that dispatch a best-effort
    notification once committed.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    notifies: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} "
                    f"{t.from_state}->{t.to_state} references an unknown state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} has "
                    f"an outgoing transition"
                )

    def transition_for(
        self, from_state: str, action: str, to_state: str | None = None
    ) -> Transition | None:
        """First transition for (state, action), narrowed to ``to_state`` when given."""
        for t in self.transitions:
            if t.from_state != from_state or t.action != action:
                continue
            if to_state is None or t.to_state == to_state:
                return t
        return None

    def allowed_actions(self, from_state: str) -> frozenset[str]:
        return frozenset(
            t.action for t in self.transitions if t.from_state == from_state
        )

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states

    def require(
        self,
        from_state: str,
        action: str,
        *,
        entity_type: str,
        entity_id: object,
        to_state: str | None = None,
    ) -> Transition:
        """Return the transition for (state, action) or raise InvalidTransitionError.

        Actions with several possible outcomes (payment reconciliation)
        pass the ``to_state`` they derived.
        """
        transition = self.transition_for(from_state, action, to_state)
        if transition is None:
            raise InvalidTransitionError(
                entity_type=entity_type,
                entity_id=entity_id,
                current_state=from_state,
                action=action if to_state is None else f"{action} to {to_state}",
            )
        return transition
