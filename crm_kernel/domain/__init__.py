"""Pure domain primitives: clock, workflows, lifecycle hook interface."""

from crm_kernel.domain.actors import PUBLIC_ACTOR_ID, ActingUser
from crm_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from crm_kernel.domain.hooks import LifecycleHooks
from crm_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "ActingUser",
    "PUBLIC_ACTOR_ID",
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "LifecycleHooks",
    "Guard",
    "Transition",
    "Workflow",
]
