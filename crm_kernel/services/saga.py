"""
Saga -- forward steps paired with compensating actions.

Responsibility:
    Some writes cannot be made atomic with the steps that follow them
    (an invoice row that must not survive without its line items).  Each
    completed forward step registers a compensation; if a later step
    fails, compensations run in reverse order of the forward steps and
    the original exception propagates.

Invariants enforced:
    - Compensations run at most once, newest first.
    - A failing compensation is logged and does not stop the remaining
      compensations; the original error is what the caller sees.

Usage:
    with Saga("create_invoice") as saga:
        invoice = insert_invoice()
        saga.record("insert_invoice", lambda: delete_invoice(invoice))
        insert_line_items(invoice)
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from crm_kernel.logging_config import get_logger

logger = get_logger("services.saga")


@dataclass(frozen=True)
class SagaStep:
    name: str
    compensate: Callable[[], Any]


class Saga:

    def __init__(self, name: str):
        self.name = name
        self._steps: list[SagaStep] = []
        self._compensated = False

    @property
    def steps(self) -> tuple[str, ...]:
        return tuple(step.name for step in self._steps)

    def record(self, step_name: str, compensate: Callable[[], Any]) -> None:
        """Register the compensation for a forward step that just succeeded."""
        self._steps.append(SagaStep(step_name, compensate))

    def compensate(self) -> list[str]:
        """Run compensations newest first; return the names that failed."""
        if self._compensated:
            return []
        self._compensated = True
        failed: list[str] = []
        for step in reversed(self._steps):
            try:
                step.compensate()
            except Exception:
                logger.exception(
                    "saga_compensation_failed",
                    extra={"saga": self.name, "step": step.name},
                )
                failed.append(step.name)
            else:
                logger.info(
                    "saga_step_compensated",
                    extra={"saga": self.name, "step": step.name},
                )
        return failed

    def __enter__(self) -> "Saga":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None:
            logger.warning(
                "saga_failed",
                extra={
                    "saga": self.name,
                    "completed_steps": list(self.steps),
                    "error_type": type(exc).__name__,
                },
            )
            self.compensate()
        return False
