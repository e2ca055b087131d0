"""
crm_services.lifecycle_hooks -- the production LifecycleHooks.

Responsibility:
    Module services call a ``LifecycleHooks`` right after each state change
    (see ``crm_kernel.domain.hooks``).  This implementation:

    - re-evaluates every live commission on the affected lead, inside the
      caller's transaction, so eligibility commits with the event;
    - queues "executed contract" / "executed change order" notifications,
      which are sent by ``dispatch_pending()`` once the caller committed.

Invariants enforced:
    - Commission evaluation failures propagate; the event and its
      commission effects commit together or not at all.
    - Notifications are best-effort and never sent for a rolled-back
      transaction when the caller uses ``discard_pending()`` on rollback.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from crm_kernel.domain.clock import Clock, SystemClock
from crm_kernel.domain.hooks import LifecycleHooks
from crm_kernel.logging_config import get_logger
from crm_modules.change_orders.orm import ChangeOrderModel
from crm_modules.commissions.config import CommissionConfig
from crm_modules.commissions.service import CommissionEligibilityEngine
from crm_modules.contracts.orm import ContractModel
from crm_modules.signatures.models import DocumentType, SignatureRole
from crm_modules.signatures.store import SignatureStore
from crm_services.notifications import (
    EXECUTED_CHANGE_ORDER,
    EXECUTED_CONTRACT,
    BestEffortDispatcher,
)

logger = get_logger("services.lifecycle_hooks")


@dataclass(frozen=True)
class PendingNotification:
    document_kind: str
    recipient: str | None
    payload: dict[str, Any] = field(default_factory=dict)


class CrmLifecycleHooks(LifecycleHooks):
    """
    Commission re-evaluation plus queued best-effort notifications.

    Usage:
        hooks = CrmLifecycleHooks(session, clock, notifier=notifier)
        with session_scope() as session:
            ...  # services built with hooks=hooks
        hooks.dispatch_pending()
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        notifier: BestEffortDispatcher | None = None,
        commission_config: CommissionConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._notifier = notifier
        self._commissions = CommissionEligibilityEngine(session, self._clock, commission_config)
        self._signatures = SignatureStore(session, self._clock)
        self._pending: list[PendingNotification] = []

    @property
    def pending(self) -> tuple[PendingNotification, ...]:
        return tuple(self._pending)

    # =========================================================================
    # Events
    # =========================================================================

    def on_contract_signed(
        self,
        *,
        company_id: UUID,
        lead_id: UUID,
        quote_id: UUID,
        contract_id: UUID,
    ) -> None:
        self._reevaluate("contract_signed", lead_id)
        contract = self._session.get(ContractModel, contract_id)
        self._queue(
            EXECUTED_CONTRACT,
            self._customer_email(DocumentType.QUOTE, quote_id),
            {
                "company_id": str(company_id),
                "quote_id": str(quote_id),
                "contract_id": str(contract_id),
                "contract_number": contract.contract_number if contract else None,
                "total": str(contract.original_total) if contract else None,
            },
        )

    def on_change_order_approved(
        self,
        *,
        company_id: UUID,
        lead_id: UUID,
        quote_id: UUID,
        change_order_id: UUID,
        contract_id: UUID | None,
    ) -> None:
        self._reevaluate("change_order_approved", lead_id)
        co = self._session.get(ChangeOrderModel, change_order_id)
        self._queue(
            EXECUTED_CHANGE_ORDER,
            self._customer_email(DocumentType.CHANGE_ORDER, change_order_id),
            {
                "company_id": str(company_id),
                "quote_id": str(quote_id),
                "change_order_id": str(change_order_id),
                "change_order_number": co.change_order_number if co else None,
                "total": str(co.total) if co else None,
                "contract_id": str(contract_id) if contract_id else None,
            },
        )

    def on_invoice_created(self, *, company_id: UUID, lead_id: UUID, invoice_id: UUID) -> None:
        self._reevaluate("invoice_created", lead_id)

    def on_payment_cleared(
        self,
        *,
        company_id: UUID,
        lead_id: UUID,
        invoice_id: UUID,
        payment_id: UUID,
    ) -> None:
        self._reevaluate("payment_cleared", lead_id)

    # =========================================================================
    # Internals
    # =========================================================================

    def _reevaluate(self, event: str, lead_id: UUID) -> None:
        commissions = self._commissions.evaluate_lead(lead_id)
        logger.info(
            "commissions_reevaluated",
            extra={
                "event": event,
                "lead_id": str(lead_id),
                "live_count": len(commissions),
                "eligible_count": sum(1 for c in commissions if c.status.value == "eligible"),
            },
        )

    def _customer_email(self, document_type: DocumentType, document_id: UUID) -> str | None:
        signature = self._signatures.signatures_for(document_type, document_id).get(
            SignatureRole.CUSTOMER
        )
        return signature.signer_email if signature else None

    def _queue(self, kind: str, recipient: str | None, payload: dict[str, Any]) -> None:
        self._pending.append(PendingNotification(kind, recipient, payload))

    def dispatch_pending(self) -> int:
        """Send queued notifications after commit; returns how many were accepted."""
        pending, self._pending = self._pending, []
        if self._notifier is None:
            return 0
        return sum(
            1 for n in pending if self._notifier.dispatch(n.document_kind, n.recipient, n.payload)
        )

    def discard_pending(self) -> None:
        if self._pending:
            logger.info("notifications_discarded", extra={"count": len(self._pending)})
        self._pending = []
