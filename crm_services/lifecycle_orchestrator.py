"""
crm_services.lifecycle_orchestrator -- builds and wires the lifecycle services.

Responsibility:
    Creates every module service exactly once per session, sharing one
    clock, one document numbering service and one ``CrmLifecycleHooks``,
    with configuration taken from ``LifecycleConfig``.

Non-goals:
    - Does NOT manage transaction boundaries; the caller commits, then
      calls ``after_commit()`` (or ``after_rollback()``).

Usage:
    with session_scope() as session:
        lifecycle = LifecycleOrchestrator(session, config, notifier=notifier)
        lifecycle.signing.sign_company(quote_id, payload, acting_user)
    lifecycle.after_commit()
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from crm_config.schema import LifecycleConfig
from crm_kernel.domain.clock import Clock, SystemClock
from crm_kernel.services.sequence_service import DocumentNumberService, NumberFormat
from crm_modules.change_orders.config import ChangeOrderConfig
from crm_modules.change_orders.service import ChangeOrderService
from crm_modules.commissions.config import CommissionConfig
from crm_modules.commissions.service import CommissionEligibilityEngine
from crm_modules.contracts.service import ContractSnapshotService
from crm_modules.invoices.config import InvoiceConfig
from crm_modules.invoices.service import InvoiceAggregator
from crm_modules.payments.service import PaymentLedger
from crm_modules.quotes.config import QuoteConfig
from crm_modules.quotes.service import QuoteService, QuoteSigningService
from crm_modules.signatures.config import SignatureConfig
from crm_services.document_delivery import DocumentDelivery
from crm_services.lifecycle_hooks import CrmLifecycleHooks
from crm_services.notifications import BestEffortDispatcher, DocumentRenderer


def number_formats(config: LifecycleConfig) -> dict[str, NumberFormat]:
    docs = config.documents
    return {
        DocumentNumberService.INVOICE: NumberFormat(docs.invoice_prefix, docs.number_width),
        DocumentNumberService.CHANGE_ORDER: NumberFormat(docs.change_order_prefix, docs.number_width),
        DocumentNumberService.PAYMENT: NumberFormat(docs.payment_prefix, docs.number_width),
        DocumentNumberService.CONTRACT: NumberFormat(docs.contract_prefix, docs.number_width),
    }


class LifecycleOrchestrator:
    """Central factory for the quote-to-cash services of one session."""

    def __init__(
        self,
        session: Session,
        config: LifecycleConfig | None = None,
        clock: Clock | None = None,
        notifier: BestEffortDispatcher | None = None,
        renderer: DocumentRenderer | None = None,
        commission_config: CommissionConfig | None = None,
    ) -> None:
        self._session = session
        self._config = config or LifecycleConfig()
        self._clock = clock or SystemClock()
        docs = self._config.documents

        signature_config = SignatureConfig(
            max_image_bytes=self._config.signatures.max_image_bytes,
            allowed_media_types=tuple(self._config.signatures.allowed_media_types),
        )
        self.numbering = DocumentNumberService(session, number_formats(self._config))
        self.hooks = CrmLifecycleHooks(session, self._clock, notifier, commission_config)

        self.quotes = QuoteService(session, self._clock)
        self.signing = QuoteSigningService(
            session,
            self._clock,
            hooks=self.hooks,
            config=QuoteConfig(share_link_ttl_days=docs.share_link_ttl_days),
            signature_config=signature_config,
            numbering=self.numbering,
        )
        self.contracts = ContractSnapshotService(session, self._clock, self.numbering)
        self.change_orders = ChangeOrderService(
            session,
            self._clock,
            hooks=self.hooks,
            config=ChangeOrderConfig(share_link_ttl_days=docs.share_link_ttl_days),
            signature_config=signature_config,
            numbering=self.numbering,
        )
        self.invoices = InvoiceAggregator(
            session,
            self._clock,
            hooks=self.hooks,
            config=InvoiceConfig(
                default_payment_terms_days=docs.default_payment_terms_days,
                share_link_ttl_days=docs.share_link_ttl_days,
            ),
            numbering=self.numbering,
        )
        self.payments = PaymentLedger(session, self._clock, hooks=self.hooks, numbering=self.numbering)
        self.commissions = CommissionEligibilityEngine(session, self._clock, commission_config)

        self.delivery = None
        if notifier is not None:
            self.delivery = DocumentDelivery(
                self.quotes,
                self.signing,
                self.change_orders,
                self.invoices,
                notifier=notifier,
                renderer=renderer,
            )

    def after_commit(self) -> int:
        """Send queued notifications and documents; returns how many were accepted."""
        sent = self.hooks.dispatch_pending()
        if self.delivery is not None:
            sent += sum(1 for result in self.delivery.dispatch_pending() if result.dispatched)
        return sent

    def after_rollback(self) -> None:
        self.hooks.discard_pending()
        if self.delivery is not None:
            self.delivery.discard_pending()
