"""
crm_services.document_delivery -- the send-email operations.

Responsibility:
    ``send_quote``, ``send_change_order`` and ``send_invoice`` make sure the
    document has a share token (reused while unexpired, otherwise issued
    with the configured expiry) and move it to ``sent`` inside the caller's
    transaction.  The PDF render and the email are queued and only run from
    ``dispatch_pending()``, once the caller has committed.

Invariants enforced:
    - No outbound call happens while the document row is locked or before
      the share token is committed; a rolled-back send emails nothing.
    - The share token and the sent status are kept even when rendering or
      dispatch fails.
    - Render and dispatch failures are logged and reported in the
      ``DeliveryResult``; they never raise.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from crm_kernel.domain.actors import ActingUser
from crm_kernel.exceptions import DownstreamFailure
from crm_kernel.logging_config import LogContext, get_logger
from crm_modules.change_orders.service import ChangeOrderService
from crm_modules.invoices.service import InvoiceAggregator
from crm_modules.quotes.service import QuoteService, QuoteSigningService
from crm_services.notifications import (
    CHANGE_ORDER_EMAIL,
    INVOICE_EMAIL,
    QUOTE_EMAIL,
    BestEffortDispatcher,
    DocumentRenderer,
)

logger = get_logger("services.document_delivery")


@dataclass(frozen=True)
class DeliveryResult:
    document_kind: str
    document_id: UUID
    document_number: str | None
    share_token: str | None
    share_link_expires_at: datetime | None
    rendered: bool
    dispatched: bool
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.dispatched


@dataclass
class PendingDelivery:
    """A sent document waiting for commit; ``result`` is set by ``dispatch_pending``."""
    document_kind: str
    document_id: UUID
    document_number: str | None
    share_token: str | None
    share_link_expires_at: datetime | None
    document_data: dict[str, Any]
    recipient: str | None
    message: str | None
    actor: ActingUser
    result: DeliveryResult | None = None

    def outcome(
        self, rendered: bool, dispatched: bool, error: str | None = None
    ) -> DeliveryResult:
        return DeliveryResult(
            document_kind=self.document_kind,
            document_id=self.document_id,
            document_number=self.document_number,
            share_token=self.share_token,
            share_link_expires_at=self.share_link_expires_at,
            rendered=rendered,
            dispatched=dispatched,
            error=error,
        )


class DocumentDelivery:
    """
    Sends quotes, change orders and invoices to the customer.

    Usage:
        delivery = DocumentDelivery(quotes, signing, change_orders, invoices,
                                    notifier=notifier, renderer=renderer)
        pending = delivery.send_invoice(invoice_id, acting_user, "jane@example.com")
        session.commit()
        delivery.dispatch_pending()
        pending.result.delivered
    """

    def __init__(
        self,
        quotes: QuoteService,
        quote_signing: QuoteSigningService,
        change_orders: ChangeOrderService,
        invoices: InvoiceAggregator,
        notifier: BestEffortDispatcher,
        renderer: DocumentRenderer | None = None,
    ):
        self._quotes = quotes
        self._quote_signing = quote_signing
        self._change_orders = change_orders
        self._invoices = invoices
        self._notifier = notifier
        self._renderer = renderer
        self._pending: list[PendingDelivery] = []

    @property
    def pending(self) -> tuple[PendingDelivery, ...]:
        return tuple(self._pending)

    # =========================================================================
    # In-transaction part
    # =========================================================================

    def send_quote(
        self, quote_id: UUID, actor: ActingUser, recipient: str | None, message: str | None = None
    ) -> PendingDelivery:
        with LogContext.bind(company_id=actor.company_id, actor_id=actor.user_id, document_id=quote_id):
            link = self._quote_signing.generate_share_link(quote_id, actor)
            quote = self._quotes.mark_sent(quote_id, actor.user_id, actor.company_id)
            return self._queue(
                QUOTE_EMAIL,
                quote.id,
                quote.title,
                link.token,
                link.expires_at,
                asdict(quote),
                recipient,
                message,
                actor,
            )

    def send_change_order(
        self, change_order_id: UUID, actor: ActingUser, recipient: str | None, message: str | None = None
    ) -> PendingDelivery:
        with LogContext.bind(
            company_id=actor.company_id, actor_id=actor.user_id, document_id=change_order_id
        ):
            co = self._change_orders.mark_sent(change_order_id, actor)
            return self._queue(
                CHANGE_ORDER_EMAIL,
                co.id,
                co.change_order_number,
                co.share_token,
                co.share_link_expires_at,
                asdict(co),
                recipient,
                message,
                actor,
            )

    def send_invoice(
        self, invoice_id: UUID, actor: ActingUser, recipient: str | None, message: str | None = None
    ) -> PendingDelivery:
        with LogContext.bind(company_id=actor.company_id, actor_id=actor.user_id, document_id=invoice_id):
            invoice = self._invoices.mark_sent(invoice_id, actor)
            return self._queue(
                INVOICE_EMAIL,
                invoice.id,
                invoice.invoice_number,
                invoice.share_token,
                invoice.share_link_expires_at,
                asdict(invoice),
                recipient,
                message,
                actor,
            )

    def _queue(
        self,
        kind: str,
        document_id: UUID,
        number: str | None,
        token: str | None,
        expires_at: datetime | None,
        document_data: dict[str, Any],
        recipient: str | None,
        message: str | None,
        actor: ActingUser,
    ) -> PendingDelivery:
        pending = PendingDelivery(
            document_kind=kind,
            document_id=document_id,
            document_number=number,
            share_token=token,
            share_link_expires_at=expires_at,
            document_data=document_data,
            recipient=recipient,
            message=message,
            actor=actor,
        )
        self._pending.append(pending)
        logger.info(
            "document_delivery_queued",
            extra={"document_kind": kind, "document_number": number},
        )
        return pending

    # =========================================================================
    # After commit
    # =========================================================================

    def dispatch_pending(self) -> list[DeliveryResult]:
        """Render and send every queued document; call only after commit."""
        pending, self._pending = self._pending, []
        results = []
        for item in pending:
            with LogContext.bind(
                company_id=item.actor.company_id,
                actor_id=item.actor.user_id,
                document_id=item.document_id,
            ):
                item.result = self._deliver(item)
            results.append(item.result)
        return results

    def discard_pending(self) -> None:
        if self._pending:
            logger.info("document_deliveries_discarded", extra={"count": len(self._pending)})
        self._pending = []

    def _deliver(self, item: PendingDelivery) -> DeliveryResult:
        kind = item.document_kind
        pdf: bytes | None = None
        if self._renderer is not None:
            try:
                pdf = self._notifier.render(self._renderer, item.document_data)
            except DownstreamFailure as exc:
                logger.warning(
                    "document_render_failed",
                    extra={"document_kind": kind, "error": exc.code, "reason": str(exc)},
                )
                return item.outcome(rendered=False, dispatched=False, error=str(exc))

        expires_at = item.share_link_expires_at
        dispatched = self._notifier.dispatch(
            kind,
            item.recipient,
            {
                "document_id": str(item.document_id),
                "document_number": item.document_number,
                "share_token": item.share_token,
                "share_link_expires_at": expires_at.isoformat() if expires_at else None,
                "message": item.message,
                "pdf": pdf,
            },
        )
        logger.info(
            "document_delivery_finished",
            extra={
                "document_kind": kind,
                "document_number": item.document_number,
                "dispatched": dispatched,
            },
        )
        return item.outcome(
            rendered=pdf is not None,
            dispatched=dispatched,
            error=None if dispatched else "notification dispatch failed",
        )
