"""
LifecycleHooks -- explicit application-layer reactions to lifecycle events.

Module services call these synchronously, right after the state change
they describe has been flushed, inside the caller's transaction:

    QuoteSigningService.sign_*        -> on_contract_signed
    ChangeOrderService.sign           -> on_change_order_approved
    InvoiceAggregator.create_invoice  -> on_invoice_created
    PaymentLedger.record_payment      -> on_payment_recorded
    PaymentLedger.mark_cleared        -> on_payment_cleared

The base class does nothing, so a service built without hooks behaves
as a pure document operation.  ``crm_services.lifecycle_hooks`` provides
the production implementation (commission re-evaluation plus
best-effort notifications).
"""

from uuid import UUID


class LifecycleHooks:
    """No-op hooks. Override the events you care about."""

    def on_contract_signed(
        self,
        *,
        company_id: UUID,
        lead_id: UUID,
        quote_id: UUID,
        contract_id: UUID,
    ) -> None:
        pass

    def on_change_order_approved(
        self,
        *,
        company_id: UUID,
        lead_id: UUID,
        quote_id: UUID,
        change_order_id: UUID,
        contract_id: UUID | None,
    ) -> None:
        pass

    def on_invoice_created(
        self,
        *,
        company_id: UUID,
        lead_id: UUID,
        invoice_id: UUID,
    ) -> None:
        pass

    def on_payment_recorded(
        self,
        *,
        company_id: UUID,
        lead_id: UUID,
        invoice_id: UUID,
        payment_id: UUID,
    ) -> None:
        pass

    def on_payment_cleared(
        self,
        *,
        company_id: UUID,
        lead_id: UUID,
        invoice_id: UUID,
        payment_id: UUID,
    ) -> None:
        pass
