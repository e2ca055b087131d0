"""Invoice assembly and delivery routes."""

from uuid import UUID

from fastapi import APIRouter, Depends

from crm_api.dependencies import LifecycleRunner, get_acting_user, get_runner
from crm_api.encoding import encode
from crm_api.schemas import InvoiceCreateIn, SendEmailIn
from crm_kernel.domain.actors import ActingUser

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post("/create")
def create_invoice(
    body: InvoiceCreateIn,
    actor: ActingUser = Depends(get_acting_user),
    run: LifecycleRunner = Depends(get_runner),
):
    """Assemble an invoice from the contract, approved change orders and extra items."""
    invoice = run(
        lambda lc: lc.invoices.create_invoice(
            actor,
            contract_id=body.contract_id,
            selected_change_order_ids=body.selected_change_order_ids,
            additional_items=[item.to_item() for item in body.additional_items],
            invoice_date=body.invoice_date,
            due_date=body.due_date,
            tax_rate=body.tax_rate,
            payment_terms=body.payment_terms,
            notes=body.notes,
        ),
        actor,
    )
    return encode({"success": True, "invoice": encode(invoice)})


@router.post("/{invoice_id}/send-email")
def send_invoice_email(
    invoice_id: UUID,
    body: SendEmailIn,
    actor: ActingUser = Depends(get_acting_user),
    run: LifecycleRunner = Depends(get_runner),
):
    pending = run(
        lambda lc: lc.delivery.send_invoice(invoice_id, actor, body.recipient, body.message), actor
    )
    result = pending.result
    return encode({"success": result.delivered, **encode(result)})
