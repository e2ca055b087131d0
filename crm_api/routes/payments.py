"""Payment recording and clearing routes."""

from uuid import UUID

from fastapi import APIRouter, Depends

from crm_api.dependencies import LifecycleRunner, get_acting_user, get_runner
from crm_api.encoding import encode
from crm_api.schemas import PaymentIn
from crm_kernel.domain.actors import ActingUser

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("")
def record_payment(
    body: PaymentIn,
    actor: ActingUser = Depends(get_acting_user),
    run: LifecycleRunner = Depends(get_runner),
):
    payment = run(
        lambda lc: lc.payments.record_payment(
            actor,
            invoice_id=body.invoice_id,
            amount=body.amount,
            method=body.method,
            payment_date=body.payment_date,
            reference_number=body.reference_number,
            notes=body.notes,
            cleared=body.cleared,
        ),
        actor,
    )
    return encode({"success": True, "payment": encode(payment)})


@router.post("/{payment_id}/clear")
def clear_payment(
    payment_id: UUID,
    actor: ActingUser = Depends(get_acting_user),
    run: LifecycleRunner = Depends(get_runner),
):
    """Mark the payment as settled; commissions on the lead are re-evaluated."""
    payment = run(lambda lc: lc.payments.mark_cleared(payment_id, actor), actor)
    return encode({"success": True, "payment": encode(payment)})
