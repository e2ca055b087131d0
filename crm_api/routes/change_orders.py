"""Change-order signing, rejection and delivery routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from crm_api.dependencies import LifecycleRunner, client_details, get_acting_user, get_runner
from crm_api.encoding import encode
from crm_api.schemas import RejectIn, SendEmailIn, SignatureIn, TokenSignatureIn
from crm_kernel.domain.actors import ActingUser
from crm_modules.signatures.models import SignatureRole

router = APIRouter(prefix="/change-orders", tags=["change-orders"])


def _signing_response(result) -> dict:
    return encode({"success": True, "approved": result.approved, **encode(result)})


@router.post("/sign")
def sign_customer(
    body: TokenSignatureIn,
    request: Request,
    run: LifecycleRunner = Depends(get_runner),
):
    """Public customer signature through the share link."""
    payload = body.to_payload(*client_details(request))
    result = run(lambda lc: lc.change_orders.sign_by_token(body.share_token, payload))
    return _signing_response(result)


@router.post("/{change_order_id}/approve")
def approve(
    change_order_id: UUID,
    body: SignatureIn,
    request: Request,
    actor: ActingUser = Depends(get_acting_user),
    run: LifecycleRunner = Depends(get_runner),
):
    """Company-representative signature."""
    payload = body.to_payload(*client_details(request))
    result = run(
        lambda lc: lc.change_orders.sign(change_order_id, SignatureRole.COMPANY_REP, payload, actor),
        actor,
    )
    return _signing_response(result)


@router.post("/{change_order_id}/reject")
def reject(
    change_order_id: UUID,
    body: RejectIn,
    actor: ActingUser = Depends(get_acting_user),
    run: LifecycleRunner = Depends(get_runner),
):
    co = run(lambda lc: lc.change_orders.reject(change_order_id, body.reason, actor), actor)
    return encode({"success": True, "change_order": encode(co)})


@router.post("/{change_order_id}/send-email")
def send_change_order_email(
    change_order_id: UUID,
    body: SendEmailIn,
    actor: ActingUser = Depends(get_acting_user),
    run: LifecycleRunner = Depends(get_runner),
):
    pending = run(
        lambda lc: lc.delivery.send_change_order(change_order_id, actor, body.recipient, body.message),
        actor,
    )
    result = pending.result
    return encode({"success": result.delivered, **encode(result)})
