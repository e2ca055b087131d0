"""Quote signing and delivery routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from crm_api.dependencies import LifecycleRunner, client_details, get_acting_user, get_runner
from crm_api.encoding import encode
from crm_api.schemas import SendEmailIn, SignatureIn, TokenSignatureIn
from crm_kernel.domain.actors import ActingUser

router = APIRouter(prefix="/quotes", tags=["quotes"])


@router.post("/{quote_id}/sign-company")
def sign_company(
    quote_id: UUID,
    body: SignatureIn,
    request: Request,
    actor: ActingUser = Depends(get_acting_user),
    run: LifecycleRunner = Depends(get_runner),
):
    """Company-representative signature; completes the contract when the customer already signed."""
    payload = body.to_payload(*client_details(request))
    result = run(lambda lc: lc.signing.sign_company(quote_id, payload, actor), actor)
    return encode({"success": True, "fully_signed": result.fully_signed, **encode(result)})


@router.post("/sign")
def sign_customer(
    body: TokenSignatureIn,
    request: Request,
    run: LifecycleRunner = Depends(get_runner),
):
    """Public customer signature through the share link."""
    payload = body.to_payload(*client_details(request))
    result = run(lambda lc: lc.signing.sign_customer_by_token(body.share_token, payload))
    return encode({"success": True, "fully_signed": result.fully_signed, **encode(result)})


@router.post("/{quote_id}/generate-share-link")
def generate_share_link(
    quote_id: UUID,
    actor: ActingUser = Depends(get_acting_user),
    run: LifecycleRunner = Depends(get_runner),
):
    link = run(lambda lc: lc.signing.generate_share_link(quote_id, actor), actor)
    return encode(link)


@router.post("/{quote_id}/send-email")
def send_quote_email(
    quote_id: UUID,
    body: SendEmailIn,
    actor: ActingUser = Depends(get_acting_user),
    run: LifecycleRunner = Depends(get_runner),
):
    pending = run(
        lambda lc: lc.delivery.send_quote(quote_id, actor, body.recipient, body.message), actor
    )
    result = pending.result
    return encode({"success": result.delivered, **encode(result)})
