"""
Quote services -- authoring and the dual-signature state machine.

QuoteService
    Create quotes, replace line items while unlocked, send, view,
    decline and soft-delete.  Every mutation recomputes the live totals
    from persisted rows.

QuoteSigningService
    Records the customer (share link) and company-representative
    signatures.  Whichever lands second locks the quote, accepts it and
    creates the contract snapshot.

Invariants enforced:
    - At most one signature per (quote, role): checked up front for a
      friendly error, decided by the unique constraint under a race.
    - signing_state only moves forward (QUOTE_SIGNING_WORKFLOW).
    - Completion is decided from persisted signature rows, never from
      the in-memory state of the request.
    - Contract creation is at-most-once; a concurrent completion that
      loses the race is a no-op, not an error.
    - Once locked, line items change only through approved change orders.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_kernel.db.types import ZERO, line_total, to_money
from crm_kernel.domain.actors import ActingUser
from crm_kernel.domain.clock import Clock, SystemClock
from crm_kernel.domain.hooks import LifecycleHooks
from crm_kernel.exceptions import (
    AlreadySignedError,
    AuthenticationError,
    InvalidStateError,
    QuoteLockedError,
    QuoteNotFoundError,
    ShareTokenNotFoundError,
    ValidationError,
)
from crm_kernel.logging_config import LogContext, get_logger
from crm_kernel.services.sequence_service import DocumentNumberService
from crm_kernel.services.share_link_service import ShareLink, ShareLinkService
from crm_modules.contracts.service import ContractSnapshotService
from crm_modules.quotes.config import QuoteConfig
from crm_modules.quotes.models import LineItemInput, Quote, SigningResult
from crm_modules.quotes.orm import QuoteLineItemModel, QuoteModel
from crm_modules.quotes.pricing import normalize_line_item, totals_for_inputs, validate_rate
from crm_modules.quotes.workflows import (
    COMPANY_SIGNABLE_STATUSES,
    CUSTOMER_SIGNABLE_STATUSES,
    QUOTE_SIGNING_WORKFLOW,
    QUOTE_WORKFLOW,
)
from crm_modules.signatures.capture import validate_signature
from crm_modules.signatures.config import SignatureConfig
from crm_modules.signatures.models import DocumentType, SignaturePayload, SignatureRole
from crm_modules.signatures.store import SignatureStore

logger = get_logger("modules.quotes.service")


def load_quote(
    session: Session,
    quote_id: UUID,
    company_id: UUID | None = None,
    lock: bool = False,
) -> QuoteModel:
    stmt = select(QuoteModel).where(QuoteModel.id == quote_id)
    if lock:
        stmt = stmt.with_for_update()
    quote = session.execute(stmt).scalar_one_or_none()
    if quote is None or quote.deleted_at is not None:
        raise QuoteNotFoundError(quote_id)
    if company_id is not None and quote.company_id != company_id:
        raise QuoteNotFoundError(quote_id)
    return quote


def _recompute_live_totals(session: Session, quote: QuoteModel) -> None:
    from crm_modules.change_orders.service import recompute_quote_totals

    recompute_quote_totals(session, quote)


class QuoteService:
    """
    Quote authoring.

    Usage:
        quotes = QuoteService(session, clock)
        quote = quotes.create_quote(
            company_id=..., lead_id=..., title="Roof replacement",
            line_items=[LineItemInput("Shingles", Decimal("20"), Decimal("50"))],
            tax_rate=Decimal("0.08"), actor_id=user_id,
        )
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def get(self, quote_id: UUID, company_id: UUID | None = None) -> Quote:
        return load_quote(self._session, quote_id, company_id).to_dto()

    def create_quote(
        self,
        *,
        company_id: UUID,
        lead_id: UUID,
        title: str,
        line_items: list[LineItemInput],
        actor_id: UUID,
        discount_amount: Decimal | int | str = ZERO,
        tax_rate: Decimal | int | str = ZERO,
        notes: str | None = None,
    ) -> Quote:
        title = (title or "").strip()
        if not title:
            raise ValidationError("title", "is required")
        items = [normalize_line_item(item, i) for i, item in enumerate(line_items)]
        rate = validate_rate(tax_rate)
        totals = totals_for_inputs(items, to_money(discount_amount, "discount_amount"), rate)

        quote = QuoteModel(
            company_id=company_id,
            lead_id=lead_id,
            title=title,
            status="draft",
            signing_state="unsigned",
            is_locked=False,
            tax_rate=rate,
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            notes=notes,
            created_by_id=actor_id,
        )
        quote.line_items = self._line_item_rows(items, actor_id)
        self._session.add(quote)
        self._session.flush()

        logger.info(
            "quote_created",
            extra={
                "quote_id": str(quote.id),
                "lead_id": str(lead_id),
                "line_count": len(items),
                "total_amount": str(quote.total_amount),
            },
        )
        return quote.to_dto()

    def replace_line_items(
        self,
        quote_id: UUID,
        line_items: list[LineItemInput],
        actor_id: UUID,
        *,
        company_id: UUID | None = None,
        discount_amount: Decimal | int | str | None = None,
        tax_rate: Decimal | int | str | None = None,
    ) -> Quote:
        """
        Replace every line item of an unlocked quote.

        Raises:
            QuoteLockedError: the quote is fully signed.
        """
        quote = load_quote(self._session, quote_id, company_id, lock=True)
        if quote.is_locked:
            raise QuoteLockedError(quote.id)

        items = [normalize_line_item(item, i) for i, item in enumerate(line_items)]
        if tax_rate is not None:
            quote.tax_rate = validate_rate(tax_rate)
        discount = (
            quote.discount_amount
            if discount_amount is None
            else to_money(discount_amount, "discount_amount")
        )
        # Validates the discount against the new subtotal before anything changes.
        totals_for_inputs(items, discount, quote.tax_rate)

        quote.line_items = self._line_item_rows(items, actor_id)
        quote.discount_amount = discount
        quote.updated_by_id = actor_id
        self._session.flush()
        _recompute_live_totals(self._session, quote)

        logger.info(
            "quote_line_items_replaced",
            extra={
                "quote_id": str(quote.id),
                "line_count": len(items),
                "total_amount": str(quote.total_amount),
            },
        )
        return quote.to_dto()

    def mark_sent(self, quote_id: UUID, actor_id: UUID, company_id: UUID | None = None) -> Quote:
        """Move a draft quote to sent.  Re-sending a sent quote is a no-op."""
        quote = load_quote(self._session, quote_id, company_id, lock=True)
        if quote.status == "draft":
            QUOTE_WORKFLOW.require(quote.status, "send", entity_type="quote", entity_id=quote.id)
            quote.status = "sent"
            quote.sent_at = self._clock.now()
            quote.updated_by_id = actor_id
            self._session.flush()
            logger.info("quote_sent", extra={"quote_id": str(quote.id)})
        elif quote.status not in ("sent", "pending"):
            raise InvalidStateError("quote", quote.id, quote.status, "send")
        return quote.to_dto()

    def record_view(self, share_token: str) -> Quote:
        """The customer opened the share link: sent -> pending."""
        quote = self._session.execute(
            select(QuoteModel).where(QuoteModel.share_token == share_token)
        ).scalar_one_or_none()
        if quote is None or quote.deleted_at is not None:
            raise ShareTokenNotFoundError("quote")
        if quote.status == "sent":
            quote.status = "pending"
            self._session.flush()
            logger.info("quote_viewed", extra={"quote_id": str(quote.id)})
        return quote.to_dto()

    def decline(self, quote_id: UUID, actor_id: UUID, company_id: UUID | None = None) -> Quote:
        quote = load_quote(self._session, quote_id, company_id, lock=True)
        if quote.is_locked:
            raise QuoteLockedError(quote.id, action="decline")
        QUOTE_WORKFLOW.require(quote.status, "decline", entity_type="quote", entity_id=quote.id)
        quote.status = "declined"
        quote.declined_at = self._clock.now()
        quote.updated_by_id = actor_id
        self._session.flush()
        logger.info("quote_declined", extra={"quote_id": str(quote.id)})
        return quote.to_dto()

    def soft_delete(self, quote_id: UUID, actor_id: UUID, company_id: UUID | None = None) -> None:
        quote = load_quote(self._session, quote_id, company_id, lock=True)
        if quote.is_locked:
            raise QuoteLockedError(quote.id, action="delete")
        quote.deleted_at = self._clock.now()
        quote.updated_by_id = actor_id
        self._session.flush()
        logger.info("quote_deleted", extra={"quote_id": str(quote.id)})

    @staticmethod
    def _line_item_rows(
        items: list[LineItemInput], actor_id: UUID
    ) -> list[QuoteLineItemModel]:
        return [
            QuoteLineItemModel(
                description=item.description,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                line_total=line_total(item.quantity, item.unit_price),
                category=item.category,
                sort_order=index,
                created_by_id=actor_id,
            )
            for index, item in enumerate(items)
        ]


class QuoteSigningService:
    """
    Dual-signature state machine for quotes.

    Usage:
        signing = QuoteSigningService(session, clock, hooks=hooks)
        signing.sign_company(quote_id, payload, acting_user)
        result = signing.sign_customer_by_token(token, payload)
        if result.fully_signed:
            ...
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        hooks: LifecycleHooks | None = None,
        config: QuoteConfig | None = None,
        signature_config: SignatureConfig | None = None,
        numbering: DocumentNumberService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._hooks = hooks or LifecycleHooks()
        self._config = config or QuoteConfig.with_defaults()
        self._signature_config = signature_config or SignatureConfig.with_defaults()
        self._signatures = SignatureStore(session, self._clock)
        self._contracts = ContractSnapshotService(session, self._clock, numbering)
        self._share_links = ShareLinkService(
            session, self._clock, ttl_days=self._config.share_link_ttl_days
        )

    # =========================================================================
    # Share links
    # =========================================================================

    def generate_share_link(self, quote_id: UUID, actor: ActingUser) -> ShareLink:
        """Reuse the quote's unexpired share token or issue a new one."""
        quote = load_quote(self._session, quote_id, actor.company_id, lock=True)
        return self._share_links.ensure(quote, "quote")

    # =========================================================================
    # Signing
    # =========================================================================

    def sign_customer_by_token(self, share_token: str, payload: SignaturePayload) -> SigningResult:
        """Public signing entry point; the token identifies the quote."""
        if not share_token:
            raise ShareTokenNotFoundError("quote")
        quote_id = self._session.execute(
            select(QuoteModel.id).where(
                QuoteModel.share_token == share_token,
                QuoteModel.deleted_at.is_(None),
            )
        ).scalar_one_or_none()
        if quote_id is None:
            raise ShareTokenNotFoundError("quote")
        return self.sign_customer(quote_id, payload, share_token=share_token)

    def sign_customer(
        self,
        quote_id: UUID,
        payload: SignaturePayload,
        share_token: str | None = None,
    ) -> SigningResult:
        """
        Record the customer's signature.

        Raises:
            QuoteNotFoundError / ShareTokenNotFoundError: unknown quote or
                token not matching it.
            AlreadySignedError: the customer has already signed.
            LinkExpiredError: the share link is past expiry.
            InvalidStateError: quote status not in {sent, pending}.
        """
        quote = load_quote(self._session, quote_id, lock=True)
        if share_token is not None and quote.share_token != share_token:
            raise ShareTokenNotFoundError("quote")

        with LogContext.bind(company_id=quote.company_id, document_id=quote.id):
            existing = self._signatures.signer_names(DocumentType.QUOTE, quote.id)
            if SignatureRole.CUSTOMER in existing:
                raise AlreadySignedError(
                    DocumentType.QUOTE.value,
                    quote.id,
                    SignatureRole.CUSTOMER.value,
                    existing[SignatureRole.CUSTOMER],
                )
            self._share_links.check_not_expired(quote, "quote")
            if quote.status not in CUSTOMER_SIGNABLE_STATUSES:
                raise InvalidStateError(
                    "quote", quote.id, quote.status, "sign",
                    message=f"Quote cannot be signed while {quote.status}",
                )
            return self._apply(quote, SignatureRole.CUSTOMER, payload, existing, None)

    def sign_company(
        self,
        quote_id: UUID,
        payload: SignaturePayload,
        acting_user: ActingUser | None,
    ) -> SigningResult:
        """
        Record the company representative's signature.

        Raises:
            AuthenticationError: no acting user.
            QuoteNotFoundError: unknown quote or another company's quote.
            AlreadySignedError: the company has already signed.
            InvalidStateError: quote declined or expired.
        """
        if acting_user is None:
            raise AuthenticationError()
        quote = load_quote(self._session, quote_id, acting_user.company_id, lock=True)

        with LogContext.bind(
            company_id=quote.company_id, actor_id=acting_user.user_id, document_id=quote.id
        ):
            existing = self._signatures.signer_names(DocumentType.QUOTE, quote.id)
            if SignatureRole.COMPANY_REP in existing:
                raise AlreadySignedError(
                    DocumentType.QUOTE.value,
                    quote.id,
                    SignatureRole.COMPANY_REP.value,
                    existing[SignatureRole.COMPANY_REP],
                )
            if quote.status not in COMPANY_SIGNABLE_STATUSES:
                raise InvalidStateError(
                    "quote", quote.id, quote.status, "sign",
                    message=f"Quote cannot be signed while {quote.status}",
                )
            return self._apply(
                quote, SignatureRole.COMPANY_REP, payload, existing, acting_user.user_id
            )

    def _apply(
        self,
        quote: QuoteModel,
        role: SignatureRole,
        payload: SignaturePayload,
        existing: dict[SignatureRole, str],
        signed_by_user_id: UUID | None,
    ) -> SigningResult:
        action = "sign_customer" if role is SignatureRole.CUSTOMER else "sign_company"
        clean = validate_signature(
            payload,
            role=role,
            document_type=DocumentType.QUOTE,
            document_id=quote.id,
            existing=existing,
            config=self._signature_config,
        )
        QUOTE_SIGNING_WORKFLOW.require(
            quote.signing_state, action, entity_type="quote", entity_id=quote.id
        )

        signature = self._signatures.record(
            company_id=quote.company_id,
            document_type=DocumentType.QUOTE,
            document_id=quote.id,
            role=role,
            payload=clean,
            signed_by_user_id=signed_by_user_id,
        )

        signed_roles = set(self._signatures.signatures_for(DocumentType.QUOTE, quote.id))
        if signed_roles >= {SignatureRole.CUSTOMER, SignatureRole.COMPANY_REP}:
            quote.signing_state = "fully_signed"
        elif role is SignatureRole.CUSTOMER:
            quote.signing_state = "customer_signed"
        else:
            quote.signing_state = "company_signed"
        if signed_by_user_id is not None:
            quote.updated_by_id = signed_by_user_id
        self._session.flush()

        logger.info(
            "quote_signed",
            extra={
                "quote_id": str(quote.id),
                "role": role.value,
                "signer": signature.signer_name,
                "signing_state": quote.signing_state,
            },
        )

        if quote.signing_state != "fully_signed":
            return SigningResult(quote=quote.to_dto(), signature=signature)

        return self._complete(quote, signature)

    def _complete(self, quote: QuoteModel, signature) -> SigningResult:
        """Lock and accept the quote, then snapshot it into a contract."""
        quote.is_locked = True
        if quote.status != "accepted":
            QUOTE_WORKFLOW.require(quote.status, "accept", entity_type="quote", entity_id=quote.id)
            quote.status = "accepted"
            quote.accepted_at = self._clock.now()
        self._session.flush()

        creation = self._contracts.create_from_quote(quote.id)
        if creation.created:
            self._hooks.on_contract_signed(
                company_id=quote.company_id,
                lead_id=quote.lead_id,
                quote_id=quote.id,
                contract_id=creation.contract.id,
            )

        logger.info(
            "quote_fully_signed",
            extra={
                "quote_id": str(quote.id),
                "contract_id": str(creation.contract.id),
                "contract_created": creation.created,
            },
        )
        return SigningResult(
            quote=quote.to_dto(),
            signature=signature,
            contract_id=creation.contract.id,
            contract_created=creation.created,
        )
