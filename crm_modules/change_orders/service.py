"""
ChangeOrderService -- proposal, dual signature and approval of change orders.

Responsibility:
    Change orders amend a quote.  They carry their own customer and
    company signatures; the second signature approves the order, and only
    then does its amount reach the quote's live totals and, if the quote
    has a contract, a new contract revision.

Invariants enforced:
    - Live quote total == quote base total + sum(total of approved,
      non-deleted change orders).  Recomputed from persisted rows.
    - At most one signature per (change order, role).
    - Approval side effects run exactly once: the status transition to
      approved happens under the change order's row lock, and the
      contract revision is keyed by change_order_id.
    - Rejection is terminal and has no monetary effect.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crm_kernel.db.types import ZERO, apply_rate, line_total, round_money, to_money
from crm_kernel.domain.actors import ActingUser
from crm_kernel.domain.clock import Clock, SystemClock
from crm_kernel.domain.hooks import LifecycleHooks
from crm_kernel.exceptions import (
    AlreadySignedError,
    AuthenticationError,
    ChangeOrderNotFoundError,
    InvalidStateError,
    ShareTokenNotFoundError,
    ValidationError,
)
from crm_kernel.logging_config import LogContext, get_logger
from crm_kernel.services.sequence_service import DocumentNumberService
from crm_kernel.services.share_link_service import ShareLink, ShareLinkService
from crm_modules.change_orders.config import ChangeOrderConfig
from crm_modules.change_orders.models import ChangeOrder, ChangeOrderSigningResult
from crm_modules.change_orders.orm import ChangeOrderLineItemModel, ChangeOrderModel
from crm_modules.change_orders.workflows import CHANGE_ORDER_WORKFLOW, OPEN_STATUSES
from crm_modules.contracts.models import ContractParty, RevisionLineItem, RevisionSource
from crm_modules.contracts.service import ContractSnapshotService
from crm_modules.quotes.models import LineItemInput, QuoteTotals
from crm_modules.quotes.orm import QuoteModel
from crm_modules.quotes.pricing import compute_totals, normalize_line_item, validate_rate
from crm_modules.quotes.service import load_quote
from crm_modules.signatures.capture import validate_signature
from crm_modules.signatures.config import SignatureConfig
from crm_modules.signatures.models import (
    DocumentType,
    Signature,
    SignaturePayload,
    SignatureRole,
)
from crm_modules.signatures.store import SignatureStore

logger = get_logger("modules.change_orders.service")


def approved_change_order_sums(
    session: Session, quote_id: UUID
) -> tuple[Decimal, Decimal, Decimal]:
    """(amount, tax_amount, total) over approved, non-deleted change orders."""
    row = session.execute(
        select(
            func.coalesce(func.sum(ChangeOrderModel.amount), 0),
            func.coalesce(func.sum(ChangeOrderModel.tax_amount), 0),
            func.coalesce(func.sum(ChangeOrderModel.total), 0),
        ).where(
            ChangeOrderModel.quote_id == quote_id,
            ChangeOrderModel.status == "approved",
            ChangeOrderModel.deleted_at.is_(None),
        )
    ).one()
    return tuple(round_money(Decimal(str(value))) for value in row)


def recompute_quote_totals(session: Session, quote: QuoteModel) -> QuoteTotals:
    """
    Rewrite the quote's live totals from persisted rows.

    base  = the quote's own line items, discount and tax rate
    live  = base + sum over approved change orders
    """
    base = compute_totals(
        (item.line_total for item in quote.line_items),
        quote.discount_amount,
        quote.tax_rate,
    )
    co_amount, co_tax, co_total = approved_change_order_sums(session, quote.id)

    quote.subtotal = base.subtotal + co_amount
    quote.discount_amount = base.discount_amount
    quote.tax_amount = base.tax_amount + co_tax
    quote.total_amount = base.total_amount + co_total
    session.flush()

    logger.info(
        "quote_totals_recomputed",
        extra={
            "quote_id": str(quote.id),
            "base_total": str(base.total_amount),
            "change_order_total": str(co_total),
            "total_amount": str(quote.total_amount),
        },
    )
    return QuoteTotals(
        subtotal=quote.subtotal,
        discount_amount=quote.discount_amount,
        tax_amount=quote.tax_amount,
        total_amount=quote.total_amount,
    )


class ChangeOrderService:
    """
    Change order lifecycle.

    Usage:
        change_orders = ChangeOrderService(session, clock, hooks=hooks)
        co = change_orders.propose(
            acting_user, quote_id=quote.id, lead_id=quote.lead_id,
            title="Replace decking",
            line_items=[LineItemInput("Decking", Decimal("10"), Decimal("20"))],
        )
        change_orders.sign(co.id, SignatureRole.COMPANY_REP, payload, acting_user=rep)
        result = change_orders.sign_by_token(co.share_token, customer_payload)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        hooks: LifecycleHooks | None = None,
        config: ChangeOrderConfig | None = None,
        signature_config: SignatureConfig | None = None,
        numbering: DocumentNumberService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._hooks = hooks or LifecycleHooks()
        self._config = config or ChangeOrderConfig.with_defaults()
        self._signature_config = signature_config or SignatureConfig.with_defaults()
        self._numbering = numbering or DocumentNumberService(session)
        self._signatures = SignatureStore(session, self._clock)
        self._contracts = ContractSnapshotService(session, self._clock, self._numbering)
        self._share_links = ShareLinkService(
            session, self._clock, ttl_days=self._config.share_link_ttl_days
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def _load(
        self, change_order_id: UUID, company_id: UUID | None = None, lock: bool = False
    ) -> ChangeOrderModel:
        stmt = select(ChangeOrderModel).where(ChangeOrderModel.id == change_order_id)
        if lock:
            stmt = stmt.with_for_update()
        co = self._session.execute(stmt).scalar_one_or_none()
        if co is None or co.deleted_at is not None:
            raise ChangeOrderNotFoundError(change_order_id)
        if company_id is not None and co.company_id != company_id:
            raise ChangeOrderNotFoundError(change_order_id)
        return co

    def get(self, change_order_id: UUID, company_id: UUID | None = None) -> ChangeOrder:
        return self._load(change_order_id, company_id).to_dto()

    def list_for_quote(self, quote_id: UUID, status: str | None = None) -> list[ChangeOrder]:
        stmt = (
            select(ChangeOrderModel)
            .where(
                ChangeOrderModel.quote_id == quote_id,
                ChangeOrderModel.deleted_at.is_(None),
            )
            .order_by(ChangeOrderModel.created_at, ChangeOrderModel.change_order_number)
        )
        if status is not None:
            stmt = stmt.where(ChangeOrderModel.status == status)
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    def signatures(self, change_order_id: UUID) -> dict[SignatureRole, Signature]:
        return self._signatures.signatures_for(DocumentType.CHANGE_ORDER, change_order_id)

    # =========================================================================
    # Proposal
    # =========================================================================

    def propose(
        self,
        acting_user: ActingUser,
        *,
        lead_id: UUID,
        quote_id: UUID,
        title: str,
        line_items: list[LineItemInput],
        description: str | None = None,
        amount: Decimal | None = None,
        tax_rate: Decimal | int | str | None = None,
    ) -> ChangeOrder:
        """
        Propose a change order against a quote; status ``pending``.

        ``amount``, when given, must equal the sum of the line totals.

        Raises:
            QuoteNotFoundError: quote missing or owned by another company.
            ValidationError: no line items, blank title, amount mismatch,
                lead not matching the quote.
            InvalidStateError: quote declined or expired.
        """
        quote = load_quote(self._session, quote_id, acting_user.company_id)
        if quote.lead_id != lead_id:
            raise ValidationError("lead_id", "does not match the quote's lead")
        if quote.status in ("declined", "expired"):
            raise InvalidStateError("quote", quote.id, quote.status, "amend")

        title = (title or "").strip()
        if not title:
            raise ValidationError("title", "is required")
        if not line_items:
            raise ValidationError("line_items", "at least one line item is required")

        items = [normalize_line_item(item, i) for i, item in enumerate(line_items)]
        co_amount = round_money(
            sum((line_total(i.quantity, i.unit_price) for i in items), ZERO)
        )
        if amount is not None and round_money(to_money(amount)) != co_amount:
            raise ValidationError(
                "amount", f"{amount} does not match the line item total {co_amount}"
            )
        rate = validate_rate(
            self._config.default_tax_rate if tax_rate is None else tax_rate
        )
        tax = apply_rate(co_amount, rate)

        number = self._numbering.next_number(
            acting_user.company_id,
            DocumentNumberService.CHANGE_ORDER,
            self._clock.now().year,
        )
        co = ChangeOrderModel(
            company_id=acting_user.company_id,
            lead_id=lead_id,
            quote_id=quote.id,
            change_order_number=number,
            title=title,
            description=description,
            status="pending",
            amount=co_amount,
            tax_rate=rate,
            tax_amount=tax,
            total=co_amount + tax,
            created_by_id=acting_user.user_id,
        )
        co.line_items = [
            ChangeOrderLineItemModel(
                description=item.description,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                line_total=line_total(item.quantity, item.unit_price),
                category=item.category,
                sort_order=index,
                created_by_id=acting_user.user_id,
            )
            for index, item in enumerate(items)
        ]
        self._session.add(co)
        self._session.flush()

        logger.info(
            "change_order_proposed",
            extra={
                "change_order_id": str(co.id),
                "change_order_number": number,
                "quote_id": str(quote.id),
                "total": str(co.total),
            },
        )
        return co.to_dto()

    # =========================================================================
    # Send / reject / delete
    # =========================================================================

    def generate_share_link(self, change_order_id: UUID, actor: ActingUser) -> ShareLink:
        co = self._load(change_order_id, actor.company_id, lock=True)
        return self._share_links.ensure(co, "change_order")

    def mark_sent(self, change_order_id: UUID, actor: ActingUser) -> ChangeOrder:
        """Issue (or reuse) the share link and move pending -> sent."""
        co = self._load(change_order_id, actor.company_id, lock=True)
        if co.status not in OPEN_STATUSES:
            raise InvalidStateError("change order", co.id, co.status, "send")
        self._share_links.ensure(co, "change_order")
        if co.status == "pending":
            CHANGE_ORDER_WORKFLOW.require(
                co.status, "send", entity_type="change order", entity_id=co.id
            )
            co.status = "sent"
            co.sent_at = self._clock.now()
            co.updated_by_id = actor.user_id
        self._session.flush()
        logger.info("change_order_sent", extra={"change_order_id": str(co.id)})
        return co.to_dto()

    def reject(self, change_order_id: UUID, reason: str | None, actor: ActingUser) -> ChangeOrder:
        co = self._load(change_order_id, actor.company_id, lock=True)
        CHANGE_ORDER_WORKFLOW.require(
            co.status, "reject", entity_type="change order", entity_id=co.id
        )
        co.status = "rejected"
        co.rejected_at = self._clock.now()
        co.rejection_reason = (reason or "").strip() or None
        co.updated_by_id = actor.user_id
        self._session.flush()
        logger.info(
            "change_order_rejected",
            extra={"change_order_id": str(co.id), "reason": co.rejection_reason},
        )
        return co.to_dto()

    def soft_delete(self, change_order_id: UUID, actor: ActingUser) -> None:
        co = self._load(change_order_id, actor.company_id, lock=True)
        if co.status == "approved":
            raise InvalidStateError(
                "change order", co.id, co.status, "delete",
                message="Approved change orders cannot be deleted",
            )
        co.deleted_at = self._clock.now()
        co.updated_by_id = actor.user_id
        self._session.flush()
        logger.info("change_order_deleted", extra={"change_order_id": str(co.id)})

    # =========================================================================
    # Signing
    # =========================================================================

    def sign_by_token(self, share_token: str, payload: SignaturePayload) -> ChangeOrderSigningResult:
        """Customer signature through the public share link."""
        if not share_token:
            raise ShareTokenNotFoundError("change_order")
        co = self._session.execute(
            select(ChangeOrderModel)
            .where(ChangeOrderModel.share_token == share_token)
            .with_for_update()
        ).scalar_one_or_none()
        if co is None or co.deleted_at is not None:
            raise ShareTokenNotFoundError("change_order")
        return self._sign(co, SignatureRole.CUSTOMER, payload, None)

    def sign(
        self,
        change_order_id: UUID,
        role: SignatureRole,
        payload: SignaturePayload,
        acting_user: ActingUser | None = None,
    ) -> ChangeOrderSigningResult:
        """
        Record a signature for ``role``.

        The company representative must be an authenticated user of the
        change order's company.  Customers normally sign through
        ``sign_by_token``.

        Raises:
            AuthenticationError: company signature without a user.
            ChangeOrderNotFoundError, AlreadySignedError,
            LinkExpiredError (customer), InvalidStateError.
        """
        if role is SignatureRole.COMPANY_REP:
            if acting_user is None:
                raise AuthenticationError()
            co = self._load(change_order_id, acting_user.company_id, lock=True)
        else:
            co = self._load(
                change_order_id,
                acting_user.company_id if acting_user else None,
                lock=True,
            )
        return self._sign(co, role, payload, acting_user.user_id if acting_user else None)

    def _sign(
        self,
        co: ChangeOrderModel,
        role: SignatureRole,
        payload: SignaturePayload,
        signed_by_user_id: UUID | None,
    ) -> ChangeOrderSigningResult:
        with LogContext.bind(company_id=co.company_id, document_id=co.id):
            existing = self._signatures.signer_names(DocumentType.CHANGE_ORDER, co.id)
            if role in existing:
                raise AlreadySignedError(
                    DocumentType.CHANGE_ORDER.value, co.id, role.value, existing[role]
                )
            if role is SignatureRole.CUSTOMER:
                self._share_links.check_not_expired(co, "change_order")

            action = "sign_customer" if role is SignatureRole.CUSTOMER else "sign_company"
            transition = CHANGE_ORDER_WORKFLOW.transition_for(co.status, action)
            if transition is None:
                raise InvalidStateError(
                    "change order", co.id, co.status, "sign",
                    message=f"This change order has already been processed (status: {co.status})",
                )

            clean = validate_signature(
                payload,
                role=role,
                document_type=DocumentType.CHANGE_ORDER,
                document_id=co.id,
                existing=existing,
                config=self._signature_config,
            )
            signature = self._signatures.record(
                company_id=co.company_id,
                document_type=DocumentType.CHANGE_ORDER,
                document_id=co.id,
                role=role,
                payload=clean,
                signed_by_user_id=signed_by_user_id,
            )

            signatures = self.signatures(co.id)
            both = {SignatureRole.CUSTOMER, SignatureRole.COMPANY_REP} <= set(signatures)
            co.status = "approved" if both else transition.to_state
            if signed_by_user_id is not None:
                co.updated_by_id = signed_by_user_id
            self._session.flush()

            logger.info(
                "change_order_signed",
                extra={
                    "change_order_id": str(co.id),
                    "role": role.value,
                    "signer": signature.signer_name,
                    "status": co.status,
                },
            )

            if not both:
                return ChangeOrderSigningResult(change_order=co.to_dto(), signature=signature)
            return self._approve(co, signature, signatures, signed_by_user_id)

    def _approve(
        self,
        co: ChangeOrderModel,
        signature: Signature,
        signatures: dict[SignatureRole, Signature],
        approver_id: UUID | None,
    ) -> ChangeOrderSigningResult:
        """Apply an approved change order to the quote and its contract."""
        co.approved_at = self._clock.now()
        co.approved_by_id = (
            approver_id or signatures[SignatureRole.COMPANY_REP].signed_by_user_id
        )
        self._session.flush()

        quote = self._session.execute(
            select(QuoteModel).where(QuoteModel.id == co.quote_id).with_for_update()
        ).scalar_one()
        recompute_quote_totals(self._session, quote)

        revision = self._contracts.create_revision(
            quote.id, self._revision_source(co, signatures)
        )
        contract_id = revision.contract.id if revision else None

        self._hooks.on_change_order_approved(
            company_id=co.company_id,
            lead_id=co.lead_id,
            quote_id=co.quote_id,
            change_order_id=co.id,
            contract_id=contract_id,
        )

        logger.info(
            "change_order_approved",
            extra={
                "change_order_id": str(co.id),
                "quote_id": str(co.quote_id),
                "quote_total": str(quote.total_amount),
                "contract_id": str(contract_id) if contract_id else None,
            },
        )
        return ChangeOrderSigningResult(
            change_order=co.to_dto(),
            signature=signature,
            contract_id=contract_id,
            contract_revision_created=bool(revision and revision.created),
        )

    @staticmethod
    def _revision_source(
        co: ChangeOrderModel, signatures: dict[SignatureRole, Signature]
    ) -> RevisionSource:
        def party(sig: Signature) -> ContractParty:
            return ContractParty(
                signed_by=sig.signer_name,
                signed_at=sig.signed_at,
                signature_data=sig.signature_data,
                ip_address=sig.ip_address,
            )

        return RevisionSource(
            change_order_id=co.id,
            change_order_number=co.change_order_number,
            title=co.title,
            amount=co.amount,
            tax_amount=co.tax_amount,
            total=co.total,
            line_items=tuple(
                RevisionLineItem(
                    description=item.description,
                    quantity=item.quantity,
                    unit=item.unit,
                    unit_price=item.unit_price,
                    line_total=item.line_total,
                    category=item.category,
                )
                for item in co.line_items
            ),
            customer=party(signatures[SignatureRole.CUSTOMER]),
            company=party(signatures[SignatureRole.COMPANY_REP]),
        )
