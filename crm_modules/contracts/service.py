"""
ContractSnapshotService -- freezes signed quotes into contracts.

Responsibility:
    Creates revision 1 of a quote's contract the moment both signatures
    exist, creates later revisions when change orders are approved, and
    voids contracts.  Contract rows are never otherwise mutated.

Invariants enforced:
    - At most once per quote: revision 1 is guarded by
      ``uq_contracts_quote_revision``.  A second call, whether a retry or
      the other signer's concurrent completion, returns the existing
      contract with ``created=False``.
    - At most one active revision per quote (partial unique index).  The
      previous active revision is superseded before the new one is added.
    - Snapshots copy the quote's persisted line items and totals, read in
      the same transaction that holds the quote row lock.

Failure modes:
    - QuoteNotFoundError / ContractNotFoundError.
    - InvalidStateError: snapshot requested for a quote missing a signature.
    - InvalidTransitionError: voiding a contract that is not active.
    - ValidationError: void without a reason.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_kernel.db.types import ZERO, round_money
from crm_kernel.domain.actors import PUBLIC_ACTOR_ID
from crm_kernel.domain.clock import Clock, SystemClock
from crm_kernel.exceptions import (
    ContractNotFoundError,
    InvalidStateError,
    QuoteNotFoundError,
    ValidationError,
)
from crm_kernel.logging_config import get_logger
from crm_kernel.services.sequence_service import DocumentNumberService
from crm_kernel.utils.hashing import canonicalize_json, hash_payload
from crm_modules.contracts.models import (
    Contract,
    ContractComparison,
    ContractCreation,
    ContractParty,
    LineItemRef,
    RevisionSource,
)
from crm_modules.contracts.orm import ContractLineItemModel, ContractModel
from crm_modules.contracts.workflows import CONTRACT_WORKFLOW
from crm_modules.quotes.orm import QuoteModel
from crm_modules.signatures.models import DocumentType, SignatureRole
from crm_modules.signatures.store import SignatureStore

logger = get_logger("modules.contracts.service")


def quote_snapshot(quote: QuoteModel) -> dict:
    """The quote as frozen into a contract."""
    return {
        "quote_id": quote.id,
        "lead_id": quote.lead_id,
        "title": quote.title,
        "tax_rate": quote.tax_rate,
        "subtotal": round_money(quote.subtotal),
        "discount_amount": round_money(quote.discount_amount),
        "tax_amount": round_money(quote.tax_amount),
        "total_amount": round_money(quote.total_amount),
        "notes": quote.notes,
        "line_items": [
            {
                "description": item.description,
                "quantity": item.quantity,
                "unit": item.unit,
                "unit_price": round_money(item.unit_price),
                "line_total": round_money(item.line_total),
                "category": item.category,
                "sort_order": item.sort_order,
            }
            for item in quote.line_items
        ],
    }


class ContractSnapshotService:
    """
    Contract creation, revision and voiding.

    Usage:
        contracts = ContractSnapshotService(session, clock)
        result = contracts.create_from_quote(quote_id)
        if result.created:
            ...
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        numbering: DocumentNumberService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._numbering = numbering or DocumentNumberService(session)
        self._signatures = SignatureStore(session, self._clock)

    # =========================================================================
    # Queries
    # =========================================================================

    def _load(self, contract_id: UUID, company_id: UUID | None = None) -> ContractModel:
        contract = self._session.get(ContractModel, contract_id)
        if contract is None or (company_id is not None and contract.company_id != company_id):
            raise ContractNotFoundError(contract_id)
        return contract

    def _revision(self, quote_id: UUID, revision: int) -> ContractModel | None:
        return self._session.execute(
            select(ContractModel).where(
                ContractModel.quote_id == quote_id,
                ContractModel.revision == revision,
            )
        ).scalar_one_or_none()

    def _active(self, quote_id: UUID, lock: bool = False) -> ContractModel | None:
        stmt = select(ContractModel).where(
            ContractModel.quote_id == quote_id,
            ContractModel.status == "active",
        )
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def get(self, contract_id: UUID, company_id: UUID | None = None) -> Contract:
        return self._load(contract_id, company_id).to_dto()

    def get_active_for_quote(self, quote_id: UUID) -> Contract | None:
        contract = self._active(quote_id)
        return contract.to_dto() if contract else None

    def history_for_quote(self, quote_id: UUID) -> list[Contract]:
        rows = self._session.execute(
            select(ContractModel)
            .where(ContractModel.quote_id == quote_id)
            .order_by(ContractModel.revision)
        ).scalars()
        return [row.to_dto() for row in rows]

    def original_for_quote(self, quote_id: UUID) -> Contract | None:
        """Revision 1, the snapshot taken at signing."""
        contract = self._revision(quote_id, 1)
        return contract.to_dto() if contract else None

    def contract_exists_for_lead(self, lead_id: UUID) -> bool:
        """One of the lead's quotes has an active contract revision."""
        count = self._session.execute(
            select(func.count(ContractModel.id)).where(
                ContractModel.lead_id == lead_id,
                ContractModel.status == "active",
            )
        ).scalar_one()
        return count > 0

    # =========================================================================
    # Creation
    # =========================================================================

    def create_from_quote(self, quote_id: UUID) -> ContractCreation:
        """
        Freeze the quote into revision 1 of its contract.

        Idempotent: returns ``created=False`` with the existing contract if
        revision 1 was already written, by this transaction or a
        concurrent one.
        """
        existing = self._revision(quote_id, 1)
        if existing is not None:
            logger.info(
                "contract_already_exists",
                extra={"quote_id": str(quote_id), "contract_id": str(existing.id)},
            )
            return ContractCreation(contract=existing.to_dto(), created=False)

        quote = self._session.get(QuoteModel, quote_id)
        if quote is None or quote.deleted_at is not None:
            raise QuoteNotFoundError(quote_id)

        signatures = self._signatures.signatures_for(DocumentType.QUOTE, quote.id)
        customer = signatures.get(SignatureRole.CUSTOMER)
        company = signatures.get(SignatureRole.COMPANY_REP)
        if customer is None or company is None:
            raise InvalidStateError(
                "quote", quote.id, quote.signing_state, "create contract",
                message=f"Quote {quote.id} is not signed by both parties",
            )

        snapshot = quote_snapshot(quote)
        now = self._clock.now()

        savepoint = self._session.begin_nested()
        try:
            number = self._numbering.next_number(
                quote.company_id, DocumentNumberService.CONTRACT, now.year
            )
            contract = ContractModel(
                company_id=quote.company_id,
                lead_id=quote.lead_id,
                quote_id=quote.id,
                contract_number=number,
                revision=1,
                status="active",
                original_subtotal=quote.subtotal,
                original_discount=quote.discount_amount,
                original_tax=quote.tax_amount,
                original_total=quote.total_amount,
                tax_rate=quote.tax_rate,
                quote_snapshot=canonicalize_json(snapshot),
                snapshot_hash=hash_payload(snapshot),
                customer_signed_by=customer.signer_name,
                customer_signed_at=customer.signed_at,
                customer_signature_data=customer.signature_data,
                customer_ip_address=customer.ip_address,
                company_signed_by=company.signer_name,
                company_signed_at=company.signed_at,
                company_signature_data=company.signature_data,
                company_ip_address=company.ip_address,
                created_by_id=company.signed_by_user_id or PUBLIC_ACTOR_ID,
            )
            contract.line_items = [
                ContractLineItemModel(
                    description=item.description,
                    quantity=item.quantity,
                    unit=item.unit,
                    unit_price=item.unit_price,
                    line_total=item.line_total,
                    category=item.category,
                    sort_order=item.sort_order,
                    created_by_id=contract.created_by_id,
                )
                for item in quote.line_items
            ]
            self._session.add(contract)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            winner = self._revision(quote_id, 1)
            if winner is None:
                raise
            logger.info(
                "contract_already_exists",
                extra={"quote_id": str(quote_id), "contract_id": str(winner.id)},
            )
            return ContractCreation(contract=winner.to_dto(), created=False)

        logger.info(
            "contract_created",
            extra={
                "quote_id": str(quote_id),
                "contract_id": str(contract.id),
                "contract_number": contract.contract_number,
                "original_total": str(contract.original_total),
            },
        )
        return ContractCreation(contract=contract.to_dto(), created=True)

    def create_revision(
        self,
        quote_id: UUID,
        source: RevisionSource,
    ) -> ContractCreation | None:
        """
        Append a revision reflecting an approved change order.

        Returns None when the quote has no active contract (never fully
        signed, or voided); only the live quote totals change then.
        """
        existing = self._session.execute(
            select(ContractModel).where(ContractModel.change_order_id == source.change_order_id)
        ).scalar_one_or_none()
        if existing is not None:
            logger.info(
                "contract_revision_already_exists",
                extra={
                    "change_order_id": str(source.change_order_id),
                    "contract_id": str(existing.id),
                },
            )
            return ContractCreation(contract=existing.to_dto(), created=False)

        previous = self._active(quote_id, lock=True)
        if previous is None:
            logger.info(
                "contract_revision_skipped",
                extra={"quote_id": str(quote_id), "reason": "no_active_contract"},
            )
            return None

        quote = self._session.get(QuoteModel, quote_id)
        now = self._clock.now()
        actor_id = PUBLIC_ACTOR_ID

        next_revision = (
            self._session.execute(
                select(func.max(ContractModel.revision)).where(ContractModel.quote_id == quote_id)
            ).scalar_one()
            or 0
        ) + 1

        snapshot = {
            "quote": quote_snapshot(quote),
            "change_order": {
                "change_order_id": source.change_order_id,
                "change_order_number": source.change_order_number,
                "title": source.title,
                "amount": source.amount,
                "tax_amount": source.tax_amount,
                "total": source.total,
            },
            "previous_contract_id": previous.id,
        }

        savepoint = self._session.begin_nested()
        try:
            CONTRACT_WORKFLOW.require(
                previous.status, "supersede", entity_type="contract", entity_id=previous.id
            )
            previous.status = "superseded"
            previous.superseded_at = now
            self._session.flush()

            number = self._numbering.next_number(
                previous.company_id, DocumentNumberService.CONTRACT, now.year
            )
            revision = ContractModel(
                company_id=previous.company_id,
                lead_id=previous.lead_id,
                quote_id=quote_id,
                contract_number=number,
                revision=next_revision,
                status="active",
                original_subtotal=previous.original_subtotal + source.amount,
                original_discount=previous.original_discount,
                original_tax=previous.original_tax + source.tax_amount,
                original_total=previous.original_total + source.total,
                tax_rate=previous.tax_rate,
                quote_snapshot=canonicalize_json(snapshot),
                snapshot_hash=hash_payload(snapshot),
                customer_signed_by=source.customer.signed_by,
                customer_signed_at=source.customer.signed_at,
                customer_signature_data=source.customer.signature_data,
                customer_ip_address=source.customer.ip_address,
                company_signed_by=source.company.signed_by,
                company_signed_at=source.company.signed_at,
                company_signature_data=source.company.signature_data,
                company_ip_address=source.company.ip_address,
                change_order_id=source.change_order_id,
                supersedes_contract_id=previous.id,
                created_by_id=actor_id,
            )
            carried = [
                ContractLineItemModel(
                    description=item.description,
                    quantity=item.quantity,
                    unit=item.unit,
                    unit_price=item.unit_price,
                    line_total=item.line_total,
                    category=item.category,
                    sort_order=item.sort_order,
                    source_change_order_id=item.source_change_order_id,
                    created_by_id=actor_id,
                )
                for item in previous.line_items
            ]
            start = len(carried)
            added = [
                ContractLineItemModel(
                    description=item.description,
                    quantity=item.quantity,
                    unit=item.unit,
                    unit_price=item.unit_price,
                    line_total=item.line_total,
                    category=item.category,
                    sort_order=start + offset,
                    source_change_order_id=source.change_order_id,
                    created_by_id=actor_id,
                )
                for offset, item in enumerate(source.line_items)
            ]
            revision.line_items = carried + added
            self._session.add(revision)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            winner = self._session.execute(
                select(ContractModel).where(
                    ContractModel.change_order_id == source.change_order_id
                )
            ).scalar_one_or_none()
            if winner is None:
                raise
            return ContractCreation(contract=winner.to_dto(), created=False)

        logger.info(
            "contract_revision_created",
            extra={
                "quote_id": str(quote_id),
                "contract_id": str(revision.id),
                "revision": next_revision,
                "change_order_id": str(source.change_order_id),
                "original_total": str(revision.original_total),
            },
        )
        return ContractCreation(contract=revision.to_dto(), created=True)

    # =========================================================================
    # Void
    # =========================================================================

    def void(
        self,
        contract_id: UUID,
        reason: str,
        actor_id: UUID,
        company_id: UUID | None = None,
    ) -> Contract:
        """Void an active contract. Terminal."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason", "is required to void a contract")

        contract = self._load(contract_id, company_id)
        CONTRACT_WORKFLOW.require(
            contract.status, "void", entity_type="contract", entity_id=contract.id
        )
        contract.status = "voided"
        contract.voided_at = self._clock.now()
        contract.voided_by_id = actor_id
        contract.void_reason = reason
        contract.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "contract_voided",
            extra={"contract_id": str(contract.id), "actor_id": str(actor_id)},
        )
        return contract.to_dto()

    # =========================================================================
    # Comparison
    # =========================================================================

    def compare_to_quote(self, quote_id: UUID) -> ContractComparison | None:
        """
        Compare the quote's current state with its active contract.

        Line items match on (description, quantity, unit_price); an item
        with a matching description but different numbers is "modified".
        Returns None when the quote has no active contract.
        """
        contract = self._active(quote_id)
        if contract is None:
            return None
        quote = self._session.get(QuoteModel, quote_id)
        if quote is None:
            raise QuoteNotFoundError(quote_id)

        def key(item) -> tuple[str, Decimal, Decimal]:
            return (item.description, item.quantity.normalize(), round_money(item.unit_price))

        quote_items = [
            LineItemRef(i.description, i.quantity.normalize(), round_money(i.unit_price))
            for i in quote.line_items
        ]
        contract_items = [
            LineItemRef(i.description, i.quantity.normalize(), round_money(i.unit_price))
            for i in contract.line_items
            if i.source_change_order_id is None
        ]
        contract_keys = {key(i) for i in contract_items}
        quote_keys = {key(i) for i in quote_items}

        unmatched_quote = [i for i in quote_items if key(i) not in contract_keys]
        unmatched_contract = [i for i in contract_items if key(i) not in quote_keys]

        by_description = {i.description: i for i in unmatched_contract}
        modified = []
        added = []
        for item in unmatched_quote:
            before = by_description.pop(item.description, None)
            if before is not None:
                modified.append((before, item))
            else:
                added.append(item)
        removed = list(by_description.values())

        total_change = round_money(quote.total_amount - contract.original_total)
        return ContractComparison(
            contract_id=contract.id,
            has_changes=bool(total_change != ZERO or added or removed or modified),
            total_change=total_change,
            added_items=tuple(added),
            removed_items=tuple(removed),
            modified_items=tuple(modified),
        )
