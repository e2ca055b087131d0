"""
InvoiceAggregator -- assembles invoices from their three line sources.

Responsibility:
    Builds an invoice from a contract (the source of truth for base
    pricing, never the live quote), the approved change orders the
    caller selected, and ad hoc additional items.  Owns invoice
    numbering, totals, sending, cancellation and overdue marking.

Line order (explicit ``sort_order`` counter):
    1. contract base items, then the contract's discount and tax lines,
       so the group sums to the signed contract total;
    2. per change order: its items, each prefixed with the change order
       number, then its tax line;
    3. additional items with a non-blank description, then a tax line at
       the invoice tax rate.

Invariants enforced:
    - sum(line_items.total) == invoice.total, read back with SQL after the
      insert rather than trusted from memory.
    - Every change_order-sourced line traces to a change order that was
      approved, for the contract's quote, at creation time.  Other ids
      are dropped silently.
    - No empty invoices: if the line insert fails the invoice row is
      deleted (Saga compensation) before InvoiceLineItemWriteError is
      raised.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_kernel.db.types import ZERO, apply_rate, line_total, round_money, to_money
from crm_kernel.domain.actors import ActingUser
from crm_kernel.domain.clock import Clock, SystemClock
from crm_kernel.domain.hooks import LifecycleHooks
from crm_kernel.exceptions import (
    ContractNotFoundError,
    InvalidStateError,
    InvoiceLineItemWriteError,
    InvoiceNotFoundError,
    ValidationError,
)
from crm_kernel.logging_config import LogContext, get_logger
from crm_kernel.services.saga import Saga
from crm_kernel.services.sequence_service import DocumentNumberService
from crm_kernel.services.share_link_service import ShareLinkService
from crm_modules.change_orders.orm import ChangeOrderModel
from crm_modules.contracts.orm import ContractModel
from crm_modules.invoices.config import InvoiceConfig
from crm_modules.invoices.models import AdditionalItem, Invoice
from crm_modules.invoices.orm import InvoiceLineItemModel, InvoiceModel
from crm_modules.invoices.workflows import INVOICE_WORKFLOW
from crm_modules.payments.orm import PaymentModel
from crm_modules.quotes.pricing import validate_rate

logger = get_logger("modules.invoices.service")


@dataclass(frozen=True)
class DraftLine:
    """A line item computed before the invoice row exists."""
    description: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    source_type: str
    source_id: UUID | None = None
    line_kind: str = "item"
    unit: str = "ea"
    category: str | None = None
    notes: str | None = None


def _tax_line(amount: Decimal, source_type: str, source_id: UUID | None, label: str) -> DraftLine:
    return DraftLine(
        description=label,
        quantity=Decimal("1"),
        unit_price=amount,
        total=amount,
        source_type=source_type,
        source_id=source_id,
        line_kind="tax",
    )


def contract_lines(contract: ContractModel, root: ContractModel) -> list[DraftLine]:
    """Base items of ``contract`` plus the discount and tax signed in ``root``.

    ``root`` is revision 1.  Later revisions carry change-order items and
    change-order tax on top, which are invoiced from the change orders.
    """
    lines = [
        DraftLine(
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total=item.line_total,
            source_type="contract",
            source_id=item.id,
            unit=item.unit or "ea",
            category=item.category,
        )
        for item in contract.line_items
        if item.source_change_order_id is None
    ]
    if root.original_discount > 0:
        lines.append(
            DraftLine(
                description="Discount",
                quantity=Decimal("1"),
                unit_price=-root.original_discount,
                total=-root.original_discount,
                source_type="contract",
                source_id=root.id,
                line_kind="discount",
            )
        )
    if root.original_tax > 0:
        lines.append(_tax_line(root.original_tax, "contract", root.id, "Sales tax"))
    return lines


def change_order_lines(change_order: ChangeOrderModel) -> list[DraftLine]:
    lines = [
        DraftLine(
            description=f"{change_order.change_order_number}: {item.description}",
            quantity=item.quantity,
            unit_price=item.unit_price,
            total=item.line_total,
            source_type="change_order",
            source_id=change_order.id,
            unit=item.unit or "ea",
            category=item.category,
            notes=f"From change order: {change_order.title}",
        )
        for item in change_order.line_items
    ]
    if change_order.tax_amount > 0:
        lines.append(
            _tax_line(
                change_order.tax_amount,
                "change_order",
                change_order.id,
                f"{change_order.change_order_number}: Sales tax",
            )
        )
    return lines


def additional_lines(items: Iterable[AdditionalItem], tax_rate: Decimal) -> list[DraftLine]:
    lines = []
    for index, item in enumerate(items):
        description = (item.description or "").strip()
        if not description:
            continue
        quantity = to_money(item.quantity, f"additional_items[{index}].quantity")
        unit_price = to_money(item.unit_price, f"additional_items[{index}].unit_price")
        lines.append(
            DraftLine(
                description=description,
                quantity=quantity,
                unit_price=unit_price,
                total=line_total(quantity, unit_price),
                source_type="additional",
                unit=item.unit or "ea",
                category=item.category,
                notes=item.notes,
            )
        )
    tax = apply_rate(sum((line.total for line in lines), ZERO), tax_rate)
    if tax > 0:
        lines.append(_tax_line(tax, "additional", None, "Sales tax on additional items"))
    return lines


class InvoiceAggregator:
    """
    Invoice assembly and lifecycle.

    Usage:
        invoices = InvoiceAggregator(session, clock, hooks=hooks)
        invoice = invoices.create_invoice(
            acting_user,
            contract_id=contract.id,
            selected_change_order_ids=[co.id],
            additional_items=[AdditionalItem("Permit fee", 1, "150.00")],
        )
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        hooks: LifecycleHooks | None = None,
        config: InvoiceConfig | None = None,
        numbering: DocumentNumberService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._hooks = hooks or LifecycleHooks()
        self._config = config or InvoiceConfig.with_defaults()
        self._numbering = numbering or DocumentNumberService(session)
        self._share_links = ShareLinkService(
            session, self._clock, ttl_days=self._config.share_link_ttl_days
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def _load(
        self, invoice_id: UUID, company_id: UUID | None = None, lock: bool = False
    ) -> InvoiceModel:
        stmt = select(InvoiceModel).where(InvoiceModel.id == invoice_id)
        if lock:
            stmt = stmt.with_for_update()
        invoice = self._session.execute(stmt).scalar_one_or_none()
        if invoice is None or invoice.deleted_at is not None:
            raise InvoiceNotFoundError(invoice_id)
        if company_id is not None and invoice.company_id != company_id:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def get(self, invoice_id: UUID, company_id: UUID | None = None) -> Invoice:
        return self._load(invoice_id, company_id).to_dto()

    def list_for_lead(self, lead_id: UUID) -> list[Invoice]:
        rows = self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.lead_id == lead_id, InvoiceModel.deleted_at.is_(None))
            .order_by(InvoiceModel.invoice_date, InvoiceModel.invoice_number)
        ).scalars()
        return [row.to_dto() for row in rows]

    # =========================================================================
    # Creation
    # =========================================================================

    def create_invoice(
        self,
        acting_user: ActingUser,
        *,
        contract_id: UUID,
        selected_change_order_ids: Sequence[UUID] = (),
        additional_items: Sequence[AdditionalItem] = (),
        invoice_date: date | None = None,
        due_date: date | None = None,
        tax_rate: Decimal | int | str = ZERO,
        payment_terms: str | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """
        Assemble and persist an invoice in ``draft`` status.

        Raises:
            ContractNotFoundError: contract missing or another company's.
            InvalidStateError: the contract is voided, or its quote has no
                active revision left.
            ValidationError: bad tax rate or amounts, due date before the
                invoice date.
            InvoiceLineItemWriteError: line items could not be written; the
                invoice row has been removed.
        """
        contract = self._session.get(ContractModel, contract_id)
        if contract is None or contract.company_id != acting_user.company_id:
            raise ContractNotFoundError(contract_id)
        if contract.status == "voided":
            raise InvalidStateError(
                "contract", contract.id, contract.status, "invoice",
                message=f"Contract {contract.contract_number} is voided",
            )
        if contract.status != "active":
            active_id = self._session.execute(
                select(ContractModel.id).where(
                    ContractModel.quote_id == contract.quote_id,
                    ContractModel.status == "active",
                )
            ).scalar_one_or_none()
            if active_id is None:
                raise InvalidStateError(
                    "contract", contract.id, contract.status, "invoice",
                    message=f"Contract {contract.contract_number} has no active revision",
                )

        rate = validate_rate(tax_rate)
        invoice_date = invoice_date or self._clock.today()
        due_date = due_date or invoice_date + timedelta(
            days=self._config.default_payment_terms_days
        )
        if due_date < invoice_date:
            raise ValidationError("due_date", "cannot be before the invoice date")

        root = self._session.execute(
            select(ContractModel).where(
                ContractModel.quote_id == contract.quote_id,
                ContractModel.revision == 1,
            )
        ).scalar_one()
        change_orders = self._approved_change_orders(contract, selected_change_order_ids)

        drafts = contract_lines(contract, root)
        for co in change_orders:
            drafts.extend(change_order_lines(co))
        drafts.extend(additional_lines(additional_items, rate))

        with LogContext.bind(company_id=contract.company_id, actor_id=acting_user.user_id):
            with Saga("create_invoice") as saga:
                number = self._numbering.next_number(
                    contract.company_id, DocumentNumberService.INVOICE, invoice_date.year
                )
                invoice = InvoiceModel(
                    company_id=contract.company_id,
                    lead_id=contract.lead_id,
                    quote_id=contract.quote_id,
                    contract_id=contract.id,
                    invoice_number=number,
                    invoice_date=invoice_date,
                    due_date=due_date,
                    payment_terms=payment_terms or self._config.payment_terms_label,
                    status="draft",
                    tax_rate=rate,
                    notes=notes,
                    created_by_id=acting_user.user_id,
                )
                self._session.add(invoice)
                self._session.flush()
                saga.record("insert_invoice", lambda: self._delete_invoice(invoice))

                try:
                    self._insert_line_items(invoice, drafts, acting_user.user_id)
                except SQLAlchemyError as exc:
                    logger.error(
                        "invoice_line_items_failed",
                        extra={
                            "invoice_id": str(invoice.id),
                            "invoice_number": number,
                            "line_count": len(drafts),
                            "error": str(exc.orig if hasattr(exc, "orig") else exc),
                        },
                    )
                    raise InvoiceLineItemWriteError(number, str(exc)) from exc

            self._refresh_totals(invoice)

            logger.info(
                "invoice_created",
                extra={
                    "invoice_id": str(invoice.id),
                    "invoice_number": invoice.invoice_number,
                    "contract_id": str(contract.id),
                    "change_order_count": len(change_orders),
                    "line_count": len(drafts),
                    "total": str(invoice.total),
                },
            )

        self._hooks.on_invoice_created(
            company_id=invoice.company_id,
            lead_id=invoice.lead_id,
            invoice_id=invoice.id,
        )
        self._session.refresh(invoice)
        return invoice.to_dto()

    def _approved_change_orders(
        self, contract: ContractModel, selected_ids: Sequence[UUID]
    ) -> list[ChangeOrderModel]:
        if not selected_ids:
            return []
        rows = list(
            self._session.execute(
                select(ChangeOrderModel)
                .where(
                    ChangeOrderModel.id.in_(list(selected_ids)),
                    ChangeOrderModel.company_id == contract.company_id,
                    ChangeOrderModel.quote_id == contract.quote_id,
                    ChangeOrderModel.status == "approved",
                    ChangeOrderModel.deleted_at.is_(None),
                )
                .order_by(ChangeOrderModel.change_order_number)
            ).scalars()
        )
        excluded = set(selected_ids) - {row.id for row in rows}
        if excluded:
            logger.info(
                "invoice_change_orders_excluded",
                extra={
                    "contract_id": str(contract.id),
                    "excluded_ids": sorted(str(i) for i in excluded),
                },
            )
        return rows

    def _insert_line_items(
        self, invoice: InvoiceModel, drafts: Sequence[DraftLine], actor_id: UUID
    ) -> None:
        """Insert every line in one savepoint; all or nothing."""
        savepoint = self._session.begin_nested()
        try:
            self._session.add_all(
                [
                    InvoiceLineItemModel(
                        invoice_id=invoice.id,
                        description=draft.description,
                        quantity=draft.quantity,
                        unit=draft.unit,
                        unit_price=draft.unit_price,
                        total=draft.total,
                        source_type=draft.source_type,
                        source_id=draft.source_id,
                        line_kind=draft.line_kind,
                        category=draft.category,
                        notes=draft.notes,
                        sort_order=sort_order,
                        created_by_id=actor_id,
                    )
                    for sort_order, draft in enumerate(drafts)
                ]
            )
            self._session.flush()
            savepoint.commit()
        except SQLAlchemyError:
            savepoint.rollback()
            raise

    def _delete_invoice(self, invoice: InvoiceModel) -> None:
        self._session.delete(invoice)
        self._session.flush()
        logger.warning(
            "invoice_compensated",
            extra={"invoice_id": str(invoice.id), "invoice_number": invoice.invoice_number},
        )

    def _refresh_totals(self, invoice: InvoiceModel) -> None:
        """Recompute totals from the persisted line items."""
        is_tax = InvoiceLineItemModel.line_kind == "tax"
        subtotal, tax, total = self._session.execute(
            select(
                func.coalesce(func.sum(case((is_tax, 0), else_=InvoiceLineItemModel.total)), 0),
                func.coalesce(func.sum(case((is_tax, InvoiceLineItemModel.total), else_=0)), 0),
                func.coalesce(func.sum(InvoiceLineItemModel.total), 0),
            ).where(InvoiceLineItemModel.invoice_id == invoice.id)
        ).one()
        invoice.subtotal = round_money(Decimal(str(subtotal)))
        invoice.tax_amount = round_money(Decimal(str(tax)))
        invoice.total = round_money(Decimal(str(total)))
        invoice.balance_due = invoice.total - invoice.amount_paid
        self._session.flush()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def mark_sent(self, invoice_id: UUID, actor: ActingUser) -> Invoice:
        """Issue (or reuse) the share link; draft -> sent.  Re-sending is allowed."""
        invoice = self._load(invoice_id, actor.company_id, lock=True)
        if invoice.status == "cancelled":
            raise InvalidStateError("invoice", invoice.id, invoice.status, "send")
        self._share_links.ensure(invoice, "invoice")
        if invoice.status == "draft":
            INVOICE_WORKFLOW.require(invoice.status, "send", entity_type="invoice", entity_id=invoice.id)
            invoice.status = "sent"
            invoice.sent_at = self._clock.now()
            invoice.updated_by_id = actor.user_id
        self._session.flush()
        logger.info("invoice_sent", extra={"invoice_id": str(invoice.id)})
        return invoice.to_dto()

    def cancel(self, invoice_id: UUID, actor: ActingUser) -> Invoice:
        """Cancel an invoice with no live payments.  Terminal."""
        invoice = self._load(invoice_id, actor.company_id, lock=True)
        live_payments = self._session.execute(
            select(func.count(PaymentModel.id)).where(
                PaymentModel.invoice_id == invoice.id,
                PaymentModel.deleted_at.is_(None),
            )
        ).scalar_one()
        if live_payments:
            raise InvalidStateError(
                "invoice", invoice.id, invoice.status, "cancel",
                message="Invoices with recorded payments cannot be cancelled",
            )
        INVOICE_WORKFLOW.require(invoice.status, "cancel", entity_type="invoice", entity_id=invoice.id)
        invoice.status = "cancelled"
        invoice.cancelled_at = self._clock.now()
        invoice.updated_by_id = actor.user_id
        self._session.flush()
        logger.info("invoice_cancelled", extra={"invoice_id": str(invoice.id)})
        return invoice.to_dto()

    def mark_overdue(self, as_of: date | None = None, company_id: UUID | None = None) -> list[Invoice]:
        """Flag sent and partially paid invoices past their due date."""
        as_of = as_of or self._clock.today()
        stmt = select(InvoiceModel).where(
            InvoiceModel.status.in_(("sent", "partial")),
            InvoiceModel.due_date < as_of,
            InvoiceModel.balance_due > 0,
            InvoiceModel.deleted_at.is_(None),
        )
        if company_id is not None:
            stmt = stmt.where(InvoiceModel.company_id == company_id)
        flagged = []
        for invoice in self._session.execute(stmt.with_for_update()).scalars():
            INVOICE_WORKFLOW.require(
                invoice.status, "mark_overdue", entity_type="invoice", entity_id=invoice.id
            )
            invoice.status = "overdue"
            flagged.append(invoice)
        self._session.flush()
        if flagged:
            logger.info(
                "invoices_marked_overdue",
                extra={"as_of": as_of, "count": len(flagged)},
            )
        return [invoice.to_dto() for invoice in flagged]
