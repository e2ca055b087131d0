"""
CommissionEligibilityEngine -- per-role commissions and their paid_when policy.

Responsibility:
    Keeps one live commission per (lead, role) for every assigned role,
    recomputes pending amounts from the live quote total, and moves a
    commission to ``eligible`` once its paid_when event has occurred.

Eligibility facts:
    when_contract_signed  the lead has an active contract revision
    when_deposit_paid     at least one settled payment on the lead
    when_invoiced         the lead has a live invoice and a settled payment
    when_final_paid       settled payments cover the lead's invoiced total

    "Settled" is PaymentLedger's single notion: cleared and not deleted.
    A recorded but uncleared payment never makes a commission eligible.

Invariants enforced:
    - At most one live commission per (lead, role) (partial unique index).
    - Eligibility is forward-only; eligible amounts are frozen.
    - Roles are independent unless the caller passes
      ``AssignmentPolicy.EXCLUSIVE_ASSIGNMENT``.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_kernel.db.types import ZERO, round_money, to_money
from crm_kernel.domain.actors import ActingUser
from crm_kernel.domain.clock import Clock, SystemClock
from crm_kernel.exceptions import (
    CommissionNotFoundError,
    DuplicateSubmissionError,
    ValidationError,
)
from crm_kernel.logging_config import LogContext, get_logger
from crm_modules.commissions.config import CommissionConfig
from crm_modules.commissions.models import (
    AssignmentPolicy,
    Commission,
    CommissionRole,
    CommissionSummary,
    CommissionType,
    PaidWhen,
)
from crm_modules.commissions.orm import CommissionModel
from crm_modules.commissions.workflows import COMMISSION_WORKFLOW, LIVE_STATUSES
from crm_modules.contracts.service import ContractSnapshotService
from crm_modules.payments.models import LeadSettlement
from crm_modules.payments.service import PaymentLedger
from crm_modules.quotes.orm import QuoteModel

logger = get_logger("modules.commissions.service")

_HUNDRED = Decimal("100")


def calculate_commission(
    commission_type: CommissionType | str,
    rate_or_amount: Decimal | int | str,
    base_amount: Decimal | int | str,
) -> Decimal:
    """
    Commission amount for a base.

    ``percentage`` rates are whole percents (10 means 10%); ``flat_amount``
    and ``custom`` pay ``rate_or_amount`` regardless of the base.
    """
    commission_type = CommissionType(commission_type)
    rate = to_money(rate_or_amount, "rate_or_amount")
    if commission_type is CommissionType.PERCENTAGE:
        return round_money(to_money(base_amount, "base_amount") * rate / _HUNDRED)
    return round_money(rate)


def paid_when_satisfied(
    paid_when: PaidWhen,
    contract_exists: bool,
    settlement: LeadSettlement,
) -> bool:
    if paid_when is PaidWhen.WHEN_CONTRACT_SIGNED:
        return contract_exists
    if paid_when is PaidWhen.WHEN_DEPOSIT_PAID:
        return settlement.has_cleared_payment
    if paid_when is PaidWhen.WHEN_INVOICED:
        return settlement.invoice_count > 0 and settlement.has_cleared_payment
    return settlement.fully_settled


class CommissionEligibilityEngine:
    """
    Commission assignment, eligibility and payout.

    Usage:
        engine = CommissionEligibilityEngine(session, clock)
        engine.assign(
            acting_user, lead_id=lead_id, role="sales_rep", user_id=rep_id,
            commission_type="percentage", rate_or_amount=Decimal("10"),
            paid_when="when_deposit_paid",
        )
        engine.evaluate_lead(lead_id)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: CommissionConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or CommissionConfig.with_defaults()
        self._contracts = ContractSnapshotService(session, self._clock)
        self._ledger = PaymentLedger(session, self._clock)

    # =========================================================================
    # Queries
    # =========================================================================

    def _load(
        self, commission_id: UUID, company_id: UUID | None = None, lock: bool = False
    ) -> CommissionModel:
        stmt = select(CommissionModel).where(CommissionModel.id == commission_id)
        if lock:
            stmt = stmt.with_for_update()
        row = self._session.execute(stmt).scalar_one_or_none()
        if row is None or row.deleted_at is not None:
            raise CommissionNotFoundError(commission_id)
        if company_id is not None and row.company_id != company_id:
            raise CommissionNotFoundError(commission_id)
        return row

    def _live(self, lead_id: UUID, role: str | None = None) -> list[CommissionModel]:
        stmt = (
            select(CommissionModel)
            .where(
                CommissionModel.lead_id == lead_id,
                CommissionModel.status.in_(LIVE_STATUSES),
                CommissionModel.deleted_at.is_(None),
            )
            .order_by(CommissionModel.created_at)
            .with_for_update()
        )
        if role is not None:
            stmt = stmt.where(CommissionModel.role == role)
        return list(self._session.execute(stmt).scalars())

    def get(self, commission_id: UUID, company_id: UUID | None = None) -> Commission:
        return self._load(commission_id, company_id).to_dto()

    def list_for_lead(self, lead_id: UUID, include_closed: bool = True) -> list[Commission]:
        stmt = (
            select(CommissionModel)
            .where(
                CommissionModel.lead_id == lead_id,
                CommissionModel.deleted_at.is_(None),
            )
            .order_by(CommissionModel.created_at)
        )
        if not include_closed:
            stmt = stmt.where(CommissionModel.status.in_(LIVE_STATUSES))
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    def _base_quote(self, lead_id: UUID, quote_id: UUID | None) -> QuoteModel | None:
        """The quote a commission is based on: the given one, else the lead's accepted one."""
        stmt = select(QuoteModel).where(
            QuoteModel.lead_id == lead_id,
            QuoteModel.deleted_at.is_(None),
        )
        if quote_id is not None:
            return self._session.execute(stmt.where(QuoteModel.id == quote_id)).scalar_one_or_none()
        accepted_first = case((QuoteModel.status == "accepted", 0), else_=1)
        return self._session.execute(
            stmt.order_by(accepted_first, QuoteModel.created_at.desc()).limit(1)
        ).scalar_one_or_none()

    # =========================================================================
    # Assignment
    # =========================================================================

    def assign(
        self,
        acting_user: ActingUser,
        *,
        lead_id: UUID,
        role: CommissionRole | str,
        user_id: UUID,
        commission_type: CommissionType | str,
        rate_or_amount: Decimal | int | str,
        paid_when: PaidWhen | str | None = None,
        quote_id: UUID | None = None,
        policy: AssignmentPolicy | None = None,
    ) -> Commission:
        """
        Create or refresh the live commission for (lead, role).

        Reassigning the role to another user cancels the previous live
        commission.  Assigning the same user again updates the terms of a
        pending commission and leaves an eligible one untouched.

        Raises:
            ValidationError: unknown role/type/paid_when, a negative rate, or
                a quote_id that is not one of the lead's quotes.
            DuplicateSubmissionError: a concurrent assignment won the race.
        """
        try:
            role = CommissionRole(role)
            commission_type = CommissionType(commission_type)
            paid_when = PaidWhen(paid_when) if paid_when else self._config.default_paid_when
        except ValueError as exc:
            raise ValidationError("commission", str(exc)) from None
        policy = AssignmentPolicy(policy) if policy else self._config.default_policy
        rate = to_money(rate_or_amount, "rate_or_amount")
        if rate < 0:
            raise ValidationError("rate_or_amount", "must not be negative")
        if commission_type is CommissionType.PERCENTAGE and rate > _HUNDRED:
            raise ValidationError("rate_or_amount", "percentage must be at most 100")
        if quote_id is not None and self._base_quote(lead_id, quote_id) is None:
            raise ValidationError("quote_id", "is not a quote of this lead")

        with LogContext.bind(company_id=acting_user.company_id, actor_id=acting_user.user_id):
            existing = self._live(lead_id, role.value)
            for row in existing:
                if row.user_id == user_id:
                    if row.status == "pending":
                        row.commission_type = commission_type.value
                        row.rate_or_amount = rate
                        row.paid_when = paid_when.value
                        row.updated_by_id = acting_user.user_id
                        self._refresh_amount(row)
                        self._session.flush()
                        logger.info(
                            "commission_terms_updated",
                            extra={"commission_id": str(row.id), "role": role.value},
                        )
                    self._cancel_siblings(lead_id, role, policy, acting_user)
                    self._evaluate_rows(lead_id, [row])
                    return row.to_dto()
                self._cancel(row, "reassigned", acting_user)

            self._cancel_siblings(lead_id, role, policy, acting_user)

            quote = self._base_quote(lead_id, quote_id)
            base = quote.total_amount if quote is not None else ZERO
            row = CommissionModel(
                company_id=acting_user.company_id,
                lead_id=lead_id,
                quote_id=quote.id if quote is not None else None,
                user_id=user_id,
                role=role.value,
                commission_type=commission_type.value,
                rate_or_amount=rate,
                base_amount=base,
                calculated_amount=calculate_commission(commission_type, rate, base),
                paid_when=paid_when.value,
                status=COMMISSION_WORKFLOW.initial_state,
                created_by_id=acting_user.user_id,
            )
            try:
                with self._session.begin_nested():
                    self._session.add(row)
                    self._session.flush()
            except IntegrityError:
                logger.warning(
                    "commission_assignment_conflict",
                    extra={"lead_id": str(lead_id), "role": role.value},
                )
                raise DuplicateSubmissionError(
                    f"A commission for role {role.value} on this lead was just assigned"
                ) from None

            logger.info(
                "commission_assigned",
                extra={
                    "commission_id": str(row.id),
                    "lead_id": str(lead_id),
                    "role": role.value,
                    "user_id": str(user_id),
                    "paid_when": paid_when.value,
                    "calculated_amount": str(row.calculated_amount),
                },
            )
            self._evaluate_rows(lead_id, [row])
            return row.to_dto()

    def unassign(
        self,
        acting_user: ActingUser,
        *,
        lead_id: UUID,
        role: CommissionRole | str,
        reason: str | None = None,
    ) -> list[Commission]:
        """Cancel the live commission for (lead, role), if any."""
        role = CommissionRole(role)
        cancelled = []
        for row in self._live(lead_id, role.value):
            if row.company_id != acting_user.company_id:
                continue
            self._cancel(row, reason or "unassigned", acting_user)
            cancelled.append(row.to_dto())
        return cancelled

    def _cancel_siblings(
        self,
        lead_id: UUID,
        role: CommissionRole,
        policy: AssignmentPolicy,
        acting_user: ActingUser,
    ) -> None:
        if policy is not AssignmentPolicy.EXCLUSIVE_ASSIGNMENT:
            return
        for row in self._live(lead_id):
            if row.role != role.value:
                self._cancel(row, f"exclusive assignment of {role.value}", acting_user)

    def _cancel(self, row: CommissionModel, reason: str, acting_user: ActingUser) -> None:
        COMMISSION_WORKFLOW.require(
            row.status, "cancel", entity_type="commission", entity_id=row.id
        )
        previous = row.status
        row.status = "cancelled"
        row.cancelled_at = self._clock.now()
        row.cancellation_reason = reason
        row.updated_by_id = acting_user.user_id
        self._session.flush()
        logger.info(
            "commission_cancelled",
            extra={
                "commission_id": str(row.id),
                "role": row.role,
                "from_status": previous,
                "reason": reason,
            },
        )

    # =========================================================================
    # Eligibility
    # =========================================================================

    def evaluate_lead(self, lead_id: UUID) -> list[Commission]:
        """
        Re-evaluate every live commission on the lead.

        Called by the lifecycle hooks after contract signing, change-order
        approval, invoice creation and payment events.  Returns the live
        commissions after evaluation.
        """
        rows = self._live(lead_id)
        if not rows:
            return []
        self._evaluate_rows(lead_id, rows)
        return [row.to_dto() for row in rows]

    def _evaluate_rows(self, lead_id: UUID, rows: list[CommissionModel]) -> None:
        contract_exists = self._contracts.contract_exists_for_lead(lead_id)
        settlement = self._ledger.settlement_for_lead(lead_id)

        for row in rows:
            if row.status != "pending":
                continue
            if self._config.recalculate_pending:
                self._refresh_amount(row)
            if not paid_when_satisfied(PaidWhen(row.paid_when), contract_exists, settlement):
                continue
            COMMISSION_WORKFLOW.require(
                row.status, "evaluate", entity_type="commission", entity_id=row.id
            )
            row.status = "eligible"
            row.eligible_at = self._clock.now()
            logger.info(
                "commission_eligible",
                extra={
                    "commission_id": str(row.id),
                    "lead_id": str(lead_id),
                    "role": row.role,
                    "paid_when": row.paid_when,
                    "calculated_amount": str(row.calculated_amount),
                    "cleared_total": str(settlement.cleared_total),
                },
            )
        self._session.flush()

    def _refresh_amount(self, row: CommissionModel) -> None:
        quote = self._base_quote(row.lead_id, row.quote_id)
        if quote is not None:
            row.quote_id = quote.id
            row.base_amount = quote.total_amount
        row.calculated_amount = calculate_commission(
            row.commission_type, row.rate_or_amount, row.base_amount
        )

    # =========================================================================
    # Payout
    # =========================================================================

    def mark_paid(
        self,
        commission_id: UUID,
        acting_user: ActingUser,
        *,
        paid_amount: Decimal | int | str | None = None,
        reference: str | None = None,
    ) -> Commission:
        """
        Record the payout of an eligible commission.

        ``paid_amount`` defaults to the calculated amount.

        Raises:
            CommissionNotFoundError, InvalidTransitionError (not eligible),
            ValidationError (non-positive amount).
        """
        row = self._load(commission_id, acting_user.company_id, lock=True)
        COMMISSION_WORKFLOW.require(row.status, "pay", entity_type="commission", entity_id=row.id)
        amount = row.calculated_amount if paid_amount is None else to_money(paid_amount, "paid_amount")
        amount = round_money(amount)
        if amount <= 0:
            raise ValidationError("paid_amount", "must be positive")

        row.status = "paid"
        row.paid_amount = amount
        row.paid_at = self._clock.now()
        row.paid_by_id = acting_user.user_id
        row.payment_reference = reference
        row.updated_by_id = acting_user.user_id
        self._session.flush()

        logger.info(
            "commission_paid",
            extra={
                "commission_id": str(row.id),
                "user_id": str(row.user_id),
                "paid_amount": str(amount),
                "calculated_amount": str(row.calculated_amount),
            },
        )
        return row.to_dto()

    def summary_for_user(self, user_id: UUID, company_id: UUID) -> CommissionSummary:
        rows = self._session.execute(
            select(
                CommissionModel.status,
                func.count(CommissionModel.id),
                func.coalesce(func.sum(CommissionModel.calculated_amount), 0),
                func.coalesce(func.sum(CommissionModel.paid_amount), 0),
            )
            .where(
                CommissionModel.user_id == user_id,
                CommissionModel.company_id == company_id,
                CommissionModel.deleted_at.is_(None),
            )
            .group_by(CommissionModel.status)
        ).all()
        by_status = {
            status: (count, round_money(Decimal(str(calculated))), round_money(Decimal(str(paid))))
            for status, count, calculated, paid in rows
        }
        empty = (0, ZERO, ZERO)
        eligible = by_status.get("eligible", empty)
        paid = by_status.get("paid", empty)
        pending = by_status.get("pending", empty)
        return CommissionSummary(
            user_id=user_id,
            total_owed=eligible[1],
            total_paid=paid[2],
            total_pending=pending[1],
            count_eligible=eligible[0],
            count_paid=paid[0],
            count_pending=pending[0],
        )
