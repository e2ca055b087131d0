"""
SequenceService -- per-company document numbering via locked counter rows.

Responsibility:
    Allocates collision-free document numbers (``INV-2024-001``,
    ``CO-2024-003``, ``PAY-2024-010``, ``CTR-2024-002``) per company and
    calendar year.  A dedicated counter table row is locked with
    ``SELECT ... FOR UPDATE`` so concurrent callers in different
    processes never receive the same number.

Invariants enforced:
    - Numbers come only from the locked counter row; max(number)+1 over
      the document table is never used.
    - The increment is part of the caller's transaction.  A rollback
      returns the number.

Failure modes:
    - IntegrityError when two callers create the same counter row at once;
      handled with a savepoint rollback and a locked re-read.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from crm_kernel.db.base import Base
from crm_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Each row is a named sequence with its current value."""

    __tablename__ = "sequence_counters"

    # "<company_id>:<kind>:<year>"
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Transactional sequence allocation.

    Usage:
        seq = SequenceService(session).next_value("acme:invoice:2024")
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock (or create) the counter row, increment it, return the new value.

        Returns:
            The next sequence value (always > 0).
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use.  Another transaction may create the row at the same
            # moment; the savepoint keeps the caller's work intact if so.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Reset a sequence to a specific value.

        Only for tests and data migrations.
        """
        counter = self._locked_counter(sequence_name)
        if counter is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
        else:
            counter.current_value = value
        self._session.flush()


@dataclass(frozen=True)
class NumberFormat:
    """``PREFIX-YYYY-NNN``; the counter resets each calendar year."""

    prefix: str
    width: int = 3

    def render(self, year: int, value: int) -> str:
        return f"{self.prefix}-{year}-{value:0{self.width}d}"


class DocumentNumberService:
    """
    Formats sequence values into document numbers, scoped by company.

    Contract:
        ``next_number(company_id, "invoice", 2024)`` returns
        ``INV-2024-001`` for the first invoice of that company in 2024.
    """

    INVOICE = "invoice"
    CHANGE_ORDER = "change_order"
    PAYMENT = "payment"
    CONTRACT = "contract"

    def __init__(
        self,
        session: Session,
        formats: dict[str, NumberFormat] | None = None,
    ):
        self._sequences = SequenceService(session)
        self._formats = formats or {
            self.INVOICE: NumberFormat("INV"),
            self.CHANGE_ORDER: NumberFormat("CO"),
            self.PAYMENT: NumberFormat("PAY"),
            self.CONTRACT: NumberFormat("CTR"),
        }

    @staticmethod
    def sequence_name(company_id: UUID, kind: str, year: int) -> str:
        return f"{company_id}:{kind}:{year}"

    def next_number(self, company_id: UUID, kind: str, year: int) -> str:
        try:
            fmt = self._formats[kind]
        except KeyError:
            raise ValueError(f"Unknown document kind: {kind}") from None
        value = self._sequences.next_value(self.sequence_name(company_id, kind, year))
        number = fmt.render(year, value)
        logger.info(
            "document_number_allocated",
            extra={"company_id": str(company_id), "kind": kind, "number": number},
        )
        return number
