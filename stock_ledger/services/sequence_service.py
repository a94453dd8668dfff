"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Hands out strictly increasing integers for movement seqs and repair run
    numbers.  A dedicated counter table with row-level locking
    (``SELECT ... FOR UPDATE``) keeps values unique and ordered under
    concurrent posting.

Architecture position:
    Ledger > Services.  Called by MovementWriter (``stock_movement``) and
    LedgerReconciler (``reconciliation_repair``).

Invariants enforced:
    - The locked counter row is the only source of the next value; the
      aggregate max-plus-one pattern is never used.
    - Increments become visible only when the caller's transaction commits;
      a rollback returns the values.

Failure modes:
    - IntegrityError on a concurrent first-use race (handled with a savepoint
      and a retry).
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from stock_ledger.db.base import Base
from stock_ledger.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Named counter row.  Row-level locking keeps it monotonic."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Transactional sequence numbers.

    Does NOT call ``session.commit()`` -- the caller owns the transaction.

    Usage:
        seqs = SequenceService(session).next_block("stock_movement", 2)
    """

    STOCK_MOVEMENT = "stock_movement"
    RECONCILIATION_REPAIR = "reconciliation_repair"

    def __init__(self, session: Session):
        self._session = session

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _locked_or_created(self, sequence_name: str) -> SequenceCounter:
        counter = self._lock_counter(sequence_name)
        if counter is not None:
            return counter

        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"sequence_name": sequence_name},
            )
            savepoint.rollback()
            counter = self._lock_counter(sequence_name)
            if counter is None:
                raise
        return counter

    def lock_counter(self, sequence_name: str) -> int:
        """
        Take the row lock on ``sequence_name`` without allocating.

        The lock is held until the caller's transaction ends, so a later
        ``next_block`` on the same sequence cannot be overtaken.  Returns the
        last value handed out (0 for a new counter).
        """
        return self._locked_or_created(sequence_name).current_value

    def next_block(self, sequence_name: str, count: int) -> list[int]:
        """
        Allocate ``count`` consecutive values under one lock.

        Returns:
            The allocated values in increasing order, all greater than any
            value previously returned for this sequence.
        """
        if count < 1:
            raise ValueError(f"count must be at least 1, got {count}")

        counter = self._locked_or_created(sequence_name)

        first = counter.current_value + 1
        counter.current_value += count
        self._session.flush()

        values = list(range(first, counter.current_value + 1))
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "first": first, "count": count},
        )
        return values

    def next_value(self, sequence_name: str) -> int:
        """Allocate the next single value of ``sequence_name``."""
        return self.next_block(sequence_name, 1)[0]
