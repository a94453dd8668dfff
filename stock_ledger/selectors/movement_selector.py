"""
Module: stock_ledger.selectors.movement_selector
Responsibility: Read-only queries over the stock_movements log: the replay
    order shared by reconciliation and reporting, paged movement history,
    the per-pair ledger view with running balances, and document / repair
    lookups.
Architecture position: Ledger > Selectors.  May import from models/,
    domain/values.py and selectors/base.py.

Invariants enforced:
    - One replay order everywhere: (transaction_date ASC, seq ASC).
      ordered_movements() is the only place it is spelled out.
    - Balance arithmetic is Decimal, summed in Python over the replayed
      rows, never SQL aggregates over floats.
    - Voided rows and repair markers are excluded from balances.

Failure modes:
    - Empty results (not errors) when a pair has no movements.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from stock_ledger.domain.values import DocumentReference, MovementType, ReferenceType
from stock_ledger.models.stock_movement import StockMovement
from stock_ledger.selectors.base import BaseSelector

ZERO = Decimal("0")


@dataclass(frozen=True)
class MovementRecord:
    """Read-only copy of one StockMovement row."""

    movement_id: UUID
    seq: int
    business_id: int
    product_id: int
    variation_id: int
    location_id: int
    transaction_type: MovementType
    quantity_delta: Decimal
    unit_cost: Decimal | None
    total_value: Decimal | None
    reference: DocumentReference
    transaction_date: datetime
    idempotency_key: str
    affects_balance: bool
    reverses_seq: int | None
    notes: str | None
    created_by: int
    voided_at: datetime | None = None
    voided_by: int | None = None
    void_reason: str | None = None

    @classmethod
    def from_row(cls, row: StockMovement) -> "MovementRecord":
        return cls(
            movement_id=row.id,
            seq=row.seq,
            business_id=row.business_id,
            product_id=row.product_id,
            variation_id=row.variation_id,
            location_id=row.location_id,
            transaction_type=row.movement_type,
            quantity_delta=row.quantity_delta,
            unit_cost=row.unit_cost,
            total_value=row.total_value,
            reference=row.reference,
            transaction_date=row.transaction_date,
            idempotency_key=row.idempotency_key,
            affects_balance=row.affects_balance,
            reverses_seq=row.reverses_seq,
            notes=row.notes,
            created_by=row.created_by,
            voided_at=row.voided_at,
            voided_by=row.voided_by,
            void_reason=row.void_reason,
        )

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None

    @property
    def is_repair_marker(self) -> bool:
        return self.reference.reference_type is ReferenceType.RECONCILIATION

    @property
    def counts_toward_balance(self) -> bool:
        return self.affects_balance and self.voided_at is None


@dataclass(frozen=True)
class MovementPage:
    items: tuple[MovementRecord, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(frozen=True)
class LedgerEntry:
    """One ledger row: the movement split into in / out and the balance after it."""

    movement: MovementRecord
    qty_in: Decimal
    qty_out: Decimal
    running_balance: Decimal


@dataclass(frozen=True)
class LedgerView:
    """Stock card for one (variation, location) over an optional date window."""

    business_id: int
    variation_id: int
    location_id: int
    start: datetime | None
    end: datetime | None
    opening_balance: Decimal
    entries: tuple[LedgerEntry, ...]
    total_in: Decimal
    total_out: Decimal

    @property
    def net_change(self) -> Decimal:
        return self.total_in - self.total_out

    @property
    def closing_balance(self) -> Decimal:
        return self.opening_balance + self.net_change


class MovementSelector(BaseSelector[StockMovement]):
    """
    Selector for the movement log.

    Contract:
        Every balance-bearing result is derived from ordered_movements(),
        so reconciliation and the ledger view always agree.
    """

    def ordered_movements(
        self,
        business_id: int,
        variation_id: int,
        location_id: int,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        include_voided: bool = False,
        include_markers: bool = False,
    ) -> list[MovementRecord]:
        """
        Movements for one pair in replay order.

        Args:
            start: inclusive lower bound on transaction_date.
            end: inclusive upper bound on transaction_date.
            include_voided: also return voided rows.
            include_markers: also return rows that do not affect the balance
                (reconciliation repair markers).
        """
        stmt = select(StockMovement).where(
            StockMovement.business_id == business_id,
            StockMovement.variation_id == variation_id,
            StockMovement.location_id == location_id,
        )
        if start is not None:
            stmt = stmt.where(StockMovement.transaction_date >= start)
        if end is not None:
            stmt = stmt.where(StockMovement.transaction_date <= end)
        if not include_voided:
            stmt = stmt.where(StockMovement.voided_at.is_(None))
        if not include_markers:
            stmt = stmt.where(StockMovement.affects_balance.is_(True))
        stmt = stmt.order_by(StockMovement.transaction_date, StockMovement.seq)

        return [MovementRecord.from_row(row) for row in self.session.execute(stmt).scalars()]

    def balance_before(
        self,
        business_id: int,
        variation_id: int,
        location_id: int,
        before: datetime,
    ) -> tuple[Decimal, int]:
        """
        Replayed balance of all movements strictly before ``before``.

        Returns:
            (balance, number of movements folded in)
        """
        deltas = self.session.execute(
            select(StockMovement.quantity_delta).where(
                StockMovement.business_id == business_id,
                StockMovement.variation_id == variation_id,
                StockMovement.location_id == location_id,
                StockMovement.transaction_date < before,
                StockMovement.voided_at.is_(None),
                StockMovement.affects_balance.is_(True),
            )
        ).scalars().all()
        return sum(deltas, ZERO), len(deltas)

    def count_since(
        self,
        business_id: int,
        variation_id: int,
        location_id: int,
        since: datetime,
    ) -> int:
        """Live movements for the pair dated on or after ``since``."""
        return self.session.execute(
            select(func.count(StockMovement.id)).where(
                StockMovement.business_id == business_id,
                StockMovement.variation_id == variation_id,
                StockMovement.location_id == location_id,
                StockMovement.transaction_date >= since,
                StockMovement.voided_at.is_(None),
                StockMovement.affects_balance.is_(True),
            )
        ).scalar_one()

    def last_unit_cost(
        self,
        business_id: int,
        variation_id: int,
        location_id: int,
    ) -> Decimal | None:
        """Unit cost of the latest live costed movement, or None."""
        return self.session.execute(
            select(StockMovement.unit_cost)
            .where(
                StockMovement.business_id == business_id,
                StockMovement.variation_id == variation_id,
                StockMovement.location_id == location_id,
                StockMovement.unit_cost.is_not(None),
                StockMovement.voided_at.is_(None),
            )
            .order_by(StockMovement.transaction_date.desc(), StockMovement.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def history(
        self,
        business_id: int,
        variation_id: int | None = None,
        location_id: int | None = None,
        transaction_type: MovementType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        include_voided: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> MovementPage:
        """Filtered movement history, newest first."""
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        if offset < 0:
            raise ValueError(f"offset must be zero or more, got {offset}")

        conditions = [StockMovement.business_id == business_id]
        if variation_id is not None:
            conditions.append(StockMovement.variation_id == variation_id)
        if location_id is not None:
            conditions.append(StockMovement.location_id == location_id)
        if transaction_type is not None:
            conditions.append(
                StockMovement.transaction_type == MovementType(transaction_type).value
            )
        if start is not None:
            conditions.append(StockMovement.transaction_date >= start)
        if end is not None:
            conditions.append(StockMovement.transaction_date <= end)
        if not include_voided:
            conditions.append(StockMovement.voided_at.is_(None))

        total = self.session.execute(
            select(func.count(StockMovement.id)).where(*conditions)
        ).scalar_one()

        rows = self.session.execute(
            select(StockMovement)
            .where(*conditions)
            .order_by(StockMovement.transaction_date.desc(), StockMovement.seq.desc())
            .limit(limit)
            .offset(offset)
        ).scalars()

        return MovementPage(
            items=tuple(MovementRecord.from_row(row) for row in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

    def ledger(
        self,
        business_id: int,
        variation_id: int,
        location_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> LedgerView:
        """
        Stock card for one pair.

        Movements before ``start`` are folded into the opening balance; each
        entry in the window carries the running balance after it.
        """
        opening = ZERO
        if start is not None:
            opening, _ = self.balance_before(business_id, variation_id, location_id, start)

        running = opening
        total_in = ZERO
        total_out = ZERO
        entries = []
        for record in self.ordered_movements(
            business_id, variation_id, location_id, start=start, end=end
        ):
            delta = record.quantity_delta
            running += delta
            qty_in = delta if delta > 0 else ZERO
            qty_out = -delta if delta < 0 else ZERO
            total_in += qty_in
            total_out += qty_out
            entries.append(LedgerEntry(record, qty_in, qty_out, running))

        return LedgerView(
            business_id=business_id,
            variation_id=variation_id,
            location_id=location_id,
            start=start,
            end=end,
            opening_balance=opening,
            entries=tuple(entries),
            total_in=total_in,
            total_out=total_out,
        )

    def by_reference(
        self,
        business_id: int,
        reference: DocumentReference,
        include_voided: bool = True,
    ) -> list[MovementRecord]:
        """All movements pointing at one document, in seq order."""
        stmt = select(StockMovement).where(
            StockMovement.business_id == business_id,
            StockMovement.reference_type == reference.reference_type.value,
            StockMovement.reference_id == reference.reference_id,
        )
        if not include_voided:
            stmt = stmt.where(StockMovement.voided_at.is_(None))
        stmt = stmt.order_by(StockMovement.seq)
        return [MovementRecord.from_row(row) for row in self.session.execute(stmt).scalars()]

    def repair_history(
        self,
        business_id: int,
        variation_id: int | None = None,
        location_id: int | None = None,
    ) -> list[MovementRecord]:
        """Reconciliation repair markers, oldest first."""
        stmt = select(StockMovement).where(
            StockMovement.business_id == business_id,
            StockMovement.reference_type == ReferenceType.RECONCILIATION.value,
        )
        if variation_id is not None:
            stmt = stmt.where(StockMovement.variation_id == variation_id)
        if location_id is not None:
            stmt = stmt.where(StockMovement.location_id == location_id)
        stmt = stmt.order_by(StockMovement.seq)
        return [MovementRecord.from_row(row) for row in self.session.execute(stmt).scalars()]
