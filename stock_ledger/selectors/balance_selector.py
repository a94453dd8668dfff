"""
Module: stock_ledger.selectors.balance_selector
Responsibility: Read-only queries over balance_snapshots: current stock by
    business or location, low / zero stock lists, and the set of pairs the
    reconciler should visit.
Architecture position: Ledger > Selectors.  May import from models/ and
    selectors/base.py.

Snapshots are the fast path; they are verified against the log by
LedgerReconciler, never here.
"""

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select

from stock_ledger.models.balance_snapshot import BalanceSnapshot
from stock_ledger.models.stock_movement import StockMovement
from stock_ledger.selectors.base import BaseSelector


@dataclass(frozen=True)
class BalanceRecord:
    business_id: int
    product_id: int
    variation_id: int
    location_id: int
    qty_available: Decimal
    last_movement_seq: int | None
    version: int

    @classmethod
    def from_row(cls, row: BalanceSnapshot) -> "BalanceRecord":
        return cls(
            business_id=row.business_id,
            product_id=row.product_id,
            variation_id=row.variation_id,
            location_id=row.location_id,
            qty_available=row.qty_available,
            last_movement_seq=row.last_movement_seq,
            version=row.version,
        )


class BalanceSelector(BaseSelector[BalanceSnapshot]):
    """Selector for stored balances."""

    def _query(self, business_id: int, location_id: int | None):
        stmt = select(BalanceSnapshot).where(BalanceSnapshot.business_id == business_id)
        if location_id is not None:
            stmt = stmt.where(BalanceSnapshot.location_id == location_id)
        return stmt.order_by(BalanceSnapshot.location_id, BalanceSnapshot.variation_id)

    def get(self, business_id: int, variation_id: int, location_id: int) -> BalanceRecord | None:
        row = self.session.execute(
            select(BalanceSnapshot).where(
                BalanceSnapshot.business_id == business_id,
                BalanceSnapshot.variation_id == variation_id,
                BalanceSnapshot.location_id == location_id,
            )
        ).scalar_one_or_none()
        return BalanceRecord.from_row(row) if row is not None else None

    def balances(self, business_id: int, location_id: int | None = None) -> list[BalanceRecord]:
        """Every snapshot of the business (optionally one location)."""
        return [
            BalanceRecord.from_row(row)
            for row in self.session.execute(self._query(business_id, location_id)).scalars()
        ]

    def low_stock(
        self,
        business_id: int,
        threshold: Decimal,
        location_id: int | None = None,
    ) -> list[BalanceRecord]:
        """In-stock pairs at or below ``threshold``.  Out-of-stock pairs are in zero_stock()."""
        stmt = self._query(business_id, location_id).where(
            BalanceSnapshot.qty_available > 0,
            BalanceSnapshot.qty_available <= threshold,
        )
        return [BalanceRecord.from_row(row) for row in self.session.execute(stmt).scalars()]

    def zero_stock(self, business_id: int, location_id: int | None = None) -> list[BalanceRecord]:
        """Pairs with nothing on hand (zero or backordered)."""
        stmt = self._query(business_id, location_id).where(BalanceSnapshot.qty_available <= 0)
        return [BalanceRecord.from_row(row) for row in self.session.execute(stmt).scalars()]

    def pairs(self, business_id: int, location_id: int | None = None) -> list[tuple[int, int]]:
        """
        Sorted (variation_id, location_id) pairs that have a snapshot or a
        movement.  A movement without a snapshot is itself a drift.
        """
        snap = select(BalanceSnapshot.variation_id, BalanceSnapshot.location_id).where(
            BalanceSnapshot.business_id == business_id
        )
        moves = select(StockMovement.variation_id, StockMovement.location_id).where(
            StockMovement.business_id == business_id
        )
        if location_id is not None:
            snap = snap.where(BalanceSnapshot.location_id == location_id)
            moves = moves.where(StockMovement.location_id == location_id)

        found = {(v, l) for v, l in self.session.execute(snap)}
        found.update((v, l) for v, l in self.session.execute(moves.distinct()))
        return sorted(found)
