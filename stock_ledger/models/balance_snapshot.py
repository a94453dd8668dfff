"""
Module: stock_ledger.models.balance_snapshot
Responsibility: ORM persistence for the current quantity-on-hand projection,
    one row per (business, variation, location).
Architecture position: Ledger > Models.  May import from db/ only.

Invariants enforced:
    - One row per pair: UNIQUE(business_id, variation_id, location_id).
    - qty_available equals the sum of quantity_delta over the pair's
      non-voided, balance-affecting movements.  Maintained incrementally by
      BalanceProjector; verified and repaired by LedgerReconciler.
    - Lost updates are detected by the ``version`` column (optimistic
      concurrency) in addition to the row lock taken by the projector.

Failure modes:
    - IntegrityError when two transactions lazily create the same pair's
      row (the projector retries inside a savepoint).
    - StaleDataError when the version moved underneath an UPDATE.
"""

from decimal import Decimal

from sqlalchemy import BigInteger, Index, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import TrackedBase


class BalanceSnapshot(TrackedBase):
    """Current quantity-on-hand for one variation at one location."""

    __tablename__ = "balance_snapshots"

    __table_args__ = (
        UniqueConstraint(
            "business_id",
            "variation_id",
            "location_id",
            name="uq_balance_snapshot_pair",
        ),
        Index("idx_balance_snapshot_location", "business_id", "location_id"),
    )

    business_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    variation_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    location_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    qty_available: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    # seq of the last movement applied to this row
    last_movement_seq: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<BalanceSnapshot v={self.variation_id} l={self.location_id} "
            f"qty={self.qty_available} ver={self.version}>"
        )
