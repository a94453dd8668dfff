"""
Module: stock_ledger.models.stock_movement
Responsibility: ORM persistence for the canonical stock transaction log.  One
    row is one atomic, signed change to quantity-on-hand for a
    (variation, location) pair.
Architecture position: Ledger > Models.  May import from db/ and
    domain/values.py only.

Invariants enforced:
    - Idempotency.  UNIQUE(idempotency_key) allows exactly one movement per
      (business, reference, transaction type, variation, location).
    - Monotonic ordering.  UNIQUE(seq); seq comes from the locked
      ``stock_movement`` counter and breaks transaction_date ties.
    - Append-only.  Rows are never updated or deleted, apart from the void
      trail (voided_at, voided_by, void_reason) which is set once.  Enforced
      by db/immutability.py.

Failure modes:
    - IntegrityError on a duplicate idempotency_key (concurrent duplicate
      posting; resolved by the writer to ALREADY_EXISTS).
    - ImmutabilityViolationError on UPDATE of any other column, on
      un-voiding, or on DELETE.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import TrackedBase, UTCDateTime
from stock_ledger.domain.values import DocumentReference, MovementType, ReferenceType


class StockMovement(TrackedBase):
    """A single immutable entry in the stock transaction log."""

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_stock_movement_idempotency"),
        UniqueConstraint("seq", name="uq_stock_movement_seq"),
        Index(
            "idx_stock_movement_replay",
            "business_id",
            "variation_id",
            "location_id",
            "transaction_date",
            "seq",
        ),
        Index(
            "idx_stock_movement_reference",
            "business_id",
            "reference_type",
            "reference_id",
        ),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    business_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    variation_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    location_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)

    quantity_delta: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    total_value: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    reference_type: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Business-effective date; may differ from created_at
    transaction_date: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)

    # False only for reconciliation repair markers
    affects_balance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # seq of the movement this one compensates
    reverses_seq: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    # Void trail (soft delete)
    voided_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    voided_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    @property
    def movement_type(self) -> MovementType:
        return MovementType(self.transaction_type)

    @property
    def reference(self) -> DocumentReference:
        return DocumentReference(ReferenceType(self.reference_type), self.reference_id)

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None

    @property
    def counts_toward_balance(self) -> bool:
        return self.affects_balance and self.voided_at is None

    def __repr__(self) -> str:
        return (
            f"<StockMovement #{self.seq} {self.transaction_type} "
            f"{self.quantity_delta} v={self.variation_id} l={self.location_id}>"
        )
