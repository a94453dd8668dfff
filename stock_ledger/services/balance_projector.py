"""
BalanceProjector -- incremental quantity-on-hand projection.

Responsibility:
    Maintains one BalanceSnapshot per (business, variation, location) as an
    always-current projection of the movement log, and answers balance and
    availability queries from the snapshot alone (no log replay).

Architecture position:
    Ledger > Services.  Called by MovementWriter inside the append savepoint
    and by LedgerReconciler.repair().  Together with the writer it is the
    only code path that mutates balance_snapshots.

Invariants enforced:
    - No lost updates: every delta is applied to a row locked with
      ``SELECT ... FOR UPDATE``; the snapshot's ``version`` column catches
      anything the lock did not (StaleDataError -> bounded retry ->
      OptimisticLockError).
    - No oversell: a delta that would take the balance below zero raises
      InsufficientStockError before anything is written, unless backorder
      is allowed.
    - Lazy creation: the first delta for a pair creates its row inside a
      savepoint; a concurrent creator is tolerated.

Failure modes:
    - InsufficientStockError (business rule; surfaced to the user).
    - OptimisticLockError after ``max_lock_retries`` version conflicts.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stock_ledger.config import LedgerConfig
from stock_ledger.exceptions import InsufficientStockError, OptimisticLockError
from stock_ledger.logging_config import get_logger
from stock_ledger.models.balance_snapshot import BalanceSnapshot

logger = get_logger("services.balance_projector")

ZERO = Decimal("0")


@dataclass(frozen=True)
class AvailabilityCheck:
    """Whether ``requested`` units can leave a location right now."""

    variation_id: int
    location_id: int
    requested: Decimal
    current_stock: Decimal
    available: bool
    shortage: Decimal


@dataclass(frozen=True)
class BatchAvailability:
    checks: tuple[AvailabilityCheck, ...]

    @property
    def all_available(self) -> bool:
        return all(c.available for c in self.checks)

    @property
    def shortages(self) -> tuple[AvailabilityCheck, ...]:
        return tuple(c for c in self.checks if not c.available)


class BalanceProjector:
    """
    Snapshot maintenance and point reads.

    Contract:
        Never commits; flushes inside savepoints so a failure leaves the
        caller's unit of work untouched.
    """

    def __init__(self, session: Session, config: LedgerConfig | None = None):
        self._session = session
        self._config = config or LedgerConfig.with_defaults()

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _lock_snapshot(
        self, business_id: int, variation_id: int, location_id: int
    ) -> BalanceSnapshot | None:
        return self._session.execute(
            select(BalanceSnapshot)
            .where(
                BalanceSnapshot.business_id == business_id,
                BalanceSnapshot.variation_id == variation_id,
                BalanceSnapshot.location_id == location_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_or_create(
        self,
        business_id: int,
        product_id: int,
        variation_id: int,
        location_id: int,
        actor_id: int,
    ) -> BalanceSnapshot:
        snapshot = self._lock_snapshot(business_id, variation_id, location_id)
        if snapshot is not None:
            return snapshot

        savepoint = self._session.begin_nested()
        try:
            snapshot = BalanceSnapshot(
                business_id=business_id,
                product_id=product_id,
                variation_id=variation_id,
                location_id=location_id,
                qty_available=ZERO,
                created_by=actor_id,
            )
            self._session.add(snapshot)
            self._session.flush()
            savepoint.commit()
            logger.debug(
                "balance_snapshot_created",
                extra={"variation_id": variation_id, "location_id": location_id},
            )
            return snapshot
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "balance_snapshot_create_race",
                extra={"variation_id": variation_id, "location_id": location_id},
            )
            snapshot = self._lock_snapshot(business_id, variation_id, location_id)
            if snapshot is None:
                raise
            return snapshot

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply_delta(
        self,
        business_id: int,
        product_id: int,
        variation_id: int,
        location_id: int,
        delta: Decimal,
        *,
        actor_id: int,
        movement_seq: int | None = None,
        allow_negative: bool | None = None,
    ) -> Decimal:
        """
        Atomically add ``delta`` to the pair's balance.

        Args:
            allow_negative: per-call backorder override; None uses
                ``LedgerConfig.allow_negative_stock``.

        Returns:
            The new balance.

        Raises:
            InsufficientStockError: would go negative and backorder is off.
            OptimisticLockError: version conflicts exhausted the retries.
        """
        allow = self._config.allow_negative_stock if allow_negative is None else allow_negative
        attempts = self._config.max_lock_retries

        for attempt in range(1, attempts + 1):
            try:
                with self._session.begin_nested():
                    snapshot = self.lock_or_create(
                        business_id, product_id, variation_id, location_id, actor_id
                    )
                    previous = snapshot.qty_available
                    new_balance = previous + delta

                    if delta < 0 and new_balance < 0:
                        if not allow:
                            logger.warning(
                                "insufficient_stock_rejected",
                                extra={
                                    "variation_id": variation_id,
                                    "location_id": location_id,
                                    "available": previous,
                                    "requested": -delta,
                                },
                            )
                            raise InsufficientStockError(
                                variation_id, location_id, available=previous, requested=-delta
                            )
                        logger.warning(
                            "negative_balance_allowed",
                            extra={
                                "variation_id": variation_id,
                                "location_id": location_id,
                                "new_balance": new_balance,
                            },
                        )

                    snapshot.qty_available = new_balance
                    snapshot.last_movement_seq = movement_seq
                    snapshot.updated_by = actor_id
                    self._session.flush()
            except StaleDataError:
                logger.warning(
                    "balance_version_conflict_retry",
                    extra={
                        "variation_id": variation_id,
                        "location_id": location_id,
                        "attempt": attempt,
                    },
                )
                continue

            logger.debug(
                "balance_delta_applied",
                extra={
                    "variation_id": variation_id,
                    "location_id": location_id,
                    "delta": delta,
                    "previous_balance": previous,
                    "new_balance": new_balance,
                    "movement_seq": movement_seq,
                },
            )
            return new_balance

        raise OptimisticLockError(
            "BalanceSnapshot", f"{variation_id}@{location_id}", attempts=attempts
        )

    def reset_balance(
        self,
        business_id: int,
        product_id: int,
        variation_id: int,
        location_id: int,
        quantity: Decimal,
        *,
        actor_id: int,
        movement_seq: int | None = None,
    ) -> tuple[Decimal, Decimal]:
        """
        Overwrite the pair's balance.  Used only by reconciliation repair.

        Returns:
            (previous balance, new balance)
        """
        snapshot = self.lock_or_create(
            business_id, product_id, variation_id, location_id, actor_id
        )
        previous = snapshot.qty_available
        snapshot.qty_available = quantity
        snapshot.last_movement_seq = movement_seq
        snapshot.updated_by = actor_id
        self._session.flush()
        return previous, quantity

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current_balance(self, business_id: int, variation_id: int, location_id: int) -> Decimal:
        """Snapshot quantity for the pair; zero when no row exists yet."""
        qty = self._session.execute(
            select(BalanceSnapshot.qty_available).where(
                BalanceSnapshot.business_id == business_id,
                BalanceSnapshot.variation_id == variation_id,
                BalanceSnapshot.location_id == location_id,
            )
        ).scalar_one_or_none()
        return qty if qty is not None else ZERO

    def check_availability(
        self,
        business_id: int,
        variation_id: int,
        location_id: int,
        quantity: Decimal,
    ) -> AvailabilityCheck:
        """Compare ``quantity`` with the current balance (read-only, no lock)."""
        current = self.current_balance(business_id, variation_id, location_id)
        shortage = quantity - current if quantity > current else ZERO
        return AvailabilityCheck(
            variation_id=variation_id,
            location_id=location_id,
            requested=quantity,
            current_stock=current,
            available=current >= quantity,
            shortage=shortage,
        )

    def check_availability_batch(
        self,
        business_id: int,
        items: Iterable[tuple[int, int, Decimal]],
    ) -> BatchAvailability:
        """Check several (variation_id, location_id, quantity) requests."""
        return BatchAvailability(
            checks=tuple(
                self.check_availability(business_id, variation_id, location_id, quantity)
                for variation_id, location_id, quantity in items
            )
        )
