"""
MovementWriter -- the transaction log writer.

Responsibility:
    Appends classified movement intents to the stock_movements log as one
    atomic unit and, in the same unit of work, applies each delta to the
    balance snapshot through the BalanceProjector.  Also performs the
    soft-delete (void) of movements belonging to voided documents.

Architecture position:
    Ledger > Services.  The single write path for stock_movements.  Called
    by StockPostingService, TransferService and LedgerReconciler.

Invariants enforced:
    - Atomicity: all intents of one append (a transfer's out/in pair, every
      line of a document) are written inside one savepoint, or none are.
    - Log/snapshot coupling: a movement and its snapshot update commit or
      roll back together.
    - Idempotency: one row per idempotency key.  A repeated call is a no-op
      returning the prior movements (ALREADY_EXISTS).  A lost insert race
      (unique violation at flush) resolves the same way.
    - Sign conventions are re-checked for every intent.
    - Deadlock avoidance: the ``stock_movement`` counter is locked before
      any snapshot, and snapshots are locked in (variation, location) order.
      LedgerReconciler.repair takes the same order.

Failure modes:
    - DuplicateMovementError (strict mode only; carries the prior result).
    - IdempotencyConflictError when only some keys of a call exist.
    - ValidationError / InvalidDeltaError on malformed intents.
    - InsufficientStockError from the projector.
    - PersistenceError wrapping any SQLAlchemyError; nothing is left behind.
"""

import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from stock_ledger.config import LedgerConfig
from stock_ledger.domain.classifier import MovementIntent, validate_delta
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.exceptions import (
    DuplicateMovementError,
    IdempotencyConflictError,
    MovementNotFoundError,
    PersistenceError,
    ValidationError,
)
from stock_ledger.logging_config import LogContext, get_logger
from stock_ledger.models.stock_movement import StockMovement
from stock_ledger.services.balance_projector import BalanceProjector
from stock_ledger.services.sequence_service import SequenceService

logger = get_logger("services.movement_writer")


class AppendStatus(str, Enum):
    WRITTEN = "written"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class PostedMovement:
    """A movement row as seen by the caller after an append."""

    movement_id: UUID
    seq: int
    transaction_type: str
    variation_id: int
    location_id: int
    quantity_delta: Decimal
    idempotency_key: str
    balance_after: Decimal | None = None

    @classmethod
    def from_row(cls, row: StockMovement, balance_after: Decimal | None = None) -> "PostedMovement":
        return cls(
            movement_id=row.id,
            seq=row.seq,
            transaction_type=row.transaction_type,
            variation_id=row.variation_id,
            location_id=row.location_id,
            quantity_delta=row.quantity_delta,
            idempotency_key=row.idempotency_key,
            balance_after=balance_after,
        )


@dataclass(frozen=True)
class AppendResult:
    """Outcome of MovementWriter.append().  Both statuses are success."""

    status: AppendStatus
    movements: tuple[PostedMovement, ...]

    @classmethod
    def written(cls, movements: Sequence[PostedMovement]) -> "AppendResult":
        return cls(status=AppendStatus.WRITTEN, movements=tuple(movements))

    @classmethod
    def already_exists(cls, movements: Sequence[PostedMovement]) -> "AppendResult":
        return cls(status=AppendStatus.ALREADY_EXISTS, movements=tuple(movements))

    @property
    def is_success(self) -> bool:
        return self.status in (AppendStatus.WRITTEN, AppendStatus.ALREADY_EXISTS)

    @property
    def is_duplicate(self) -> bool:
        return self.status == AppendStatus.ALREADY_EXISTS

    @property
    def seqs(self) -> tuple[int, ...]:
        return tuple(m.seq for m in self.movements)


@dataclass(frozen=True)
class VoidResult:
    voided: tuple[PostedMovement, ...]
    skipped_seqs: tuple[int, ...]


class MovementWriter:
    """
    Appends movements and keeps snapshots in step.

    Contract:
        ``append()`` takes intents produced by the classifier (or by the
        reconciler / reversal logic) and returns an AppendResult.  It
        flushes but never commits; the caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        projector: BalanceProjector | None = None,
    ):
        self._session = session
        self._config = config or LedgerConfig.with_defaults()
        self._clock = clock or SystemClock()
        self._projector = projector or BalanceProjector(session, self._config)
        self._sequences = SequenceService(session)

    @property
    def projector(self) -> BalanceProjector:
        return self._projector

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def append(
        self,
        intents: Iterable[MovementIntent],
        *,
        allow_negative: bool | None = None,
        strict: bool = False,
    ) -> AppendResult:
        """
        Append all ``intents`` atomically.

        Args:
            allow_negative: backorder override passed to the projector.
            strict: raise DuplicateMovementError instead of returning an
                ALREADY_EXISTS result.
        """
        intents = tuple(intents)
        self._validate(intents)

        keys = [intent.idempotency_key for intent in intents]
        first = intents[0]
        start = time.monotonic()

        with LogContext.bind(
            business_id=first.business_id,
            actor_id=first.actor_id,
            reference=str(first.reference),
            operation="append",
        ):
            logger.info(
                "movement_append_started",
                extra={"movement_count": len(intents)},
            )
            try:
                prior = self._existing(first.business_id, keys)
                if prior:
                    return self._resolve_existing(keys, prior, strict)

                try:
                    with self._session.begin_nested():
                        posted = self._write(intents, allow_negative)
                except IntegrityError:
                    prior = self._existing(first.business_id, keys)
                    if not prior:
                        raise
                    logger.info(
                        "movement_append_race_resolved",
                        extra={"movement_count": len(intents)},
                    )
                    return self._resolve_existing(keys, prior, strict)
            except SQLAlchemyError as exc:
                logger.error("movement_append_failed", exc_info=True)
                raise PersistenceError("append", exc) from exc

            logger.info(
                "movement_append_completed",
                extra={
                    "status": AppendStatus.WRITTEN.value,
                    "seqs": [p.seq for p in posted],
                    "duration_ms": round((time.monotonic() - start) * 1000, 2),
                },
            )
            return AppendResult.written(posted)

    def _validate(self, intents: tuple[MovementIntent, ...]) -> None:
        if not intents:
            raise ValidationError("append requires at least one movement", field="movements")

        businesses = {intent.business_id for intent in intents}
        if len(businesses) != 1:
            raise ValidationError(
                f"One append may not span businesses: {sorted(businesses)}",
                field="business_id",
            )

        keys = [intent.idempotency_key for intent in intents]
        if len(set(keys)) != len(keys):
            raise ValidationError("Duplicate idempotency keys within one append", field="movements")

        for intent in intents:
            validate_delta(
                intent.transaction_type,
                intent.quantity_delta,
                allow_zero=not intent.affects_balance,
            )

    def _existing(self, business_id: int, keys: list[str]) -> list[StockMovement]:
        return list(
            self._session.execute(
                select(StockMovement)
                .where(
                    StockMovement.business_id == business_id,
                    StockMovement.idempotency_key.in_(keys),
                )
                .order_by(StockMovement.seq)
                .with_for_update()
            ).scalars()
        )

    def _resolve_existing(
        self, keys: list[str], prior: list[StockMovement], strict: bool
    ) -> AppendResult:
        found = {row.idempotency_key for row in prior}
        missing = [k for k in keys if k not in found]
        if missing:
            logger.error(
                "idempotency_conflict",
                extra={"existing_keys": sorted(found), "missing_keys": missing},
            )
            raise IdempotencyConflictError(sorted(found), missing)

        result = AppendResult.already_exists([PostedMovement.from_row(r) for r in prior])
        logger.info(
            "movement_append_completed",
            extra={"status": AppendStatus.ALREADY_EXISTS.value, "seqs": list(result.seqs)},
        )
        if strict:
            raise DuplicateMovementError(keys, prior_result=result)
        return result

    def _write(
        self,
        intents: tuple[MovementIntent, ...],
        allow_negative: bool | None,
    ) -> list[PostedMovement]:
        seqs = self._sequences.next_block(SequenceService.STOCK_MOVEMENT, len(intents))
        now = self._clock.now()

        # Lock snapshots in a stable order; seqs follow caller order.
        order = sorted(
            range(len(intents)),
            key=lambda i: (intents[i].variation_id, intents[i].location_id, i),
        )
        balances: dict[int, Decimal] = {}
        for i in order:
            intent = intents[i]
            if intent.affects_balance:
                balances[i] = self._projector.apply_delta(
                    intent.business_id,
                    intent.product_id,
                    intent.variation_id,
                    intent.location_id,
                    intent.quantity_delta,
                    actor_id=intent.actor_id,
                    movement_seq=seqs[i],
                    allow_negative=allow_negative,
                )

        rows = []
        for i, intent in enumerate(intents):
            row = StockMovement(
                seq=seqs[i],
                business_id=intent.business_id,
                product_id=intent.product_id,
                variation_id=intent.variation_id,
                location_id=intent.location_id,
                transaction_type=intent.transaction_type.value,
                quantity_delta=intent.quantity_delta,
                unit_cost=intent.unit_cost,
                total_value=intent.total_value,
                reference_type=intent.reference.reference_type.value,
                reference_id=intent.reference.reference_id,
                transaction_date=intent.transaction_date,
                idempotency_key=intent.idempotency_key,
                affects_balance=intent.affects_balance,
                reverses_seq=intent.reverses_seq,
                notes=intent.notes,
                created_at=now,
                created_by=intent.actor_id,
            )
            self._session.add(row)
            rows.append(row)
        self._session.flush()

        return [PostedMovement.from_row(row, balances.get(i)) for i, row in enumerate(rows)]

    # ------------------------------------------------------------------
    # Void
    # ------------------------------------------------------------------

    def void(
        self,
        business_id: int,
        movement_seqs: Iterable[int],
        *,
        actor_id: int,
        reason: str,
        allow_negative: bool | None = None,
    ) -> VoidResult:
        """
        Soft-delete movements and take their deltas back off the snapshots.

        Already-voided movements are skipped, so voiding is idempotent.

        Raises:
            MovementNotFoundError: a seq does not exist for the business.
            ValidationError: empty reason or a repair marker in the set.
            InsufficientStockError: undoing a receipt whose stock is gone.
        """
        seqs = sorted(set(movement_seqs))
        if not seqs:
            raise ValidationError("void requires at least one movement", field="movement_seqs")
        if not reason or not reason.strip():
            raise ValidationError("A void reason is required", field="reason")

        with LogContext.bind(business_id=business_id, actor_id=actor_id, operation="void"):
            try:
                rows = list(
                    self._session.execute(
                        select(StockMovement)
                        .where(
                            StockMovement.business_id == business_id,
                            StockMovement.seq.in_(seqs),
                        )
                        .order_by(StockMovement.variation_id, StockMovement.location_id, StockMovement.seq)
                        .with_for_update()
                    ).scalars()
                )
                found = {row.seq for row in rows}
                missing = [s for s in seqs if s not in found]
                if missing:
                    raise MovementNotFoundError(f"seq {missing[0]}")
                for row in rows:
                    if not row.affects_balance:
                        raise ValidationError(
                            f"Movement {row.seq} is a reconciliation marker and cannot be voided",
                            field="movement_seqs",
                        )

                voided: list[PostedMovement] = []
                skipped: list[int] = []
                now = self._clock.now()
                with self._session.begin_nested():
                    for row in rows:
                        if row.voided_at is not None:
                            skipped.append(row.seq)
                            continue
                        balance = self._projector.apply_delta(
                            row.business_id,
                            row.product_id,
                            row.variation_id,
                            row.location_id,
                            -row.quantity_delta,
                            actor_id=actor_id,
                            movement_seq=row.seq,
                            allow_negative=allow_negative,
                        )
                        row.voided_at = now
                        row.voided_by = actor_id
                        row.void_reason = reason
                        row.updated_by = actor_id
                        voided.append(PostedMovement.from_row(row, balance))
                    self._session.flush()
            except SQLAlchemyError as exc:
                logger.error("movement_void_failed", exc_info=True)
                raise PersistenceError("void", exc) from exc

            logger.info(
                "movements_voided",
                extra={
                    "voided_seqs": [v.seq for v in voided],
                    "skipped_seqs": skipped,
                    "reason": reason,
                },
            )
            return VoidResult(voided=tuple(voided), skipped_seqs=tuple(skipped))
