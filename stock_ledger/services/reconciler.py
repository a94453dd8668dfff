"""
LedgerReconciler -- verifies snapshots against the movement log.

Responsibility:
    Replays the movement log for a (variation, location) pair, compares the
    result with the stored snapshot and reports any variance; repairs
    drifted snapshots on explicit request; summarises a whole business and
    investigates a single pair's history for likely causes of drift.

Architecture position:
    Ledger > Services.  Reads through MovementSelector / BalanceSelector,
    writes only through BalanceProjector.reset_balance() and
    MovementWriter.append() (repair markers).

Invariants enforced:
    - Replay order is (transaction_date, seq); voided rows and repair
      markers never count.
    - reconcile() never mutates anything, and a variance is reported, never
      raised.
    - repair() runs under the ``stock_movement`` counter lock and then the
      snapshot row lock, the order MovementWriter uses: the replay it writes
      back cannot be overtaken by a concurrent append.  Each repair appends a
      ``correction`` marker (reference type ``reconciliation``,
      ``affects_balance = False``) whose delta is the adjustment applied;
      a second repair with nothing in between writes a zero marker.

Failure modes:
    - ValidationError when repairing a pair the ledger has never seen.
    - Writer errors (PersistenceError) while appending the marker.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from stock_ledger.config import LedgerConfig
from stock_ledger.domain.classifier import MovementIntent
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.domain.values import DocumentReference, MovementType, ReferenceType
from stock_ledger.domain.variance import VarianceAssessment, VarianceType, assess_variance
from stock_ledger.exceptions import ValidationError
from stock_ledger.logging_config import LogContext, get_logger
from stock_ledger.selectors.balance_selector import BalanceSelector
from stock_ledger.selectors.movement_selector import MovementRecord, MovementSelector
from stock_ledger.services.movement_writer import MovementWriter, PostedMovement
from stock_ledger.services.sequence_service import SequenceService

logger = get_logger("services.reconciler")

ZERO = Decimal("0")


@dataclass(frozen=True)
class LedgerLine:
    """A replayed movement and the balance right after it."""

    seq: int
    transaction_date: datetime
    transaction_type: MovementType
    quantity_delta: Decimal
    running_balance: Decimal
    reference: DocumentReference


@dataclass(frozen=True)
class ReconciliationReport:
    """
    Replay of one pair's movements.

    ``stored_balance``, ``variance`` and ``assessment`` are None for a
    point-in-time report (``as_of`` set): the snapshot only describes now.
    """

    business_id: int
    variation_id: int
    location_id: int
    opening_balance: Decimal
    lines: tuple[LedgerLine, ...]
    computed_balance: Decimal
    stored_balance: Decimal | None
    variance: Decimal | None
    assessment: VarianceAssessment | None
    total_movement_count: int
    as_of: datetime | None = None
    since: datetime | None = None

    @property
    def movement_count(self) -> int:
        return len(self.lines)

    @property
    def running_balances(self) -> tuple[Decimal, ...]:
        return tuple(line.running_balance for line in self.lines)

    @property
    def has_variance(self) -> bool:
        return (
            self.assessment is not None
            and self.assessment.variance_type is not VarianceType.MATCH
        )

    @property
    def is_reconciled(self) -> bool:
        return self.assessment is not None and not self.has_variance


@dataclass(frozen=True)
class RepairResult:
    business_id: int
    variation_id: int
    location_id: int
    previous_balance: Decimal
    new_balance: Decimal
    adjustment: Decimal
    repair_number: int
    marker: PostedMovement


@dataclass(frozen=True)
class ReconciliationSummary:
    """Business-wide roll-up of per-pair reports."""

    business_id: int
    location_id: int | None
    reports: tuple[ReconciliationReport, ...]

    def _with(self, variance_type: VarianceType) -> list[ReconciliationReport]:
        return [r for r in self.reports if r.assessment.variance_type is variance_type]

    def _value(self, reports: list[ReconciliationReport]) -> Decimal:
        return sum(
            (abs(r.assessment.variance_value) for r in reports if r.assessment.variance_value is not None),
            ZERO,
        )

    @property
    def pairs_checked(self) -> int:
        return len(self.reports)

    @property
    def variances(self) -> tuple[ReconciliationReport, ...]:
        return tuple(r for r in self.reports if r.has_variance)

    @property
    def variance_count(self) -> int:
        return len(self.variances)

    @property
    def match_count(self) -> int:
        return len(self._with(VarianceType.MATCH))

    @property
    def overage_count(self) -> int:
        return len(self._with(VarianceType.OVERAGE))

    @property
    def shortage_count(self) -> int:
        return len(self._with(VarianceType.SHORTAGE))

    @property
    def overage_value(self) -> Decimal:
        return self._value(self._with(VarianceType.OVERAGE))

    @property
    def shortage_value(self) -> Decimal:
        return self._value(self._with(VarianceType.SHORTAGE))

    @property
    def total_variance_value(self) -> Decimal:
        return self.overage_value + self.shortage_value

    @property
    def requires_investigation_count(self) -> int:
        return sum(1 for r in self.reports if r.assessment.requires_investigation)

    @property
    def auto_fixable_count(self) -> int:
        return sum(1 for r in self.reports if r.assessment.auto_fixable)


@dataclass(frozen=True)
class Finding:
    kind: str
    message: str
    details: dict = field(default_factory=dict)


@dataclass(frozen=True)
class InvestigationReport:
    business_id: int
    variation_id: int
    location_id: int
    window_start: datetime
    report: ReconciliationReport
    findings: tuple[Finding, ...]

    @property
    def kinds(self) -> tuple[str, ...]:
        return tuple(f.kind for f in self.findings)


class LedgerReconciler:
    """
    Reconcile, repair and investigate stock balances.

    Contract:
        Read operations (reconcile, reconcile_business, investigate) never
        write.  repair() and repair_auto_fixable() flush but never commit.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        writer: MovementWriter | None = None,
    ):
        self._session = session
        self._config = config or LedgerConfig.with_defaults()
        self._clock = clock or SystemClock()
        self._writer = writer or MovementWriter(session, self._config, self._clock)
        self._projector = self._writer.projector
        self._movements = MovementSelector(session)
        self._balances = BalanceSelector(session)
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    def reconcile(
        self,
        business_id: int,
        variation_id: int,
        location_id: int,
        as_of: datetime | None = None,
        since: datetime | None = None,
    ) -> ReconciliationReport:
        """
        Replay the pair's log and compare it with the snapshot.

        Args:
            as_of: replay only movements dated on or before this instant and
                skip the comparison (point-in-time report).
            since: fold movements before this instant into the opening
                balance; only the window is listed line by line.
        """
        if as_of is not None and since is not None and since > as_of:
            raise ValidationError("since must not be after as_of", field="since")

        opening, folded = ZERO, 0
        if since is not None:
            opening, folded = self._movements.balance_before(
                business_id, variation_id, location_id, since
            )

        records = self._movements.ordered_movements(
            business_id, variation_id, location_id, start=since, end=as_of
        )
        lines = self._replay(opening, records)
        computed = lines[-1].running_balance if lines else opening
        total_count = folded + len(lines)

        stored = variance = assessment = None
        if as_of is None:
            stored = self._projector.current_balance(business_id, variation_id, location_id)
            variance = computed - stored
            window_start = self._clock.days_ago(self._config.suspicious_window_days)
            assessment = assess_variance(
                computed,
                stored,
                unit_cost=self._movements.last_unit_cost(business_id, variation_id, location_id),
                movement_count=total_count,
                recent_movement_count=self._movements.count_since(
                    business_id, variation_id, location_id, window_start
                ),
                config=self._config,
            )

        report = ReconciliationReport(
            business_id=business_id,
            variation_id=variation_id,
            location_id=location_id,
            opening_balance=opening,
            lines=tuple(lines),
            computed_balance=computed,
            stored_balance=stored,
            variance=variance,
            assessment=assessment,
            total_movement_count=total_count,
            as_of=as_of,
            since=since,
        )

        if report.has_variance:
            logger.warning(
                "reconciliation_variance_detected",
                extra={
                    "business_id": business_id,
                    "variation_id": variation_id,
                    "location_id": location_id,
                    "computed_balance": computed,
                    "stored_balance": stored,
                    "variance": variance,
                    "variance_type": assessment.variance_type.value,
                    "requires_investigation": assessment.requires_investigation,
                    "suspicious_reasons": list(assessment.suspicious_reasons),
                },
            )
        else:
            logger.debug(
                "reconciliation_checked",
                extra={
                    "variation_id": variation_id,
                    "location_id": location_id,
                    "computed_balance": computed,
                    "movement_count": len(lines),
                },
            )
        return report

    @staticmethod
    def _replay(opening: Decimal, records: list[MovementRecord]) -> list[LedgerLine]:
        running = opening
        lines = []
        for record in records:
            running += record.quantity_delta
            lines.append(
                LedgerLine(
                    seq=record.seq,
                    transaction_date=record.transaction_date,
                    transaction_type=record.transaction_type,
                    quantity_delta=record.quantity_delta,
                    running_balance=running,
                    reference=record.reference,
                )
            )
        return lines

    def reconcile_business(
        self, business_id: int, location_id: int | None = None
    ) -> ReconciliationSummary:
        """Reconcile every pair of the business (optionally one location)."""
        reports = tuple(
            self.reconcile(business_id, variation_id, loc_id)
            for variation_id, loc_id in self._balances.pairs(business_id, location_id)
        )
        summary = ReconciliationSummary(business_id, location_id, reports)
        logger.info(
            "business_reconciliation_completed",
            extra={
                "business_id": business_id,
                "location_id": location_id,
                "pairs_checked": summary.pairs_checked,
                "variance_count": summary.variance_count,
                "requires_investigation_count": summary.requires_investigation_count,
            },
        )
        return summary

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def repair(
        self,
        business_id: int,
        variation_id: int,
        location_id: int,
        actor_id: int,
        reason: str | None = None,
    ) -> RepairResult:
        """
        Reset the snapshot to the replayed sum and record the adjustment.

        Raises:
            ValidationError: the pair has neither a snapshot nor movements.
        """
        product_id = self._product_id(business_id, variation_id, location_id)

        with LogContext.bind(
            business_id=business_id, actor_id=actor_id, operation="repair"
        ), self._session.begin_nested():
            # Same order as MovementWriter: movement counter, then snapshot.
            repair_number = self._sequences.next_value(SequenceService.RECONCILIATION_REPAIR)
            self._sequences.lock_counter(SequenceService.STOCK_MOVEMENT)
            self._projector.lock_or_create(
                business_id, product_id, variation_id, location_id, actor_id
            )
            records = self._movements.ordered_movements(business_id, variation_id, location_id)
            computed = sum((r.quantity_delta for r in records), ZERO)
            last_seq = records[-1].seq if records else None

            previous, new_balance = self._projector.reset_balance(
                business_id,
                product_id,
                variation_id,
                location_id,
                computed,
                actor_id=actor_id,
                movement_seq=last_seq,
            )
            adjustment = new_balance - previous

            note = f"Reconciliation repair: snapshot {previous} -> {new_balance}"
            if reason:
                note = f"{note} ({reason})"
            marker = MovementIntent(
                business_id=business_id,
                product_id=product_id,
                variation_id=variation_id,
                location_id=location_id,
                transaction_type=MovementType.CORRECTION,
                quantity_delta=adjustment,
                reference=DocumentReference(ReferenceType.RECONCILIATION, repair_number),
                transaction_date=self._clock.now(),
                actor_id=actor_id,
                notes=note,
                affects_balance=False,
            )
            appended = self._writer.append([marker])

            logger.info(
                "ledger_repair_applied",
                extra={
                    "variation_id": variation_id,
                    "location_id": location_id,
                    "previous_balance": previous,
                    "new_balance": new_balance,
                    "adjustment": adjustment,
                    "repair_number": repair_number,
                },
            )

        return RepairResult(
            business_id=business_id,
            variation_id=variation_id,
            location_id=location_id,
            previous_balance=previous,
            new_balance=new_balance,
            adjustment=adjustment,
            repair_number=repair_number,
            marker=appended.movements[0],
        )

    def _product_id(self, business_id: int, variation_id: int, location_id: int) -> int:
        snapshot = self._balances.get(business_id, variation_id, location_id)
        if snapshot is not None:
            return snapshot.product_id
        records = self._movements.ordered_movements(
            business_id, variation_id, location_id, include_voided=True, include_markers=True
        )
        if records:
            return records[-1].product_id
        raise ValidationError(
            f"No stock record for variation {variation_id} at location {location_id}",
            field="variation_id",
        )

    def repair_auto_fixable(
        self,
        business_id: int,
        actor_id: int,
        location_id: int | None = None,
    ) -> tuple[RepairResult, ...]:
        """Repair every variance small enough not to need investigation."""
        summary = self.reconcile_business(business_id, location_id)
        results = tuple(
            self.repair(
                business_id,
                report.variation_id,
                report.location_id,
                actor_id,
                reason="auto-fixable variance",
            )
            for report in summary.reports
            if report.assessment.auto_fixable
        )
        logger.info(
            "auto_fixable_repairs_completed",
            extra={
                "business_id": business_id,
                "repaired": len(results),
                "skipped_for_investigation": summary.requires_investigation_count,
            },
        )
        return results

    # ------------------------------------------------------------------
    # Investigate
    # ------------------------------------------------------------------

    def investigate(
        self,
        business_id: int,
        variation_id: int,
        location_id: int,
        days_back: int | None = None,
    ) -> InvestigationReport:
        """Look through recent history for the usual causes of drift."""
        days = self._config.investigation_days_back if days_back is None else days_back
        if days < 1:
            raise ValidationError(f"days_back must be at least 1, got {days}", field="days_back")
        window_start = self._clock.days_ago(days)

        full = self.reconcile(business_id, variation_id, location_id)
        opening, _ = self._movements.balance_before(
            business_id, variation_id, location_id, window_start
        )
        window = self._replay(
            opening,
            self._movements.ordered_movements(
                business_id, variation_id, location_id, start=window_start
            ),
        )
        findings: list[Finding] = []

        if full.total_movement_count == 0 and full.stored_balance > 0:
            findings.append(
                Finding(
                    "no_movements",
                    "Stock on hand without any movement",
                    {"stored_balance": full.stored_balance},
                )
            )

        if full.has_variance:
            findings.append(
                Finding(
                    "balance_mismatch",
                    f"Stored balance {full.stored_balance} differs from ledger {full.computed_balance}",
                    {"variance": full.variance, "variance_type": full.assessment.variance_type.value},
                )
            )

        gap = timedelta(days=self._config.gap_days)
        for before, after in zip(window, window[1:]):
            if after.transaction_date - before.transaction_date > gap:
                findings.append(
                    Finding(
                        "time_gap",
                        f"No movements for {(after.transaction_date - before.transaction_date).days} days",
                        {"after_seq": before.seq, "before_seq": after.seq},
                    )
                )

        for line in window:
            if line.running_balance < 0:
                findings.append(
                    Finding(
                        "negative_balance",
                        "Stock went out without sufficient stock",
                        {"seq": line.seq, "running_balance": line.running_balance},
                    )
                )
                break

        corrections = [
            line for line in window if line.transaction_type is MovementType.CORRECTION
        ]
        if len(corrections) > self._config.max_corrections:
            findings.append(
                Finding(
                    "frequent_corrections",
                    f"{len(corrections)} corrections in {days} days",
                    {"count": len(corrections), "seqs": [c.seq for c in corrections]},
                )
            )

        voided = [
            r
            for r in self._movements.ordered_movements(
                business_id, variation_id, location_id, start=window_start, include_voided=True
            )
            if r.is_voided
        ]
        if voided:
            findings.append(
                Finding(
                    "voided_movements",
                    f"{len(voided)} voided movements in {days} days",
                    {"seqs": [r.seq for r in voided]},
                )
            )

        logger.info(
            "ledger_investigation_completed",
            extra={
                "variation_id": variation_id,
                "location_id": location_id,
                "days_back": days,
                "findings": [f.kind for f in findings],
            },
        )
        return InvestigationReport(
            business_id=business_id,
            variation_id=variation_id,
            location_id=location_id,
            window_start=window_start,
            report=full,
            findings=tuple(findings),
        )
