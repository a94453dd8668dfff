"""
StockPostingService -- the document-facing posting boundary.

Responsibility:
    Entry point for document workflow handlers.  Classifies a business
    event and appends the resulting movements; also posts physical counts
    as corrections, reverses documents with compensating movements and
    voids documents.

Architecture position:
    Ledger > Services.  Composes TransactionClassifier (domain) with
    MovementWriter.  Never commits; the caller's ``session_scope()`` does.

Invariants enforced:
    - A document posts through exactly one classify + append, so all of its
      lines commit or none do.
    - Reversal never edits history: it appends ``correction`` movements
      keyed with the ``:rev`` suffix and pointing at the reversed seq.
      Repeating a reversal is a no-op (ALREADY_EXISTS).

Failure modes:
    Everything the classifier and writer raise, plus MovementNotFoundError
    when a document to reverse or void has no movements.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from stock_ledger.config import LedgerConfig
from stock_ledger.domain.classifier import (
    DocumentType,
    LineItem,
    MovementIntent,
    StockEvent,
    TransactionClassifier,
)
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.domain.values import DocumentReference, MovementType, ReferenceType
from stock_ledger.exceptions import MovementNotFoundError, ValidationError
from stock_ledger.logging_config import LogContext, get_logger
from stock_ledger.selectors.movement_selector import MovementSelector
from stock_ledger.services.movement_writer import AppendResult, MovementWriter, VoidResult

logger = get_logger("services.posting")


class StockPostingService:
    """Posts business documents to the stock ledger."""

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
        self._classifier = TransactionClassifier(self._config.quantity_places)
        self._movements = MovementSelector(session)

    @property
    def writer(self) -> MovementWriter:
        return self._writer

    def post(
        self,
        event: StockEvent,
        allow_negative: bool | None = None,
        strict: bool = False,
    ) -> AppendResult:
        """Classify ``event`` and append its movements atomically."""
        intents = self._classifier.classify(event)
        result = self._writer.append(intents, allow_negative=allow_negative, strict=strict)
        logger.info(
            "document_posted",
            extra={
                "reference": str(event.reference),
                "document_type": DocumentType(event.document_type).value,
                "status": result.status.value,
                "movement_count": len(result.movements),
            },
        )
        return result

    def post_physical_count(
        self,
        business_id: int,
        product_id: int,
        variation_id: int,
        location_id: int,
        counted_quantity: Decimal,
        reference_id: int,
        actor_id: int,
        transaction_date: datetime | None = None,
    ) -> AppendResult | None:
        """
        Book the difference between a physical count and the stored balance.

        Returns:
            The correction's AppendResult, or None when the count matches.
        """
        if counted_quantity < 0:
            raise ValidationError(
                f"Counted quantity cannot be negative, got {counted_quantity}",
                field="counted_quantity",
            )

        system = self._writer.projector.current_balance(business_id, variation_id, location_id)
        difference = counted_quantity - system
        if difference == 0:
            logger.info(
                "physical_count_matches",
                extra={
                    "variation_id": variation_id,
                    "location_id": location_id,
                    "counted": counted_quantity,
                },
            )
            return None

        event = StockEvent(
            business_id=business_id,
            document_type=DocumentType.CORRECTION,
            reference_id=reference_id,
            location_id=location_id,
            lines=(LineItem(product_id, variation_id, difference),),
            actor_id=actor_id,
            transaction_date=transaction_date or self._clock.now(),
            notes=f"Physical count: counted {counted_quantity}, system {system}",
        )
        # Counting the stock that is there can always bring the balance to it
        return self.post(event, allow_negative=True)

    def reverse_document(
        self,
        business_id: int,
        reference: DocumentReference,
        actor_id: int,
        reason: str,
        transaction_date: datetime | None = None,
        allow_negative: bool | None = None,
    ) -> AppendResult:
        """
        Append a compensating correction for every live movement of a document.

        Raises:
            MovementNotFoundError: the document has no live movements.
            ValidationError: missing reason, or a reconciliation reference.
        """
        if not reason or not reason.strip():
            raise ValidationError("A reversal reason is required", field="reason")
        if reference.reference_type is ReferenceType.RECONCILIATION:
            raise ValidationError(
                "Reconciliation markers cannot be reversed", field="reference"
            )

        originals = [
            m
            for m in self._movements.by_reference(business_id, reference, include_voided=False)
            if m.affects_balance and m.reverses_seq is None
        ]
        if not originals:
            raise MovementNotFoundError(str(reference))

        when = transaction_date or self._clock.now()
        intents = [
            MovementIntent(
                business_id=business_id,
                product_id=m.product_id,
                variation_id=m.variation_id,
                location_id=m.location_id,
                transaction_type=MovementType.CORRECTION,
                quantity_delta=-m.quantity_delta,
                reference=reference,
                transaction_date=when,
                actor_id=actor_id,
                notes=f"Reversal of #{m.seq}: {reason}",
                reverses_seq=m.seq,
            )
            for m in originals
        ]

        with LogContext.bind(reference=str(reference), operation="reverse"):
            result = self._writer.append(intents, allow_negative=allow_negative)
            logger.info(
                "document_reversed",
                extra={
                    "status": result.status.value,
                    "reversed_seqs": [m.seq for m in originals],
                    "reason": reason,
                },
            )
        return result

    def void_document(
        self,
        business_id: int,
        reference: DocumentReference,
        actor_id: int,
        reason: str,
        allow_negative: bool | None = None,
    ) -> VoidResult:
        """
        Soft-delete every movement of a document.

        Raises:
            MovementNotFoundError: the document has no movements.
        """
        movements = [
            m for m in self._movements.by_reference(business_id, reference) if m.affects_balance
        ]
        if not movements:
            raise MovementNotFoundError(str(reference))

        with LogContext.bind(reference=str(reference)):
            return self._writer.void(
                business_id,
                [m.seq for m in movements],
                actor_id=actor_id,
                reason=reason,
                allow_negative=allow_negative,
            )
