"""
TransferService -- executes the stock transfer workflow.

Responsibility:
    Moves a transfer document through TRANSFER_WORKFLOW and posts the
    movements its transitions call for: ``send`` takes stock out of the
    source, ``receive`` puts it into the destination, and ``cancel`` after
    send puts the outgoing stock back with a reversal.

Architecture position:
    Ledger > Services.  The transfer document itself belongs to the calling
    application; this service receives it as a TransferDocument DTO and
    returns the DTO in its new state for the caller to persist.

Invariants enforced:
    - Only transitions defined by the workflow run; anything else raises
      InvalidTransitionError before any movement is written.
    - Each posting transition fires its movements at most once (the
      writer's idempotency key), so a retried ``send`` never double-debits.
"""

from dataclasses import dataclass, replace
from datetime import datetime

from sqlalchemy.orm import Session

from stock_ledger.config import LedgerConfig
from stock_ledger.domain.classifier import DocumentType, LineItem, StockEvent, TransferAction
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.domain.values import DocumentReference, ReferenceType
from stock_ledger.domain.workflow import TRANSFER_WORKFLOW, Transition, Workflow
from stock_ledger.exceptions import ValidationError
from stock_ledger.logging_config import LogContext, get_logger
from stock_ledger.services.movement_writer import AppendResult
from stock_ledger.services.posting_service import StockPostingService

logger = get_logger("services.transfer")


@dataclass(frozen=True)
class TransferDocument:
    """The caller's transfer document as the ledger sees it."""

    id: int
    business_id: int
    from_location_id: int
    to_location_id: int
    lines: tuple[LineItem, ...]
    status: str = TRANSFER_WORKFLOW.initial_state

    @property
    def reference(self) -> DocumentReference:
        return DocumentReference(ReferenceType.TRANSFER, self.id)


@dataclass(frozen=True)
class TransitionResult:
    transfer: TransferDocument
    transition: Transition
    append_result: AppendResult | None = None


class TransferService:
    """Runs transfer transitions and posts their movements."""

    def __init__(
        self,
        session: Session,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        posting: StockPostingService | None = None,
        workflow: Workflow = TRANSFER_WORKFLOW,
    ):
        self._clock = clock or SystemClock()
        self._posting = posting or StockPostingService(session, config, self._clock)
        self._workflow = workflow

    def allowed_actions(self, transfer: TransferDocument) -> tuple[str, ...]:
        return self._workflow.allowed_actions(transfer.status)

    def apply(
        self,
        transfer: TransferDocument,
        action: str,
        actor_id: int,
        at: datetime | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """
        Apply ``action`` to ``transfer``.

        Raises:
            InvalidTransitionError: the action is not allowed in the
                transfer's current state.
            InsufficientStockError: ``send`` with too little at the source.
        """
        transition = self._workflow.find_transition(transfer.status, action)
        when = at or self._clock.now()

        with LogContext.bind(
            business_id=transfer.business_id,
            actor_id=actor_id,
            reference=str(transfer.reference),
            operation=f"transfer_{action}",
        ):
            append_result = None
            if transition.posts_entry:
                append_result = self._post(transfer, transition, actor_id, when, notes)

            updated = replace(transfer, status=transition.to_state)
            logger.info(
                "transfer_transition",
                extra={
                    "transfer_id": transfer.id,
                    "action": action,
                    "from_state": transition.from_state,
                    "to_state": transition.to_state,
                    "posted": append_result is not None,
                },
            )
            return TransitionResult(updated, transition, append_result)

    def _post(
        self,
        transfer: TransferDocument,
        transition: Transition,
        actor_id: int,
        when: datetime,
        notes: str | None,
    ) -> AppendResult:
        if transition.action == "cancel":
            return self._posting.reverse_document(
                transfer.business_id,
                transfer.reference,
                actor_id,
                reason=notes or f"Transfer {transfer.id} cancelled",
                transaction_date=when,
            )

        try:
            leg = TransferAction(transition.action)
        except ValueError:
            raise ValidationError(
                f"Transition {transition.action!r} posts but is not a transfer leg",
                field="action",
            ) from None

        event = StockEvent(
            business_id=transfer.business_id,
            document_type=DocumentType.TRANSFER,
            reference_id=transfer.id,
            location_id=transfer.from_location_id,
            destination_location_id=transfer.to_location_id,
            lines=transfer.lines,
            actor_id=actor_id,
            transaction_date=when,
            action=leg,
            notes=notes,
        )
        return self._posting.post(event)
