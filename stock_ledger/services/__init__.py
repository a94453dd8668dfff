"""Services for the stock ledger (write side)."""

from stock_ledger.services.balance_projector import (
    AvailabilityCheck,
    BalanceProjector,
    BatchAvailability,
)
from stock_ledger.services.movement_writer import (
    AppendResult,
    AppendStatus,
    MovementWriter,
    PostedMovement,
    VoidResult,
)
from stock_ledger.services.posting_service import StockPostingService
from stock_ledger.services.reconciler import (
    Finding,
    InvestigationReport,
    LedgerLine,
    LedgerReconciler,
    ReconciliationReport,
    ReconciliationSummary,
    RepairResult,
)
from stock_ledger.services.sequence_service import SequenceCounter, SequenceService
from stock_ledger.services.transfer_service import (
    TransferDocument,
    TransferService,
    TransitionResult,
)

__all__ = [
    "AppendResult",
    "AppendStatus",
    "AvailabilityCheck",
    "BalanceProjector",
    "BatchAvailability",
    "Finding",
    "InvestigationReport",
    "LedgerLine",
    "LedgerReconciler",
    "MovementWriter",
    "PostedMovement",
    "ReconciliationReport",
    "ReconciliationSummary",
    "RepairResult",
    "SequenceCounter",
    "SequenceService",
    "StockPostingService",
    "TransferDocument",
    "TransferService",
    "TransitionResult",
    "VoidResult",
]
