"""Read-only query selectors."""

from stock_ledger.selectors.balance_selector import BalanceRecord, BalanceSelector
from stock_ledger.selectors.base import BaseSelector
from stock_ledger.selectors.movement_selector import (
    LedgerEntry,
    LedgerView,
    MovementPage,
    MovementRecord,
    MovementSelector,
)

__all__ = [
    "BalanceRecord",
    "BalanceSelector",
    "BaseSelector",
    "LedgerEntry",
    "LedgerView",
    "MovementPage",
    "MovementRecord",
    "MovementSelector",
]
