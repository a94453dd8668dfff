"""ORM models for the stock ledger."""

from stock_ledger.models.balance_snapshot import BalanceSnapshot
from stock_ledger.models.stock_movement import StockMovement

__all__ = ["BalanceSnapshot", "StockMovement"]
