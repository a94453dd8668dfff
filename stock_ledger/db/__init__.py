"""Database layer - engine, base classes, types, immutability."""

from stock_ledger.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from stock_ledger.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from stock_ledger.db.types import round_quantity, to_decimal

__all__ = [
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "create_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "round_quantity",
    "session_scope",
    "to_decimal",
]
