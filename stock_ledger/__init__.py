"""
Stock Ledger Engine

An append-only inventory movement log with:
- Classified, signed stock movements per business document
- Idempotent, atomic posting
- Row-locked balance snapshots per (variation, location)
- Explicit, auditable reconciliation and repair
"""

__version__ = "0.1.0"
