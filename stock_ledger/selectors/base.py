"""
Module: stock_ledger.selectors.base
Responsibility: Abstract base class for the read-only query selectors.
    Selectors are the query side of the ledger: structured read access to
    movements and snapshots without any mutation capability.
Architecture position: Ledger > Selectors.  May import from db/, models/ and
    domain/values.py.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: selectors accept a Session from the caller and never call
      session.add(), session.delete(), session.flush() or session.commit().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_ledger.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
