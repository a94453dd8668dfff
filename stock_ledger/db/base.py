"""
Module: stock_ledger.db.base
Responsibility: Declarative base classes for the ledger's ORM models.  Provides
    the UUID primary key convention, the type annotation map that pins column
    types, and the TrackedBase mixin for creation/update audit fields.
Architecture position: Ledger > DB.  Lowest-level import target; every model
    imports from here.  MUST NOT import from models/, services/, selectors/
    or domain/.

Invariants enforced:
    - Decimal maps to Numeric(38, 9).  Quantities and costs are never floats.
    - datetime maps to UTCDateTime (timezone-aware, UTC on every backend).
    - Every tracked row records the actor that created it.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID stored as String(36) so the schema runs on PostgreSQL and SQLite alike.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime that always reads back in UTC.

    SQLite drops tzinfo on storage; values are normalised to UTC on the way
    in and re-tagged on the way out so comparisons never mix naive and
    aware datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime {value!r}; pass a timezone-aware value")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """
    Declarative base for all ledger models.

    Guarantees:
        - id is a uuid4 surrogate key stored as String(36).
        - Decimal maps to Numeric(38, 9).
        - int maps to BigInteger (document ids, sequences, tenant ids).
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamps and actor tracking.

    created_at / created_by describe the append; updated_at / updated_by are
    audit metadata and may change even on otherwise immutable rows (see
    db/immutability.py).
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)

    updated_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


UUID = PyUUID
