"""
Declarative bases for every ORM model.

Column conventions, applied through ``type_annotation_map``:

* ``int`` is BigInteger.  Money is always integer minor units, never float.
* ``Decimal`` is Numeric(12, 6), wide enough for VAT and royalty rates.
* ``datetime`` is timezone-aware and always written as UTC, so backends that
  keep only wall time (SQLite) still bucket and compare correctly.
* ``UUID`` is stored as a 36-character string so SQLite and PostgreSQL
  share one schema.

Nothing here may import from services or modules.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from market_kernel.domain.clock import as_utc


class UUIDString(TypeDecorator):
    """UUID <-> String(36)."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class UTCDateTime(TypeDecorator):
    """Aware datetime, converted to UTC on the way in and on the way out."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else as_utc(value)

    def process_result_value(self, value, dialect):
        return None if value is None else as_utc(value)


class Base(DeclarativeBase):
    """Every model gets a uuid4 primary key."""

    type_annotation_map: ClassVar[dict] = {
        int: BigInteger,
        Decimal: Numeric(12, 6),
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        dict[str, Any]: JSON,  # Canonical rate-config payloads
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds who-and-when audit columns.

    These are bookkeeping, not money: they may change on rows whose money
    columns are frozen, such as settlements.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False,
    )
    created_by_id: Mapped[UUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
