"""Database layer - engine, base classes and column types."""

from market_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from market_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
)

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
]
