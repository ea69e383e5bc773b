"""
Rate configuration ORM (``market_modules.rates.orm``).

Each published configuration is an immutable row holding the canonical
payload and its checksum.  Exactly one row is ``active`` at a time; earlier
rows are kept as ``superseded`` so settlements can be traced back to the
version they snapshotted.
"""

from datetime import datetime
from decimal import InvalidOperation
from typing import Any

from sqlalchemy import JSON, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_config.loader import compute_checksum, parse_rate_config
from market_kernel.db.base import TrackedBase, UTCDateTime
from market_kernel.exceptions import RateConfigInvalidError


class RateConfigVersionModel(TrackedBase):
    """ORM model for one published RateConfig version."""

    __tablename__ = "rate_config_versions"

    version: Mapped[int] = mapped_column(nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    activated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    superseded_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("version", name="uq_rate_config_version"),
        Index("idx_rate_config_status", "status"),
    )

    def to_dto(self):
        """
        Rebuild the snapshot, verifying the stored checksum.

        Raises:
            RateConfigInvalidError: if the payload was altered or no longer
                parses into a valid RateConfig.
        """
        from market_modules.rates.models import ConfigStatus, RateConfigSnapshot

        if compute_checksum(self.payload) != self.checksum:
            raise RateConfigInvalidError("checksum mismatch", version=self.version)
        try:
            config = parse_rate_config(self.payload)
        except (KeyError, ValueError, TypeError, InvalidOperation) as exc:
            raise RateConfigInvalidError(str(exc), version=self.version) from exc
        return RateConfigSnapshot(
            version=self.version,
            checksum=self.checksum,
            config=config,
            status=ConfigStatus(self.status),
            activated_at=self.activated_at,
        )

    def __repr__(self) -> str:
        return f"<RateConfigVersionModel v{self.version} {self.status}>"
