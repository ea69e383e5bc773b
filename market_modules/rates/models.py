"""Rate configuration version DTOs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from market_config.schema import RateConfig


class ConfigStatus(str, Enum):
    """Lifecycle of a published configuration version."""

    ACTIVE = "active"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class RateConfigSnapshot:
    """
    One published configuration version, as a value.

    ``version`` 0 with ``is_fallback`` set means no usable version exists and
    the documented defaults are being served for reads.
    """

    version: int
    checksum: str
    config: RateConfig
    status: ConfigStatus
    activated_at: datetime | None = None
    is_fallback: bool = False
