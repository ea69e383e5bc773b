"""
Revenue Aggregator Configuration Schema.

Defaults suit the platform's admin dashboards; override at instantiation:

    config = RevenueConfig(reporting_currency="EUR", timeout_seconds=5)
"""

from dataclasses import dataclass
from typing import Self

from market_kernel.domain.currency import CurrencyRegistry
from market_kernel.logging_config import get_logger

logger = get_logger("modules.revenue.config")


@dataclass
class RevenueConfig:
    """Configuration schema for the revenue aggregator."""

    # Every figure is reported in one currency; other currencies are ignored.
    reporting_currency: str = "GBP"

    # Time series switch to monthly buckets above this many days.
    month_granularity_threshold_days: int = 90

    # Scans read this many days per chunk and check the deadline between chunks.
    scan_chunk_days: int = 31
    timeout_seconds: float | None = 10.0

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100
    recent_transactions_limit: int = 100

    def __post_init__(self):
        if not CurrencyRegistry.is_supported(self.reporting_currency):
            raise ValueError(f"unsupported reporting_currency '{self.reporting_currency}'")
        self.reporting_currency = self.reporting_currency.upper()

        if self.month_granularity_threshold_days < 1:
            raise ValueError("month_granularity_threshold_days must be positive")

        if self.scan_chunk_days < 1:
            raise ValueError("scan_chunk_days must be positive")

        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive when set")

        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError("default_page_size must be between 1 and max_page_size")

        if self.recent_transactions_limit < 1:
            raise ValueError("recent_transactions_limit must be positive")

        logger.info(
            "revenue_config_initialized",
            extra={
                "reporting_currency": self.reporting_currency,
                "scan_chunk_days": self.scan_chunk_days,
                "timeout_seconds": self.timeout_seconds,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the dashboard defaults."""
        logger.info("revenue_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from dictionary (e.g., loaded from database/file)."""
        logger.info(
            "revenue_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
