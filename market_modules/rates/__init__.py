"""Rate Config Store: versioned, admin-editable rate configuration."""

from market_modules.rates.models import ConfigStatus, RateConfigSnapshot
from market_modules.rates.service import RateConfigStore

__all__ = ["ConfigStatus", "RateConfigSnapshot", "RateConfigStore"]
