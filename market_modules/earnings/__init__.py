"""Seller earnings: balances net of refunds, sale counts, trend and tier progress."""

from market_modules.earnings.models import (
    CurrencyBalance,
    EarningsDashboard,
    MonthlyEarnings,
    SaleCounts,
    SellerSale,
    TierProgress,
)
from market_modules.earnings.service import SellerEarnings

__all__ = [
    "CurrencyBalance",
    "EarningsDashboard",
    "MonthlyEarnings",
    "SaleCounts",
    "SellerEarnings",
    "SellerSale",
    "TierProgress",
]
