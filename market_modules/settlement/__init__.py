"""
Transaction settlement: immutable splits of captured payments.

The service lives in ``market_modules.settlement.service``; it depends on the
tier tracker, which in turn reads settlement rows, so only the DTOs are
re-exported here.
"""

from market_modules.settlement.models import (
    AdjustmentKind,
    MonetaryBreakdown,
    PaymentEvent,
    Settlement,
    SettlementAdjustment,
    SettlementOutcome,
    SettlementStatus,
    SourceType,
)

__all__ = [
    "AdjustmentKind",
    "MonetaryBreakdown",
    "PaymentEvent",
    "Settlement",
    "SettlementAdjustment",
    "SettlementOutcome",
    "SettlementStatus",
    "SourceType",
]
