"""
Settlement DTOs.

A ``Settlement`` is one variant type discriminated by ``source_type`` with a
shared ``MonetaryBreakdown``.  Construction validates the variant rules and
the conservation law, so an inconsistent record cannot be built, let alone
persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from market_engines.vat import VatExemptReason
from market_kernel.domain.clock import as_utc
from market_kernel.domain.currency import CurrencyRegistry
from market_kernel.domain.money import ensure_minor_units
from market_kernel.exceptions import (
    ConservationViolationError,
    InvalidPaymentEventError,
    ValidationError,
)


class SourceType(str, Enum):
    """Which revenue stream a captured payment belongs to."""

    RESOURCE_SALE = "resource_sale"
    SUBSCRIPTION = "subscription"
    AD_PAYMENT = "ad_payment"


class SettlementStatus(str, Enum):
    """Settlement lifecycle.  Split fields never change across transitions."""

    COMPLETED = "completed"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


ALLOWED_TRANSITIONS: dict[SettlementStatus, frozenset[SettlementStatus]] = {
    SettlementStatus.COMPLETED: frozenset({SettlementStatus.REFUNDED, SettlementStatus.DISPUTED}),
    SettlementStatus.DISPUTED: frozenset({SettlementStatus.REFUNDED, SettlementStatus.COMPLETED}),
    SettlementStatus.REFUNDED: frozenset(),
}


class AdjustmentKind(str, Enum):
    """Linked record written for each status transition."""

    REFUND = "refund"
    DISPUTE_HOLD = "dispute_hold"
    DISPUTE_RELEASE = "dispute_release"


@dataclass(frozen=True)
class PaymentEvent:
    """
    A captured payment as reported by the payment gateway.

    Amounts are integer minor units of ``currency``; the gross already
    includes any VAT.  Delivery is at-least-once, so the same
    ``gateway_transaction_id`` may arrive more than once.
    """

    gateway_transaction_id: str
    gross_amount_minor_units: int
    currency: str
    source_type: SourceType
    buyer_country_code: str | None
    occurred_at: datetime
    is_business_buyer: bool = False
    buyer_vat_number: str | None = None
    seller_id: UUID | None = None
    buyer_id: UUID | None = None
    buyer_email: str | None = None

    def __post_init__(self) -> None:
        if not self.gateway_transaction_id or not self.gateway_transaction_id.strip():
            raise InvalidPaymentEventError(
                "gateway_transaction_id", self.gateway_transaction_id, "is required"
            )
        try:
            ensure_minor_units("gross_amount_minor_units", self.gross_amount_minor_units)
        except ValidationError as exc:
            raise InvalidPaymentEventError(exc.field, exc.value, exc.reason) from exc
        if self.gross_amount_minor_units <= 0:
            raise InvalidPaymentEventError(
                "gross_amount_minor_units", self.gross_amount_minor_units, "must be positive"
            )
        if not isinstance(self.source_type, SourceType):
            raise InvalidPaymentEventError(
                "source_type", self.source_type, "must be a SourceType"
            )
        if self.source_type is SourceType.RESOURCE_SALE and self.seller_id is None:
            raise InvalidPaymentEventError(
                "seller_id", None, "required for resource sales"
            )
        if self.source_type is not SourceType.RESOURCE_SALE and self.seller_id is not None:
            raise InvalidPaymentEventError(
                "seller_id", self.seller_id, "only resource sales have a seller"
            )
        if self.occurred_at.tzinfo is None:
            raise InvalidPaymentEventError(
                "occurred_at", self.occurred_at, "must be timezone-aware"
            )
        # Day buckets and tier windows are UTC.
        object.__setattr__(self, "occurred_at", as_utc(self.occurred_at))


@dataclass(frozen=True)
class MonetaryBreakdown:
    """Shared money shape of every settlement variant (minor units)."""

    gross: int
    vat: int
    transaction_fee: int
    platform_commission: int
    seller_earnings: int

    @property
    def net(self) -> int:
        return self.gross - self.vat

    @property
    def is_conserved(self) -> bool:
        return self.gross == (
            self.vat + self.transaction_fee + self.platform_commission + self.seller_earnings
        )

    def negated(self) -> MonetaryBreakdown:
        return MonetaryBreakdown(
            gross=-self.gross,
            vat=-self.vat,
            transaction_fee=-self.transaction_fee,
            platform_commission=-self.platform_commission,
            seller_earnings=-self.seller_earnings,
        )


@dataclass(frozen=True)
class Settlement:
    """
    The immutable split of one captured payment.

    Variant rules:
        resource_sale: seller_id and tier_snapshot are present.
        subscription / ad_payment: no seller, zero earnings, no tier.
    """

    id: UUID
    gateway_transaction_id: str
    source_type: SourceType
    currency: str
    breakdown: MonetaryBreakdown
    buyer_country_code: str | None
    is_business_buyer: bool
    buyer_vat_number: str | None
    vat_rate_applied: Decimal
    reverse_charge: bool
    vat_exempt_reason: VatExemptReason | None
    royalty_rate_snapshot: Decimal
    tier_snapshot: str | None
    rate_config_version: int
    seller_id: UUID | None
    buyer_id: UUID | None
    occurred_at: datetime
    status: SettlementStatus = SettlementStatus.COMPLETED
    buyer_email: str | None = None

    def __post_init__(self) -> None:
        CurrencyRegistry.get(self.currency)
        if not self.breakdown.is_conserved:
            b = self.breakdown
            raise ConservationViolationError(
                gross=b.gross,
                vat=b.vat,
                fee=b.transaction_fee,
                commission=b.platform_commission,
                earnings=b.seller_earnings,
            )
        if self.source_type is SourceType.RESOURCE_SALE:
            if self.seller_id is None or self.tier_snapshot is None:
                raise ValidationError(
                    "seller_id", self.seller_id, "resource sales carry a seller and tier"
                )
        elif self.seller_id is not None or self.breakdown.seller_earnings != 0:
            raise ValidationError(
                "source_type", self.source_type.value, "only resource sales pay a seller"
            )

    @property
    def gross_amount_minor_units(self) -> int:
        return self.breakdown.gross

    @property
    def vat_amount_minor_units(self) -> int:
        return self.breakdown.vat

    @property
    def transaction_fee_minor_units(self) -> int:
        return self.breakdown.transaction_fee

    @property
    def platform_commission_minor_units(self) -> int:
        return self.breakdown.platform_commission

    @property
    def seller_earnings_minor_units(self) -> int:
        return self.breakdown.seller_earnings

    @property
    def net_sales_minor_units(self) -> int:
        """Gross minus VAT: the figure tiering is based on."""
        return self.breakdown.net


@dataclass(frozen=True)
class SettlementOutcome:
    """Result of ``settle``: the record plus whether this call created it."""

    settlement: Settlement
    created: bool

    @property
    def replayed(self) -> bool:
        return not self.created


@dataclass(frozen=True)
class SettlementAdjustment:
    """
    Linked record written when a settlement changes status.

    ``deltas`` are the component movements caused by the transition.  A
    refund or a dispute hold reverses the split; a release in the seller's
    favour restores it; a refund of an already-held settlement moves
    nothing.  Summing the original split and its deltas always gives what
    the platform and seller still hold.
    """

    id: UUID
    settlement_id: UUID
    kind: AdjustmentKind
    from_status: SettlementStatus
    to_status: SettlementStatus
    deltas: MonetaryBreakdown
    currency: str
    reason: str | None
    occurred_at: datetime
