"""
Settlement ORM (``market_modules.settlement.orm``).

Two tables:

* ``settlements`` -- one row per captured payment.  ``gateway_transaction_id``
  is UNIQUE: the database, not application locking, guarantees a payment is
  settled at most once.  A CHECK constraint repeats the conservation law.
* ``settlement_adjustments`` -- linked rows written on status transitions,
  ordered by ``occurred_at``.

ORM listeners reject any UPDATE that touches a split or snapshot column,
and any DELETE.  Only ``status`` and audit columns may change.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.orm.attributes import get_history

from market_kernel.db.base import TrackedBase, UTCDateTime
from market_kernel.domain.clock import as_utc
from market_kernel.exceptions import SettlementImmutableError
from market_kernel.logging_config import get_logger

logger = get_logger("modules.settlement.orm")

IMMUTABLE_SETTLEMENT_FIELDS = (
    "gateway_transaction_id",
    "source_type",
    "currency",
    "gross_amount",
    "vat_amount",
    "transaction_fee",
    "platform_commission",
    "seller_earnings",
    "buyer_country_code",
    "is_business_buyer",
    "buyer_vat_number",
    "vat_rate_applied",
    "reverse_charge",
    "vat_exempt_reason",
    "royalty_rate_snapshot",
    "tier_snapshot",
    "rate_config_version",
    "seller_id",
    "buyer_id",
    "occurred_at",
)


class SettlementModel(TrackedBase):
    """ORM model for ``Settlement``."""

    __tablename__ = "settlements"

    gateway_transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    gross_amount: Mapped[int] = mapped_column(nullable=False)
    vat_amount: Mapped[int] = mapped_column(nullable=False)
    transaction_fee: Mapped[int] = mapped_column(nullable=False)
    platform_commission: Mapped[int] = mapped_column(nullable=False)
    seller_earnings: Mapped[int] = mapped_column(nullable=False)

    buyer_country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    is_business_buyer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    buyer_vat_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    buyer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    vat_rate_applied: Mapped[Decimal] = mapped_column(nullable=False)
    reverse_charge: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    vat_exempt_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)

    royalty_rate_snapshot: Mapped[Decimal] = mapped_column(nullable=False)
    tier_snapshot: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rate_config_version: Mapped[int] = mapped_column(nullable=False)

    seller_id: Mapped[UUID | None] = mapped_column(nullable=True)
    buyer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")

    __table_args__ = (
        UniqueConstraint("gateway_transaction_id", name="uq_settlement_gateway_txn"),
        CheckConstraint(
            "gross_amount = vat_amount + transaction_fee + platform_commission + seller_earnings",
            name="ck_settlement_conservation",
        ),
        CheckConstraint(
            "vat_amount >= 0 AND transaction_fee >= 0 "
            "AND platform_commission >= 0 AND seller_earnings >= 0",
            name="ck_settlement_non_negative",
        ),
        Index("idx_settlement_seller_status_time", "seller_id", "status", "occurred_at"),
        Index("idx_settlement_source_status_time", "source_type", "status", "occurred_at"),
    )

    def to_dto(self):
        from market_engines.vat import VatExemptReason
        from market_modules.settlement.models import (
            MonetaryBreakdown,
            Settlement,
            SettlementStatus,
            SourceType,
        )

        return Settlement(
            id=self.id,
            gateway_transaction_id=self.gateway_transaction_id,
            source_type=SourceType(self.source_type),
            currency=self.currency,
            breakdown=MonetaryBreakdown(
                gross=self.gross_amount,
                vat=self.vat_amount,
                transaction_fee=self.transaction_fee,
                platform_commission=self.platform_commission,
                seller_earnings=self.seller_earnings,
            ),
            buyer_country_code=self.buyer_country_code,
            is_business_buyer=self.is_business_buyer,
            buyer_vat_number=self.buyer_vat_number,
            vat_rate_applied=Decimal(self.vat_rate_applied).normalize(),
            reverse_charge=self.reverse_charge,
            vat_exempt_reason=(
                VatExemptReason(self.vat_exempt_reason) if self.vat_exempt_reason else None
            ),
            royalty_rate_snapshot=Decimal(self.royalty_rate_snapshot).normalize(),
            tier_snapshot=self.tier_snapshot,
            rate_config_version=self.rate_config_version,
            seller_id=self.seller_id,
            buyer_id=self.buyer_id,
            occurred_at=as_utc(self.occurred_at),
            status=SettlementStatus(self.status),
            buyer_email=self.buyer_email,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "SettlementModel":
        b = dto.breakdown
        return cls(
            id=dto.id,
            gateway_transaction_id=dto.gateway_transaction_id,
            source_type=dto.source_type.value,
            currency=dto.currency,
            gross_amount=b.gross,
            vat_amount=b.vat,
            transaction_fee=b.transaction_fee,
            platform_commission=b.platform_commission,
            seller_earnings=b.seller_earnings,
            buyer_country_code=dto.buyer_country_code,
            is_business_buyer=dto.is_business_buyer,
            buyer_vat_number=dto.buyer_vat_number,
            buyer_email=dto.buyer_email,
            vat_rate_applied=dto.vat_rate_applied,
            reverse_charge=dto.reverse_charge,
            vat_exempt_reason=dto.vat_exempt_reason.value if dto.vat_exempt_reason else None,
            royalty_rate_snapshot=dto.royalty_rate_snapshot,
            tier_snapshot=dto.tier_snapshot,
            rate_config_version=dto.rate_config_version,
            seller_id=dto.seller_id,
            buyer_id=dto.buyer_id,
            occurred_at=as_utc(dto.occurred_at),
            status=dto.status.value,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<SettlementModel {self.gateway_transaction_id} "
            f"{self.gross_amount} {self.currency} {self.status}>"
        )


class SettlementAdjustmentModel(TrackedBase):
    """ORM model for ``SettlementAdjustment``."""

    __tablename__ = "settlement_adjustments"

    settlement_id: Mapped[UUID] = mapped_column(
        ForeignKey("settlements.id"), nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    from_status: Mapped[str] = mapped_column(String(20), nullable=False)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    gross_delta: Mapped[int] = mapped_column(nullable=False)
    vat_delta: Mapped[int] = mapped_column(nullable=False)
    fee_delta: Mapped[int] = mapped_column(nullable=False)
    commission_delta: Mapped[int] = mapped_column(nullable=False)
    earnings_delta: Mapped[int] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        Index("idx_adjustment_settlement", "settlement_id"),
    )

    def to_dto(self):
        from market_modules.settlement.models import (
            AdjustmentKind,
            MonetaryBreakdown,
            SettlementAdjustment,
            SettlementStatus,
        )

        return SettlementAdjustment(
            id=self.id,
            settlement_id=self.settlement_id,
            kind=AdjustmentKind(self.kind),
            from_status=SettlementStatus(self.from_status),
            to_status=SettlementStatus(self.to_status),
            deltas=MonetaryBreakdown(
                gross=self.gross_delta,
                vat=self.vat_delta,
                transaction_fee=self.fee_delta,
                platform_commission=self.commission_delta,
                seller_earnings=self.earnings_delta,
            ),
            currency=self.currency,
            reason=self.reason,
            occurred_at=as_utc(self.occurred_at),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "SettlementAdjustmentModel":
        d = dto.deltas
        return cls(
            id=dto.id,
            settlement_id=dto.settlement_id,
            kind=dto.kind.value,
            from_status=dto.from_status.value,
            to_status=dto.to_status.value,
            currency=dto.currency,
            gross_delta=d.gross,
            vat_delta=d.vat,
            fee_delta=d.transaction_fee,
            commission_delta=d.platform_commission,
            earnings_delta=d.seller_earnings,
            reason=dto.reason,
            occurred_at=as_utc(dto.occurred_at),
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<SettlementAdjustmentModel {self.kind} {self.settlement_id}>"


def _check_settlement_immutability(mapper, connection, target):
    changed = [
        name for name in IMMUTABLE_SETTLEMENT_FIELDS
        if get_history(target, name).has_changes()
    ]
    if changed:
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "Settlement",
                "entity_id": str(target.id),
                "operation": "UPDATE",
                "fields": changed,
            },
        )
        raise SettlementImmutableError(str(target.id), changed)


def _check_settlement_delete(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": type(target).__name__,
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise SettlementImmutableError(str(target.id), ["<delete>"])


def _check_adjustment_immutability(mapper, connection, target):
    raise SettlementImmutableError(str(target.settlement_id), ["<adjustment>"])


event.listen(SettlementModel, "before_update", _check_settlement_immutability)
event.listen(SettlementModel, "before_delete", _check_settlement_delete)
event.listen(SettlementAdjustmentModel, "before_update", _check_adjustment_immutability)
event.listen(SettlementAdjustmentModel, "before_delete", _check_settlement_delete)
