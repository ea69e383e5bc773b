"""Seller tier ORM models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UTCDateTime
from market_kernel.domain.clock import as_utc


class SellerTierStateModel(TrackedBase):
    """One row per seller; written only by lazy creation and recomputation."""

    __tablename__ = "seller_tier_states"

    seller_id: Mapped[UUID] = mapped_column(nullable=False)
    current_tier: Mapped[str] = mapped_column(String(50), nullable=False)
    current_royalty_rate: Mapped[Decimal] = mapped_column(nullable=False)
    tier_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rolling_net_sales_12mo: Mapped[int] = mapped_column(nullable=False, default=0)
    rolling_sale_count_12mo: Mapped[int] = mapped_column(nullable=False, default=0)
    lifetime_net_sales: Mapped[int] = mapped_column(nullable=False, default=0)
    lifetime_earnings: Mapped[int] = mapped_column(nullable=False, default=0)
    lifetime_sale_count: Mapped[int] = mapped_column(nullable=False, default=0)
    last_recomputed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    next_recompute_due: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("seller_id", name="uq_seller_tier_state_seller"),
        Index("idx_seller_tier_state_due", "next_recompute_due"),
    )

    def to_dto(self, history=()):
        from market_modules.tiers.models import SellerTierState

        return SellerTierState(
            seller_id=self.seller_id,
            current_tier=self.current_tier,
            current_royalty_rate=Decimal(self.current_royalty_rate).normalize(),
            tier_currency=self.tier_currency,
            rolling_net_sales_12mo=self.rolling_net_sales_12mo,
            rolling_sale_count_12mo=self.rolling_sale_count_12mo,
            lifetime_net_sales=self.lifetime_net_sales,
            lifetime_earnings=self.lifetime_earnings,
            lifetime_sale_count=self.lifetime_sale_count,
            last_recomputed_at=as_utc(self.last_recomputed_at) if self.last_recomputed_at else None,
            next_recompute_due=as_utc(self.next_recompute_due) if self.next_recompute_due else None,
            history=tuple(history),
        )

    def __repr__(self) -> str:
        return f"<SellerTierStateModel {self.seller_id}: {self.current_tier}>"


class TierHistoryModel(TrackedBase):
    """Append-only record of tier changes."""

    __tablename__ = "seller_tier_history"

    seller_id: Mapped[UUID] = mapped_column(nullable=False)
    tier: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_tier: Mapped[str | None] = mapped_column(String(50), nullable=True)
    royalty_rate: Mapped[Decimal] = mapped_column(nullable=False)
    achieved_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    net_sales_at_change: Mapped[int] = mapped_column(nullable=False, default=0)

    __table_args__ = (
        Index("idx_tier_history_seller_time", "seller_id", "achieved_at"),
    )

    def to_dto(self):
        from market_modules.tiers.models import TierHistoryEntry

        return TierHistoryEntry(
            tier=self.tier,
            royalty_rate=Decimal(self.royalty_rate).normalize(),
            achieved_at=as_utc(self.achieved_at),
            net_sales_at_change=self.net_sales_at_change,
            previous_tier=self.previous_tier,
        )

    def __repr__(self) -> str:
        return f"<TierHistoryModel {self.seller_id}: {self.previous_tier} -> {self.tier}>"
