"""
Revenue ledger ORM for the two non-marketplace streams.

Subscriptions and ad payments are written by the billing and ads CRUD
layers; the aggregator only reads them.  Marketplace revenue is read from
``settlements``.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from market_kernel.db.base import TrackedBase, UTCDateTime


class SubscriptionPlanModel(TrackedBase):
    """A purchasable plan aimed at one audience."""

    __tablename__ = "subscription_plans"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    audience: Mapped[str] = mapped_column(String(20), nullable=False)
    billing_period: Mapped[str] = mapped_column(String(20), nullable=False)
    price_minor_units: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("idx_plan_audience", "audience"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionPlanModel {self.name} ({self.audience}, {self.billing_period})>"


class SubscriptionModel(TrackedBase):
    """One subscriber's subscription to a plan."""

    __tablename__ = "subscriptions"

    subscriber_id: Mapped[UUID] = mapped_column(nullable=False)
    plan_id: Mapped[UUID] = mapped_column(ForeignKey("subscription_plans.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    price_paid_minor_units: Mapped[int] = mapped_column(nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    current_period_end: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    plan: Mapped[SubscriptionPlanModel] = relationship(lazy="joined")

    __table_args__ = (
        Index("idx_subscription_status_started", "status", "started_at"),
        Index("idx_subscription_cancelled", "cancelled_at"),
        Index("idx_subscription_subscriber", "subscriber_id"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionModel {self.subscriber_id} {self.status}>"


class AdPaymentModel(TrackedBase):
    """A paid job-ad placement bought by a school."""

    __tablename__ = "ad_payments"

    school_id: Mapped[UUID] = mapped_column(nullable=False)
    tier_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    paid_amount_minor_units: Mapped[int] = mapped_column(nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("idx_ad_payment_status_paid", "status", "paid_at"),
        Index("idx_ad_payment_school", "school_id"),
    )

    def __repr__(self) -> str:
        return f"<AdPaymentModel {self.school_id} {self.status}>"
