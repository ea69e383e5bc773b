"""
Invoice ORM (``market_modules.invoicing.orm``).

``settlement_id`` is UNIQUE so one settlement can never carry two invoices;
``invoice_number`` is UNIQUE as a second guard on the counter.  Party
snapshots are stored as JSON so later profile edits do not rewrite issued
invoices.
"""

from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UTCDateTime
from market_kernel.domain.clock import as_utc


def _snapshot_to_json(snapshot) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    data = asdict(snapshot)
    if data.get("party_id") is not None:
        data["party_id"] = str(data["party_id"])
    return data


def _party_id(data: dict[str, Any]) -> UUID | None:
    value = data.get("party_id")
    return UUID(value) if value else None


class InvoiceModel(TrackedBase):
    """ORM model for ``Invoice``."""

    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    settlement_id: Mapped[UUID] = mapped_column(ForeignKey("settlements.id"), nullable=False)
    buyer_id: Mapped[UUID | None] = mapped_column(nullable=True)

    buyer_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    seller_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    platform_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    subtotal: Mapped[int] = mapped_column(nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(nullable=False)
    vat_amount: Mapped[int] = mapped_column(nullable=False)
    total: Mapped[int] = mapped_column(nullable=False)
    transaction_fee: Mapped[int] = mapped_column(nullable=False, default=0)
    vat_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reverse_charge: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    vat_exempt_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)
    vat_exempt_text: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="paid")
    issue_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    delivery_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    delivery_attempts: Mapped[int] = mapped_column(nullable=False, default=0)
    delivery_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoice_number"),
        UniqueConstraint("settlement_id", name="uq_invoice_settlement"),
        Index("idx_invoice_buyer", "buyer_id"),
        Index("idx_invoice_delivery_status", "delivery_status"),
        Index("idx_invoice_issue_date", "issue_date"),
    )

    def to_dto(self):
        from market_engines.vat import VatExemptReason
        from market_modules.invoicing.models import (
            BuyerSnapshot,
            DeliveryStatus,
            Invoice,
            InvoiceStatus,
            PlatformSnapshot,
            PricingBreakdown,
            SellerSnapshot,
        )

        buyer = dict(self.buyer_snapshot)
        buyer["party_id"] = _party_id(buyer)
        seller = None
        if self.seller_snapshot:
            seller = dict(self.seller_snapshot)
            seller["party_id"] = _party_id(seller)
            seller = SellerSnapshot(**seller)

        return Invoice(
            id=self.id,
            invoice_number=self.invoice_number,
            settlement_id=self.settlement_id,
            buyer=BuyerSnapshot(**buyer),
            seller=seller,
            platform=PlatformSnapshot(**self.platform_snapshot),
            pricing=PricingBreakdown(
                currency=self.currency,
                subtotal=self.subtotal,
                vat_rate=Decimal(self.vat_rate).normalize(),
                vat_amount=self.vat_amount,
                total=self.total,
                transaction_fee=self.transaction_fee,
                vat_applied=self.vat_applied,
                reverse_charge=self.reverse_charge,
                vat_exempt_reason=(
                    VatExemptReason(self.vat_exempt_reason) if self.vat_exempt_reason else None
                ),
            ),
            vat_exempt_text=self.vat_exempt_text,
            status=InvoiceStatus(self.status),
            issue_date=as_utc(self.issue_date),
            delivery_status=DeliveryStatus(self.delivery_status),
            delivery_attempts=self.delivery_attempts,
            delivery_error=self.delivery_error,
            delivered_at=as_utc(self.delivered_at) if self.delivered_at else None,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "InvoiceModel":
        p = dto.pricing
        return cls(
            id=dto.id,
            invoice_number=dto.invoice_number,
            settlement_id=dto.settlement_id,
            buyer_id=dto.buyer.party_id,
            buyer_snapshot=_snapshot_to_json(dto.buyer),
            seller_snapshot=_snapshot_to_json(dto.seller),
            platform_snapshot=_snapshot_to_json(dto.platform),
            currency=p.currency,
            subtotal=p.subtotal,
            vat_rate=p.vat_rate,
            vat_amount=p.vat_amount,
            total=p.total,
            transaction_fee=p.transaction_fee,
            vat_applied=p.vat_applied,
            reverse_charge=p.reverse_charge,
            vat_exempt_reason=p.vat_exempt_reason.value if p.vat_exempt_reason else None,
            vat_exempt_text=dto.vat_exempt_text,
            status=dto.status.value,
            issue_date=dto.issue_date,
            delivery_status=dto.delivery_status.value,
            delivery_attempts=dto.delivery_attempts,
            delivery_error=dto.delivery_error,
            delivered_at=dto.delivered_at,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number} {self.status}>"
