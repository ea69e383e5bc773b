"""Invoice DTOs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from market_engines.vat import VatExemptReason


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class DeliveryStatus(str, Enum):
    """Outcome of handing the invoice to the notification collaborator."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"  # Sending disabled or no notifier configured


@dataclass(frozen=True)
class BuyerOverrides:
    """Buyer details supplied at invoice time; each field wins over stored data."""

    name: str | None = None
    email: str | None = None
    country_code: str | None = None
    is_business_buyer: bool | None = None
    company_name: str | None = None
    vat_number: str | None = None


@dataclass(frozen=True)
class BuyerSnapshot:
    party_id: UUID | None
    name: str
    email: str | None
    country_code: str | None
    is_business_buyer: bool
    company_name: str | None = None
    vat_number: str | None = None
    vat_number_validated: bool = False


@dataclass(frozen=True)
class SellerSnapshot:
    party_id: UUID
    name: str
    email: str | None = None


@dataclass(frozen=True)
class PlatformSnapshot:
    name: str
    address: str
    vat_number: str


@dataclass(frozen=True)
class PricingBreakdown:
    """Money on the invoice, copied from the settlement (minor units)."""

    currency: str
    subtotal: int  # Before VAT
    vat_rate: Decimal
    vat_amount: int
    total: int  # What the buyer paid
    transaction_fee: int
    vat_applied: bool
    reverse_charge: bool
    vat_exempt_reason: VatExemptReason | None = None


@dataclass(frozen=True)
class Invoice:
    id: UUID
    invoice_number: str
    settlement_id: UUID
    buyer: BuyerSnapshot
    seller: SellerSnapshot | None
    platform: PlatformSnapshot
    pricing: PricingBreakdown
    vat_exempt_text: str | None
    status: InvoiceStatus
    issue_date: datetime
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    delivery_attempts: int = 0
    delivery_error: str | None = None
    delivered_at: datetime | None = None


@dataclass(frozen=True)
class InvoiceOutcome:
    """Result of ``get_invoice``: the invoice plus whether this call created it."""

    invoice: Invoice
    created: bool


@dataclass(frozen=True)
class DeliveryOutcome:
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class InvoicePage:
    items: tuple[Invoice, ...]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.total else 0
