"""Invoice construction and delivery tracking."""

from market_modules.invoicing.models import (
    BuyerOverrides,
    DeliveryOutcome,
    DeliveryStatus,
    Invoice,
    InvoiceOutcome,
    InvoicePage,
    InvoiceStatus,
)
from market_modules.invoicing.notifier import InvoiceNotifier
from market_modules.invoicing.service import InvoiceBuilder

__all__ = [
    "BuyerOverrides",
    "DeliveryOutcome",
    "DeliveryStatus",
    "Invoice",
    "InvoiceBuilder",
    "InvoiceNotifier",
    "InvoiceOutcome",
    "InvoicePage",
    "InvoiceStatus",
]
