"""
Notification collaborator interface.

Email rendering and transport live outside this package; the builder only
needs ``send_invoice`` and records whatever it reports.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from market_modules.invoicing.models import DeliveryOutcome, Invoice


@runtime_checkable
class InvoiceNotifier(Protocol):
    """Delivers an invoice to its buyer."""

    def send_invoice(self, invoice: Invoice) -> DeliveryOutcome: ...
