"""
Invoice Builder tests.

Verifies:
- One invoice per settlement, numbered gap-free from the configured start
- Pricing copied exactly from the settlement, with VAT exemption wording
- Delivery outcome is recorded and retryable without touching the invoice
"""

from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

import pytest

from market_config.defaults import default_rate_config
from market_kernel.exceptions import (
    DeliveryFailureError,
    InvoiceNotFoundError,
    SettlementNotFoundError,
    ValidationError,
)
from market_modules.invoicing.models import (
    BuyerOverrides,
    DeliveryOutcome,
    DeliveryStatus,
    InvoiceStatus,
)
from market_modules.invoicing.notifier import InvoiceNotifier
from market_modules.invoicing.service import InvoiceBuilder
from market_modules.settlement.models import SourceType


class RecordingNotifier:
    """Notifier double: records calls, succeeds or fails on demand."""

    def __init__(self, succeed=True, explode=False):
        self.succeed = succeed
        self.explode = explode
        self.sent = []

    def send_invoice(self, invoice):
        self.sent.append(invoice.invoice_number)
        if self.explode:
            raise ConnectionError("smtp unreachable")
        if self.succeed:
            return DeliveryOutcome(success=True)
        return DeliveryOutcome(success=False, error="mailbox full")


@pytest.fixture
def settle(settlement_service, published_config, make_sale, test_actor_id):
    def _settle(**kwargs):
        return settlement_service.settle(make_sale(**kwargs), test_actor_id).settlement

    return _settle


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def notifying_builder(session, deterministic_clock, notifier):
    return InvoiceBuilder(session, notifier=notifier, clock=deterministic_clock)


class TestGetInvoice:

    def test_uk_sale_invoice(self, invoice_builder, settle, test_actor_id):
        s = settle(gross=1000)
        outcome = invoice_builder.get_invoice(s.id, test_actor_id)
        invoice = outcome.invoice

        assert outcome.created
        assert invoice.invoice_number == "INV-1001"
        assert invoice.settlement_id == s.id
        assert invoice.pricing.subtotal == 833
        assert invoice.pricing.vat_amount == 167
        assert invoice.pricing.total == 1000
        assert invoice.pricing.vat_rate == Decimal("0.20")
        assert invoice.pricing.vat_applied
        assert invoice.vat_exempt_text is None
        assert invoice.status is InvoiceStatus.PAID
        assert invoice.buyer.name == "Ben Buyer"
        assert invoice.buyer.email == "ben@example.com"
        assert invoice.seller.name == "Ada Lessons"
        assert invoice.platform.name == "Marketplace Platform Ltd"

    def test_repeat_request_returns_same_invoice(self, invoice_builder, settle, test_actor_id):
        s = settle()
        first = invoice_builder.get_invoice(s.id, test_actor_id)
        second = invoice_builder.get_invoice(s.id, test_actor_id)
        assert not second.created
        assert second.invoice.invoice_number == first.invoice.invoice_number
        assert second.invoice.id == first.invoice.id

    def test_numbers_are_sequential(self, invoice_builder, settle, test_actor_id):
        numbers = [invoice_builder.get_invoice(settle().id, test_actor_id).invoice.invoice_number for _ in range(3)]
        assert numbers == ["INV-1001", "INV-1002", "INV-1003"]

    def test_unknown_settlement_consumes_no_number(self, invoice_builder, settle, test_actor_id):
        with pytest.raises(SettlementNotFoundError):
            invoice_builder.get_invoice(uuid4(), test_actor_id)
        assert invoice_builder.get_invoice(settle().id, test_actor_id).invoice.invoice_number == "INV-1001"

    def test_configured_prefix_and_start(self, rate_store, invoice_builder, settle, test_actor_id):
        config = default_rate_config()
        rate_store.publish(
            replace(config, invoice=replace(config.invoice, invoice_prefix="MKT", first_invoice_number=5000)),
            test_actor_id,
        )
        invoice = invoice_builder.get_invoice(settle().id, test_actor_id).invoice
        assert invoice.invoice_number == "MKT-5000"

    def test_reverse_charge_wording(self, invoice_builder, settle, test_actor_id):
        s = settle(currency="EUR", country="DE", is_business_buyer=True, buyer_vat_number="DE123456789")
        invoice = invoice_builder.get_invoice(s.id, test_actor_id).invoice
        assert invoice.pricing.reverse_charge
        assert not invoice.pricing.vat_applied
        assert invoice.pricing.vat_amount == 0
        assert "Reverse charge" in invoice.vat_exempt_text
        assert invoice.buyer.vat_number == "DE123456789"
        assert invoice.buyer.vat_number_validated
        assert invoice.buyer.is_business_buyer

    def test_outside_region_wording(self, invoice_builder, settle, test_actor_id):
        s = settle(currency="USD", country="US")
        invoice = invoice_builder.get_invoice(s.id, test_actor_id).invoice
        assert invoice.vat_exempt_text.startswith("Outside the scope of VAT")

    def test_refunded_settlement(self, invoice_builder, settlement_service, settle, test_actor_id):
        s = settle()
        settlement_service.refund(s.id, test_actor_id)
        invoice = invoice_builder.get_invoice(s.id, test_actor_id).invoice
        assert invoice.status is InvoiceStatus.REFUNDED

    def test_subscription_has_no_seller(self, invoice_builder, settlement_service, published_config, make_payment, test_actor_id):
        s = settlement_service.settle(
            make_payment(source_type=SourceType.SUBSCRIPTION, buyer_email="sub@example.com"),
            test_actor_id,
        ).settlement
        invoice = invoice_builder.get_invoice(s.id, test_actor_id).invoice
        assert invoice.seller is None
        assert invoice.buyer.email == "sub@example.com"
        assert invoice.buyer.name == "sub@example.com"

    def test_buyer_overrides(self, invoice_builder, settle, test_actor_id):
        s = settle()
        invoice = invoice_builder.get_invoice(
            s.id, test_actor_id,
            buyer_overrides=BuyerOverrides(name="Hillside Finance", company_name="Hillside Ltd"),
        ).invoice
        assert invoice.buyer.name == "Hillside Finance"
        assert invoice.buyer.company_name == "Hillside Ltd"

    def test_lookup_by_number(self, invoice_builder, settle, test_actor_id):
        s = settle()
        number = invoice_builder.get_invoice(s.id, test_actor_id).invoice.invoice_number
        assert invoice_builder.get_by_number(number).settlement_id == s.id
        assert invoice_builder.find_for_settlement(s.id).invoice_number == number

    def test_unknown_number(self, invoice_builder):
        with pytest.raises(InvoiceNotFoundError):
            invoice_builder.get_by_number("INV-9999")


class TestDelivery:

    def test_without_notifier_delivery_is_skipped(self, invoice_builder, settle, test_actor_id):
        invoice = invoice_builder.get_invoice(settle().id, test_actor_id).invoice
        assert invoice.delivery_status is DeliveryStatus.SKIPPED
        assert invoice.delivery_attempts == 0

    def test_successful_delivery(self, notifying_builder, notifier, settle, deterministic_clock, test_actor_id):
        invoice = notifying_builder.get_invoice(settle().id, test_actor_id).invoice
        assert isinstance(notifier, InvoiceNotifier)
        assert notifier.sent == [invoice.invoice_number]
        assert invoice.delivery_status is DeliveryStatus.SENT
        assert invoice.delivery_attempts == 1
        assert invoice.delivered_at == deterministic_clock.now()

    def test_repeat_request_does_not_resend(self, notifying_builder, notifier, settle, test_actor_id):
        s = settle()
        notifying_builder.get_invoice(s.id, test_actor_id)
        notifying_builder.get_invoice(s.id, test_actor_id)
        assert len(notifier.sent) == 1

    def test_failed_delivery_keeps_invoice(self, session, deterministic_clock, settle, test_actor_id, captured_logs):
        notifier = RecordingNotifier(succeed=False)
        builder = InvoiceBuilder(session, notifier=notifier, clock=deterministic_clock)
        outcome = builder.get_invoice(settle().id, test_actor_id)

        assert outcome.created
        assert outcome.invoice.delivery_status is DeliveryStatus.FAILED
        assert outcome.invoice.delivery_error == "mailbox full"
        assert builder.get_by_number(outcome.invoice.invoice_number) is not None
        assert any(r["message"] == "invoice_delivery_failed" for r in captured_logs())

    def test_crashing_notifier_is_recorded(self, session, deterministic_clock, settle, test_actor_id):
        builder = InvoiceBuilder(session, notifier=RecordingNotifier(explode=True), clock=deterministic_clock)
        invoice = builder.get_invoice(settle().id, test_actor_id).invoice
        assert invoice.delivery_status is DeliveryStatus.FAILED
        assert "ConnectionError" in invoice.delivery_error

    def test_unrecorded_delivery_still_returns_invoice(
        self, monkeypatch, session, deterministic_clock, settle, test_actor_id, captured_logs,
    ):
        notifier = RecordingNotifier()
        builder = InvoiceBuilder(session, notifier=notifier, clock=deterministic_clock)
        settlement_id = settle().id
        real_commit = session.commit

        def commit():
            if notifier.sent:
                raise RuntimeError("database is locked")
            real_commit()

        monkeypatch.setattr(session, "commit", commit)
        outcome = builder.get_invoice(settlement_id, test_actor_id)
        monkeypatch.undo()

        assert outcome.created
        assert outcome.invoice.delivery_status is DeliveryStatus.PENDING
        assert outcome.invoice.delivery_attempts == 0
        assert notifier.sent == [outcome.invoice.invoice_number]
        stored = builder.get_by_number(outcome.invoice.invoice_number)
        assert stored.delivery_status is DeliveryStatus.PENDING

        records = [r for r in captured_logs() if r["message"] == "invoice_delivery_record_failed"]
        assert records[0]["exc_type"] == "RuntimeError"
        assert records[0]["sent"] is True

        retried = builder.retry_failed_deliveries()
        assert retried[0].delivery_status is DeliveryStatus.SENT

    def test_retry_after_failure(self, session, deterministic_clock, settle, test_actor_id):
        notifier = RecordingNotifier(succeed=False)
        builder = InvoiceBuilder(session, notifier=notifier, clock=deterministic_clock)
        number = builder.get_invoice(settle().id, test_actor_id).invoice.invoice_number

        notifier.succeed = True
        retried = builder.retry_failed_deliveries()
        assert [i.invoice_number for i in retried] == [number]
        assert retried[0].delivery_status is DeliveryStatus.SENT
        assert retried[0].delivery_attempts == 2
        assert retried[0].delivery_error is None

    def test_retry_single_invoice(self, notifying_builder, notifier, settle, test_actor_id):
        number = notifying_builder.get_invoice(settle().id, test_actor_id).invoice.invoice_number
        invoice = notifying_builder.retry_delivery(number)
        assert invoice.delivery_attempts == 2
        assert notifier.sent == [number, number]

    def test_retry_without_notifier(self, invoice_builder, settle, test_actor_id):
        number = invoice_builder.get_invoice(settle().id, test_actor_id).invoice.invoice_number
        with pytest.raises(DeliveryFailureError):
            invoice_builder.retry_delivery(number)
        assert invoice_builder.retry_failed_deliveries() == []


class TestBuyerListing:

    def test_pagination(self, invoice_builder, settle, buyer, test_actor_id):
        for _ in range(3):
            invoice_builder.get_invoice(settle().id, test_actor_id)

        page = invoice_builder.invoices_for_buyer(buyer.id, page=1, limit=2)
        assert page.total == 3
        assert page.total_pages == 2
        assert [i.invoice_number for i in page.items] == ["INV-1003", "INV-1002"]

        second = invoice_builder.invoices_for_buyer(buyer.id, page=2, limit=2)
        assert [i.invoice_number for i in second.items] == ["INV-1001"]

    def test_status_filter(self, invoice_builder, settlement_service, settle, buyer, test_actor_id):
        paid = settle()
        refunded = settle()
        settlement_service.refund(refunded.id, test_actor_id)
        invoice_builder.get_invoice(paid.id, test_actor_id)
        invoice_builder.get_invoice(refunded.id, test_actor_id)

        page = invoice_builder.invoices_for_buyer(buyer.id, status=InvoiceStatus.REFUNDED)
        assert page.total == 1
        assert page.items[0].settlement_id == refunded.id

    @pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), (1, 101)])
    def test_invalid_paging(self, invoice_builder, buyer, page, limit):
        with pytest.raises(ValidationError):
            invoice_builder.invoices_for_buyer(buyer.id, page=page, limit=limit)


class TestFormatted:

    def test_display_strings(self, invoice_builder, settle, test_actor_id):
        invoice = invoice_builder.get_invoice(settle(gross=1000).id, test_actor_id).invoice
        display = InvoiceBuilder.formatted(invoice)
        assert display["total"] == "£10.00"
        assert display["vat_amount"] == "£1.67"
        assert display["subtotal"] == "£8.33"
        assert display["vat_rate"] == "20%"
        assert display["issue_date"] == "15 March 2026"
        assert display["platform_vat_number"] is None
