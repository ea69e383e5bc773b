"""
Transaction Settlement tests.

Verifies:
- The four-way split and its snapshots for every source type
- Idempotency on the gateway transaction id
- Fail-closed rejections that leave nothing behind
- Immutability of stored splits
- Refund / dispute transitions and their adjustment deltas
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from market_engines.vat import VatExemptReason
from market_kernel.exceptions import (
    InvalidPaymentEventError,
    InvalidStatusTransitionError,
    RateConfigNotFoundError,
    SettlementImmutableError,
    SettlementNotFoundError,
    UnknownSellerError,
    UnsupportedCurrencyError,
)
from market_modules.settlement.models import (
    AdjustmentKind,
    PaymentEvent,
    SettlementStatus,
    SourceType,
)
from market_modules.settlement.orm import SettlementAdjustmentModel, SettlementModel
from market_modules.tiers.orm import SellerTierStateModel


def _settlement_count(session) -> int:
    return session.execute(select(func.count(SettlementModel.id))).scalar_one()


class TestResourceSale:

    def test_uk_bronze_sale(self, settlement_service, published_config, make_sale, seller, test_actor_id):
        outcome = settlement_service.settle(make_sale(gross=1000), test_actor_id)
        s = outcome.settlement

        assert outcome.created
        assert s.vat_amount_minor_units == 167
        assert s.transaction_fee_minor_units == 0
        assert s.platform_commission_minor_units == 333
        assert s.seller_earnings_minor_units == 500
        assert s.net_sales_minor_units == 833
        assert s.vat_rate_applied == Decimal("0.20")
        assert s.tier_snapshot == "Bronze"
        assert s.royalty_rate_snapshot == Decimal("0.60")
        assert s.rate_config_version == published_config.version
        assert s.seller_id == seller.id
        assert s.status is SettlementStatus.COMPLETED

    def test_stored_row_matches_result(self, settlement_service, published_config, make_sale, test_actor_id):
        created = settlement_service.settle(make_sale(gross=1000), test_actor_id).settlement
        stored = settlement_service.get(created.id)
        assert stored.breakdown == created.breakdown
        assert stored.royalty_rate_snapshot == Decimal("0.60")
        assert stored.tier_snapshot == "Bronze"

    def test_offset_timestamp_stored_as_utc(self, settlement_service, published_config, make_sale, test_actor_id):
        paris_early = datetime(2026, 3, 15, 1, 0, tzinfo=timezone(timedelta(hours=2)))
        created = settlement_service.settle(make_sale(occurred_at=paris_early), test_actor_id).settlement
        stored = settlement_service.get(created.id)
        assert stored.occurred_at == datetime(2026, 3, 14, 23, 0, tzinfo=timezone.utc)
        assert stored.occurred_at.utcoffset() == timedelta(0)

    def test_small_ticket_pays_transaction_fee(self, settlement_service, published_config, make_sale, test_actor_id):
        s = settlement_service.settle(make_sale(gross=250), test_actor_id).settlement
        assert s.vat_amount_minor_units == 42
        assert s.transaction_fee_minor_units == 20
        assert s.platform_commission_minor_units == 75
        assert s.seller_earnings_minor_units == 113

    def test_eu_business_buyer_reverse_charge(self, settlement_service, published_config, make_sale, test_actor_id):
        s = settlement_service.settle(
            make_sale(
                gross=1000, currency="EUR", country="DE",
                is_business_buyer=True, buyer_vat_number="DE123456789",
            ),
            test_actor_id,
        ).settlement
        assert s.reverse_charge
        assert s.vat_amount_minor_units == 0
        assert s.vat_exempt_reason is VatExemptReason.REVERSE_CHARGE
        assert s.platform_commission_minor_units == 400
        assert s.seller_earnings_minor_units == 600

    def test_buyer_outside_region(self, settlement_service, published_config, make_sale, test_actor_id):
        s = settlement_service.settle(make_sale(gross=1000, currency="USD", country="US"), test_actor_id).settlement
        assert s.vat_amount_minor_units == 0
        assert s.vat_exempt_reason is VatExemptReason.OUTSIDE_REGION
        assert not s.reverse_charge

    def test_first_sale_creates_tier_state(self, session, settlement_service, published_config, make_sale, seller, test_actor_id):
        settlement_service.settle(make_sale(), test_actor_id)
        state = session.execute(
            select(SellerTierStateModel).where(SellerTierStateModel.seller_id == seller.id)
        ).scalar_one()
        assert state.current_tier == "Bronze"

    def test_snapshot_uses_recomputed_tier(
        self, settlement_service, tier_tracker, published_config, make_sale, seller, test_actor_id,
    ):
        # 120000 gross in the UK is exactly 100000 net: the Silver threshold.
        settlement_service.settle(make_sale(gross=120_000), test_actor_id)
        tier_tracker.recompute_seller(seller.id, published_config.config, test_actor_id)

        s = settlement_service.settle(make_sale(gross=1000), test_actor_id).settlement
        assert s.tier_snapshot == "Silver"
        assert s.royalty_rate_snapshot == Decimal("0.70")
        assert s.platform_commission_minor_units == 250
        assert s.seller_earnings_minor_units == 583

    def test_settled_event_logged(self, settlement_service, published_config, make_sale, test_actor_id, captured_logs):
        event = make_sale()
        settlement_service.settle(event, test_actor_id)
        created = [r for r in captured_logs() if r["message"] == "settlement_created"]
        assert created
        assert created[0]["correlation_id"] == event.gateway_transaction_id


class TestPlatformPayments:

    @pytest.mark.parametrize("source_type", [SourceType.SUBSCRIPTION, SourceType.AD_PAYMENT])
    def test_platform_keeps_net(self, settlement_service, published_config, make_payment, test_actor_id, source_type):
        s = settlement_service.settle(make_payment(source_type=source_type, gross=1200), test_actor_id).settlement
        assert s.vat_amount_minor_units == 200
        assert s.transaction_fee_minor_units == 0
        assert s.platform_commission_minor_units == 1000
        assert s.seller_earnings_minor_units == 0
        assert s.tier_snapshot is None
        assert s.seller_id is None
        assert s.royalty_rate_snapshot == Decimal("0")

    def test_small_subscription_has_no_fee(self, settlement_service, published_config, make_payment, test_actor_id):
        s = settlement_service.settle(make_payment(gross=100), test_actor_id).settlement
        assert s.transaction_fee_minor_units == 0


class TestIdempotency:

    def test_replay_returns_existing(self, session, settlement_service, published_config, make_sale, test_actor_id):
        event = make_sale(gateway_id="pi_replayed")
        first = settlement_service.settle(event, test_actor_id)
        second = settlement_service.settle(event, test_actor_id)

        assert first.created
        assert not second.created
        assert second.replayed
        assert second.settlement.id == first.settlement.id
        assert second.settlement.breakdown == first.settlement.breakdown
        assert _settlement_count(session) == 1

    def test_replay_ignores_changed_payload(self, settlement_service, published_config, make_sale, test_actor_id):
        first = settlement_service.settle(make_sale(gateway_id="pi_same", gross=1000), test_actor_id)
        second = settlement_service.settle(make_sale(gateway_id="pi_same", gross=5000), test_actor_id)
        assert second.settlement.gross_amount_minor_units == 1000
        assert second.settlement.id == first.settlement.id

    def test_replay_logged(self, settlement_service, published_config, make_sale, test_actor_id, captured_logs):
        event = make_sale()
        settlement_service.settle(event, test_actor_id)
        settlement_service.settle(event, test_actor_id)
        assert any(r["message"] == "settlement_replayed" for r in captured_logs())


class TestRejections:

    def test_no_rate_config(self, session, settlement_service, make_sale, test_actor_id):
        with pytest.raises(RateConfigNotFoundError):
            settlement_service.settle(make_sale(), test_actor_id)
        assert _settlement_count(session) == 0

    def test_unknown_seller(self, session, settlement_service, published_config, make_sale, test_actor_id):
        with pytest.raises(UnknownSellerError):
            settlement_service.settle(make_sale(seller_id=uuid4()), test_actor_id)
        assert _settlement_count(session) == 0

    def test_buyer_is_not_a_seller(self, session, settlement_service, published_config, make_sale, buyer, test_actor_id):
        with pytest.raises(UnknownSellerError):
            settlement_service.settle(make_sale(seller_id=buyer.id), test_actor_id)
        assert session.execute(select(func.count(SellerTierStateModel.id))).scalar_one() == 0

    def test_unsupported_currency(self, session, settlement_service, published_config, make_sale, test_actor_id):
        with pytest.raises(UnsupportedCurrencyError):
            settlement_service.settle(make_sale(currency="XYZ"), test_actor_id)
        assert _settlement_count(session) == 0


class TestPaymentEventValidation:

    def _event(self, **overrides):
        fields = dict(
            gateway_transaction_id="pi_1",
            gross_amount_minor_units=1000,
            currency="GBP",
            source_type=SourceType.RESOURCE_SALE,
            buyer_country_code="GB",
            occurred_at=datetime(2026, 3, 1, 10, 0).astimezone(),
            seller_id=uuid4(),
        )
        fields.update(overrides)
        return PaymentEvent(**fields)

    @pytest.mark.parametrize("overrides", [
        {"gateway_transaction_id": " "},
        {"gross_amount_minor_units": 0},
        {"gross_amount_minor_units": -5},
        {"gross_amount_minor_units": 10.0},
        {"source_type": "resource_sale"},
        {"seller_id": None},
        {"occurred_at": datetime(2026, 3, 1, 10, 0)},
    ])
    def test_invalid_events(self, overrides):
        with pytest.raises(InvalidPaymentEventError):
            self._event(**overrides)

    def test_occurred_at_normalized_to_utc(self):
        event = self._event(occurred_at=datetime(2026, 3, 15, 1, 0, tzinfo=timezone(timedelta(hours=2))))
        assert event.occurred_at.tzinfo is timezone.utc
        assert event.occurred_at == datetime(2026, 3, 14, 23, 0, tzinfo=timezone.utc)

    def test_subscription_with_seller_rejected(self):
        with pytest.raises(InvalidPaymentEventError):
            self._event(source_type=SourceType.SUBSCRIPTION)


class TestImmutability:

    def test_money_fields_cannot_change(self, session, settlement_service, published_config, make_sale, test_actor_id):
        s = settlement_service.settle(make_sale(), test_actor_id).settlement
        row = session.get(SettlementModel, s.id)
        row.seller_earnings = row.seller_earnings + 1
        with pytest.raises(SettlementImmutableError) as exc_info:
            session.flush()
        assert "seller_earnings" in exc_info.value.fields
        session.rollback()

    def test_settlement_cannot_be_deleted(self, session, settlement_service, published_config, make_sale, test_actor_id):
        s = settlement_service.settle(make_sale(), test_actor_id).settlement
        session.delete(session.get(SettlementModel, s.id))
        with pytest.raises(SettlementImmutableError):
            session.flush()
        session.rollback()

    def test_adjustments_cannot_change(self, session, settlement_service, published_config, make_sale, test_actor_id):
        s = settlement_service.settle(make_sale(), test_actor_id).settlement
        settlement_service.refund(s.id, test_actor_id)
        adjustment = session.execute(select(SettlementAdjustmentModel)).scalar_one()
        adjustment.reason = "edited"
        with pytest.raises(SettlementImmutableError):
            session.flush()
        session.rollback()


class TestTransitions:

    @pytest.fixture
    def settled(self, settlement_service, published_config, make_sale, test_actor_id):
        return settlement_service.settle(make_sale(gross=1000), test_actor_id).settlement

    def test_refund(self, settlement_service, settled, test_actor_id):
        adjustment = settlement_service.refund(settled.id, test_actor_id, reason="requested")
        assert adjustment.kind is AdjustmentKind.REFUND
        assert adjustment.from_status is SettlementStatus.COMPLETED
        assert adjustment.to_status is SettlementStatus.REFUNDED
        assert adjustment.deltas.gross == -1000
        assert adjustment.deltas.seller_earnings == -500
        assert adjustment.deltas.is_conserved

        stored = settlement_service.get(settled.id)
        assert stored.status is SettlementStatus.REFUNDED
        # the original split is untouched
        assert stored.breakdown == settled.breakdown

    def test_double_refund_rejected(self, settlement_service, settled, test_actor_id):
        settlement_service.refund(settled.id, test_actor_id)
        with pytest.raises(InvalidStatusTransitionError):
            settlement_service.refund(settled.id, test_actor_id)
        assert len(settlement_service.adjustments_for(settled.id)) == 1

    def test_dispute_won_by_seller(self, settlement_service, settled, test_actor_id):
        hold = settlement_service.open_dispute(settled.id, test_actor_id)
        release = settlement_service.resolve_dispute(settled.id, seller_won=True, actor_id=test_actor_id)

        assert hold.deltas.seller_earnings == -500
        assert release.deltas.seller_earnings == 500
        assert release.kind is AdjustmentKind.DISPUTE_RELEASE
        assert settlement_service.get(settled.id).status is SettlementStatus.COMPLETED

    def test_dispute_lost_by_seller(self, settlement_service, settled, test_actor_id):
        settlement_service.open_dispute(settled.id, test_actor_id)
        refund = settlement_service.resolve_dispute(settled.id, seller_won=False, actor_id=test_actor_id)

        assert refund.kind is AdjustmentKind.REFUND
        assert refund.deltas.gross == 0
        assert settlement_service.get(settled.id).status is SettlementStatus.REFUNDED

        total_earnings = sum(a.deltas.seller_earnings for a in settlement_service.adjustments_for(settled.id))
        assert total_earnings == -500

    def test_cannot_dispute_refunded(self, settlement_service, settled, test_actor_id):
        settlement_service.refund(settled.id, test_actor_id)
        with pytest.raises(InvalidStatusTransitionError):
            settlement_service.open_dispute(settled.id, test_actor_id)

    def test_unknown_settlement(self, settlement_service, published_config, test_actor_id):
        with pytest.raises(SettlementNotFoundError):
            settlement_service.refund(uuid4(), test_actor_id)

    def test_get_unknown(self, settlement_service):
        with pytest.raises(SettlementNotFoundError):
            settlement_service.get(uuid4())
