"""
Property-based tests using Hypothesis.

Properties checked:
- Every split conserves the gross amount with no negative component
- Inclusive VAT never exceeds the gross and net + VAT == gross
- Tier resolution never moves down as net sales grow
- Revenue scan chunks tile the requested range with no gap or overlap
- Settling arbitrary sales always stores a conserved split
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from market_config.defaults import default_rate_config
from market_engines.settlement import SettlementCalculator
from market_engines.vat import VatCalculator, VatInput
from market_kernel.domain.money import extract_inclusive_tax
from market_modules.revenue.models import DateRange
from market_modules.revenue.ranges import chunk_range

CONFIG = default_rate_config()

amounts = st.integers(min_value=0, max_value=10**10)
rates = st.decimals(min_value=Decimal("0"), max_value=Decimal("1"), places=4)
vat_rates = st.decimals(min_value=Decimal("0"), max_value=Decimal("0.30"), places=3)
eu_countries = st.sampled_from(["GB", "DE", "FR", "IE", "ES", "IT", "NL"])


class TestSplitProperties:

    @given(gross=amounts, data=st.data(), fee=st.integers(min_value=0, max_value=10_000), royalty=rates)
    def test_split_is_conserved(self, gross, data, fee, royalty):
        vat = data.draw(st.integers(min_value=0, max_value=gross))
        split = SettlementCalculator().split(gross, vat, fee, royalty)

        assert split.is_conserved
        assert split.transaction_fee <= fee
        assert split.seller_earnings >= 0
        assert split.platform_commission >= 0

    @given(gross=amounts, rate=vat_rates)
    def test_inclusive_tax_bounds(self, gross, rate):
        vat = extract_inclusive_tax(gross, rate)
        assert 0 <= vat <= gross
        if rate == 0:
            assert vat == 0


class TestVatProperties:

    @given(gross=amounts, country=eu_countries)
    def test_inclusive_amounts_add_up(self, gross, country):
        result = VatCalculator().calculate(
            VatInput(amount_minor_units=gross, currency="GBP", buyer_country_code=country),
            CONFIG,
        )
        assert result.vat_applicable
        assert result.net_amount_minor_units + result.vat_amount_minor_units == gross
        assert result.gross_amount_minor_units == gross

    @given(gross=amounts, country=st.sampled_from(["US", "CA", "AU", "JP", None]))
    def test_outside_region_is_untaxed(self, gross, country):
        result = VatCalculator().calculate(
            VatInput(amount_minor_units=gross, currency="USD", buyer_country_code=country),
            CONFIG,
        )
        assert result.vat_amount_minor_units == 0
        assert result.net_amount_minor_units == gross


class TestTierProperties:

    @given(low=st.integers(min_value=0, max_value=10**9), extra=st.integers(min_value=0, max_value=10**9))
    def test_more_sales_never_lower_tier(self, low, extra):
        order = [t.name for t in CONFIG.tiers]
        lower = order.index(CONFIG.resolve_tier(low).name)
        higher = order.index(CONFIG.resolve_tier(low + extra).name)
        assert higher >= lower


class TestChunkProperties:

    @given(
        offset_minutes=st.integers(min_value=0, max_value=60 * 24 * 400),
        length_minutes=st.integers(min_value=0, max_value=60 * 24 * 400),
        chunk_days=st.integers(min_value=1, max_value=45),
    )
    def test_chunks_tile_the_range(self, offset_minutes, length_minutes, chunk_days):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=offset_minutes)
        date_range = DateRange(start=start, end=start + timedelta(minutes=length_minutes))
        chunks = chunk_range(date_range, chunk_days)

        assert chunks[0][0] == date_range.start
        assert chunks[-1][1] == date_range.end
        assert [last for _, _, last in chunks] == [False] * (len(chunks) - 1) + [True]
        for (_, hi, _), (lo, _, _) in zip(chunks, chunks[1:]):
            assert hi == lo


class TestSettlementProperties:

    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(
        gross=st.integers(min_value=1, max_value=10**7),
        country=st.sampled_from(["GB", "DE", "US", None]),
    )
    def test_stored_split_is_conserved(
        self, settlement_service, published_config, make_sale, test_actor_id, gross, country,
    ):
        outcome = settlement_service.settle(
            make_sale(gross=gross, country=country, gateway_id=f"pi_{uuid4().hex}"),
            test_actor_id,
        )
        breakdown = outcome.settlement.breakdown

        assert outcome.created
        assert breakdown.gross == gross
        assert breakdown.is_conserved
        assert min(
            breakdown.vat,
            breakdown.transaction_fee,
            breakdown.platform_commission,
            breakdown.seller_earnings,
        ) >= 0
