"""
Tier engine tests.

Verifies:
- Boundaries: min inclusive, max exclusive, highest tier wins
- Transition classification
- Calendar-aware window arithmetic and tier-currency conversion
"""

from datetime import datetime, timezone

import pytest

from market_engines.tiers import (
    TierEvaluator,
    TierTransition,
    convert_to_tier_currency,
    rolling_window_start,
    subtract_months,
)


class TestResolveTier:

    @pytest.mark.parametrize("net_sales, expected", [
        (0, "Bronze"),
        (99_999, "Bronze"),
        (100_000, "Silver"),
        (599_999, "Silver"),
        (600_000, "Gold"),
        (50_000_000, "Gold"),
    ])
    def test_boundaries(self, rate_config, net_sales, expected):
        assert rate_config.resolve_tier(net_sales).name == expected


class TestEvaluate:

    def test_upgrade(self, rate_config):
        evaluation = TierEvaluator().evaluate("Bronze", 100_000, rate_config)
        assert evaluation.tier.name == "Silver"
        assert evaluation.transition is TierTransition.UPGRADED
        assert evaluation.changed

    def test_downgrade(self, rate_config):
        evaluation = TierEvaluator().evaluate("Gold", 150_000, rate_config)
        assert evaluation.tier.name == "Silver"
        assert evaluation.transition is TierTransition.DOWNGRADED

    def test_unchanged(self, rate_config):
        evaluation = TierEvaluator().evaluate("Bronze", 99_999, rate_config)
        assert evaluation.transition is TierTransition.UNCHANGED
        assert not evaluation.changed

    def test_no_stored_tier_is_unchanged(self, rate_config):
        evaluation = TierEvaluator().evaluate(None, 0, rate_config)
        assert evaluation.transition is TierTransition.UNCHANGED

    def test_retired_tier_name_counts_as_lowest(self, rate_config):
        evaluation = TierEvaluator().evaluate("Platinum", 0, rate_config)
        assert evaluation.tier.name == "Bronze"
        assert evaluation.transition is TierTransition.UPGRADED


class TestWindow:

    def test_subtract_months_clamps_day(self):
        moment = datetime(2024, 3, 31, 9, 30, tzinfo=timezone.utc)
        assert subtract_months(moment, 1) == datetime(2024, 2, 29, 9, 30, tzinfo=timezone.utc)

    def test_subtract_across_year(self):
        moment = datetime(2026, 1, 15, tzinfo=timezone.utc)
        assert subtract_months(moment, 12) == datetime(2025, 1, 15, tzinfo=timezone.utc)

    def test_rolling_window_uses_config_months(self, rate_config):
        as_of = datetime(2026, 3, 15, 12, tzinfo=timezone.utc)
        assert rolling_window_start(as_of, rate_config) == datetime(
            2025, 3, 15, 12, tzinfo=timezone.utc,
        )


class TestConversion:

    def test_tier_currency_passthrough(self, rate_config):
        assert convert_to_tier_currency(12345, "GBP", rate_config) == 12345

    def test_usd_to_gbp(self, rate_config):
        assert convert_to_tier_currency(1000, "USD", rate_config) == 790

    def test_missing_rate(self, rate_config):
        assert convert_to_tier_currency(1000, "PKR", rate_config) is None
