"""
Unit tests for the token pricing formula.
"""

from decimal import Decimal

import pytest

from app.core.config import Settings
from app.services.pricing import MarketSignals, PricingConfig, compute_price, price_multiplier


class TestComputePrice:
    """Test cases for compute_price."""

    def test_no_supply_no_activity_is_base_price(self):
        assert compute_price(0, MarketSignals()) == Decimal("19.00")

    def test_supply_only(self):
        # 1 + 100/10 * 0.05 = 1.5
        assert compute_price(100, MarketSignals()) == Decimal("28.50")

    def test_after_first_buy(self):
        """Supply 90, one investor, 190 invested, one transaction."""
        signals = MarketSignals(investor_count=1, total_invested=Decimal("190.00"), transaction_count=1)

        assert price_multiplier(90, signals, PricingConfig()) == Decimal("1.491")
        assert compute_price(90, signals) == Decimal("28.33")

    def test_rounds_half_up_to_cents(self):
        # 19 * 1.5005 = 28.5095
        signals = MarketSignals(investor_count=1, total_invested=Decimal("285.00"), transaction_count=1)
        assert compute_price(90, signals) == Decimal("28.51")

    def test_capped_at_ten_times_base(self):
        signals = MarketSignals(investor_count=1000, total_invested=Decimal("1000000"), transaction_count=5000)
        assert compute_price(1_000_000, signals) == Decimal("190.00")

    @pytest.mark.parametrize("supply,investors,invested,txs", [
        (0, 0, "0", 0),
        (1, 0, "0", 0),
        (50, 3, "420.50", 7),
        (10_000, 0, "0", 0),
        (0, 0, "99999999.99", 0),
    ])
    def test_always_within_bounds(self, supply, investors, invested, txs):
        signals = MarketSignals(investors, Decimal(invested), txs)
        price = compute_price(supply, signals)

        assert Decimal("19.00") <= price <= Decimal("190.00")
        assert price == price.quantize(Decimal("0.01"))

    def test_is_deterministic(self):
        signals = MarketSignals(investor_count=2, total_invested=Decimal("57.00"), transaction_count=3)
        assert compute_price(42, signals) == compute_price(42, signals)

    def test_custom_config(self):
        config = PricingConfig(base_price=Decimal("10.00"), max_price_multiple=Decimal("2"))
        assert compute_price(0, MarketSignals(), config) == Decimal("10.00")
        assert compute_price(10_000, MarketSignals(), config) == Decimal("20.00")


class TestPricingConfig:
    """Test cases for PricingConfig."""

    def test_max_price(self):
        assert PricingConfig().max_price == Decimal("190.00")

    def test_from_settings(self):
        settings = Settings(token_base_price=Decimal("25.00"), token_investor_weight=Decimal("0.1"))
        config = PricingConfig.from_settings(settings)

        assert config.base_price == Decimal("25.00")
        assert config.investor_weight == Decimal("0.1")
        assert config.supply_weight == Decimal("0.05")
