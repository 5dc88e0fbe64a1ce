"""
Token Pricing Engine

Prices a business token from its available supply and the market activity
recorded in the ledger:

    multiplier = 1
               + (supply / supply_step)               * supply_weight
               + investor_count                       * investor_weight
               + (total_invested / investment_step)   * investment_weight
               + (transaction_count / transaction_step) * transaction_weight

    price = min(base_price * multiplier, base_price * max_price_multiple)

rounded half-up to the cent. With the default coefficients the price always
lands in [19.00, 190.00] for non-negative inputs.

``compute_price`` is pure; ``PricingEngine`` reads the aggregates for a
business and feeds them to it. Recomputing is idempotent: the result only
depends on what is stored.

Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.services import ledger

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class PricingConfig:
    """
    Named coefficients of the pricing formula.

    Attributes:
        base_price: Price at zero supply and zero activity
        supply_step / supply_weight: every ``supply_step`` tokens add ``supply_weight``
        investor_weight: added per distinct investor
        investment_step / investment_weight: every ``investment_step`` invested adds ``investment_weight``
        transaction_step / transaction_weight: every ``transaction_step`` trades add ``transaction_weight``
        max_price_multiple: cap as a multiple of ``base_price``
    """
    base_price: Decimal = Decimal("19.00")
    supply_step: Decimal = Decimal("10")
    supply_weight: Decimal = Decimal("0.05")
    investor_weight: Decimal = Decimal("0.02")
    investment_step: Decimal = Decimal("100")
    investment_weight: Decimal = Decimal("0.01")
    transaction_step: Decimal = Decimal("5")
    transaction_weight: Decimal = Decimal("0.01")
    max_price_multiple: Decimal = Decimal("10")

    @property
    def max_price(self) -> Decimal:
        return self.base_price * self.max_price_multiple

    @classmethod
    def from_settings(cls, settings: Settings) -> "PricingConfig":
        return cls(
            base_price=settings.token_base_price,
            supply_step=settings.token_supply_step,
            supply_weight=settings.token_supply_weight,
            investor_weight=settings.token_investor_weight,
            investment_step=settings.token_investment_step,
            investment_weight=settings.token_investment_weight,
            transaction_step=settings.token_transaction_step,
            transaction_weight=settings.token_transaction_weight,
            max_price_multiple=settings.token_max_price_multiple,
        )


@dataclass(frozen=True)
class MarketSignals:
    """Aggregate demand signals of one business."""
    investor_count: int = 0
    total_invested: Decimal = Decimal("0")
    transaction_count: int = 0


def price_multiplier(
    supply: int,
    signals: MarketSignals,
    config: PricingConfig,
) -> Decimal:
    """Sum of 1 and the four activity multipliers (uncapped)."""
    supply_multiplier = Decimal(supply) / config.supply_step * config.supply_weight
    investor_multiplier = Decimal(signals.investor_count) * config.investor_weight
    investment_multiplier = (
        Decimal(signals.total_invested) / config.investment_step * config.investment_weight
    )
    transaction_multiplier = (
        Decimal(signals.transaction_count) / config.transaction_step * config.transaction_weight
    )
    return (
        1
        + supply_multiplier
        + investor_multiplier
        + investment_multiplier
        + transaction_multiplier
    )


def compute_price(
    supply: int,
    signals: MarketSignals,
    config: Optional[PricingConfig] = None,
) -> Decimal:
    """
    Price a token from its supply and market signals.

    Args:
        supply: Candidate available supply (already reflecting the pending change)
        signals: Investor count, total invested and transaction count
        config: Formula coefficients (defaults to the standard ones)

    Returns:
        Decimal price with two decimal places
    """
    config = config or PricingConfig()
    price = config.base_price * price_multiplier(supply, signals, config)
    price = min(price, config.max_price)
    price = max(price, Decimal("0"))
    return price.quantize(CENT, rounding=ROUND_HALF_UP)


class PricingEngine:
    """Reads a business's market signals from the ledger and prices its token."""

    def __init__(self, config: Optional[PricingConfig] = None):
        self.config = config or PricingConfig.from_settings(get_settings())

    @property
    def base_price(self) -> Decimal:
        return self.config.base_price.quantize(CENT, rounding=ROUND_HALF_UP)

    async def market_signals(self, db: AsyncSession, business_id: str) -> MarketSignals:
        """Collect the aggregates the formula needs. Unknown businesses yield zeros."""
        investor_count, total_invested = await ledger.subscription_aggregates(db, business_id)
        transaction_count = await ledger.count_transactions(db, business_id)
        return MarketSignals(
            investor_count=investor_count,
            total_invested=total_invested,
            transaction_count=transaction_count,
        )

    async def price_for(self, db: AsyncSession, business_id: str, supply: int) -> Decimal:
        """
        Price ``business_id``'s token at ``supply``.

        Pending writes on ``db`` are flushed first so the aggregates include
        the trade being executed in the current transaction.
        """
        await db.flush()
        signals = await self.market_signals(db, business_id)
        price = compute_price(supply, signals, self.config)

        logger.info(
            f"📊 Price calculation: Business={business_id}, Supply={supply}, "
            f"Investors={signals.investor_count}, Invested=${signals.total_invested:.2f}, "
            f"Txs={signals.transaction_count} → Price=${price}"
        )
        return price
