"""
Subscription (Investment) Manager

Executes investor buys and sells against a business token. Each trade is a
single database transaction spanning:

    1. token row read under lock (price and supply as of trade start)
    2. subscription upsert (buy) or delete (sell)
    3. transaction log append
    4. supply change and re-price

Either all of it commits or none of it does. Sells always liquidate the
whole position at the current price; the cost basis (``invested``) is
never reduced, so the realized profit is ``refund - invested``.

Events are published after commit and are best-effort.

Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, InvalidArgumentError, InsufficientSupplyError
from app.database import run_in_transaction
from app.models import BusinessSubscription, BusinessToken, Transaction, TransactionType
from app.services import ledger
from app.services.notifications import BaseEventPublisher, get_event_publisher
from app.services.pricing import PricingEngine

logger = logging.getLogger(__name__)


@dataclass
class SubscribeResult:
    """Outcome of a buy."""
    subscription: BusinessSubscription
    transaction: Transaction
    token: BusinessToken
    investment_amount: Decimal


@dataclass
class UnsubscribeResult:
    """Outcome of a full liquidation."""
    transaction: Transaction
    token: BusinessToken
    tokens_returned: int
    refund_amount: Decimal
    cost_basis: Decimal

    @property
    def realized_profit(self) -> Decimal:
        return self.refund_amount - self.cost_basis


@dataclass
class SubscriberSummary:
    """Investors of a business with totals summed over the returned rows."""
    subscriptions: list[BusinessSubscription]
    total_invested: Decimal
    total_tokens_sold: int

    @property
    def subscriber_count(self) -> int:
        return len(self.subscriptions)


@dataclass
class SubscriptionStats:
    """A position marked to the current price. Computed on read, never stored."""
    subscription: BusinessSubscription
    current_price: Optional[Decimal]
    current_value: Optional[Decimal]
    share_percentage: Optional[float]

    @property
    def profit(self) -> Optional[Decimal]:
        if self.current_value is None:
            return None
        return self.current_value - Decimal(self.subscription.invested)


class SubscriptionManager:
    """Buys and sells business tokens on behalf of investors."""

    def __init__(
        self,
        pricing: Optional[PricingEngine] = None,
        publisher: Optional[BaseEventPublisher] = None,
    ):
        self.pricing = pricing or PricingEngine()
        self.publisher = publisher

    def _publisher(self) -> BaseEventPublisher:
        return self.publisher or get_event_publisher()

    # =========================================================================
    # TRADES
    # =========================================================================

    async def subscribe(
        self,
        db: AsyncSession,
        user_id: str,
        business_id: str,
        tokens_amount: int,
    ) -> SubscribeResult:
        """
        Buy ``tokens_amount`` tokens of a business for ``user_id``.

        Raises:
            InvalidArgumentError: ``tokens_amount`` is not positive
            NotFoundError: Business or token missing
            InsufficientSupplyError: More tokens requested than available
        """
        if tokens_amount <= 0:
            raise InvalidArgumentError("tokens amount must be positive")

        async def operation(session: AsyncSession) -> SubscribeResult:
            business = await ledger.get_business(session, business_id)
            if business is None:
                raise NotFoundError(f"business not found: {business_id}")

            token = await ledger.get_token(session, business_id, for_update=True)
            if token is None:
                raise NotFoundError(f"business token not found: {business_id}")

            if tokens_amount > token.total_supply:
                raise InsufficientSupplyError(token.total_supply, tokens_amount)

            price = Decimal(token.price)
            investment = price * tokens_amount

            subscription = await ledger.get_subscription(session, user_id, business_id)
            if subscription is None:
                subscription = BusinessSubscription(
                    user_id=user_id,
                    business_id=business_id,
                    tokens_owned=tokens_amount,
                    invested=investment,
                )
                session.add(subscription)
            else:
                subscription.tokens_owned += tokens_amount
                subscription.invested = Decimal(subscription.invested) + investment

            transaction = Transaction(
                business_id=business_id,
                from_user=user_id,
                to_user=business.owner_id,
                tokens=tokens_amount,
                amount=investment,
                tx_type=TransactionType.BUY,
            )
            session.add(transaction)

            new_supply = token.total_supply - tokens_amount
            token.price = await self.pricing.price_for(session, business_id, new_supply)
            token.total_supply = new_supply

            logger.info(
                f"✅ User {user_id} invested ${investment} in {business.name} ({business_id}), "
                f"bought {tokens_amount} tokens at ${price}/token → new price ${token.price}"
            )
            return SubscribeResult(
                subscription=subscription,
                transaction=transaction,
                token=token,
                investment_amount=investment,
            )

        result = await run_in_transaction(db, operation)

        await self._publisher().publish("token_purchased", {
            "business_id": business_id,
            "user_id": user_id,
            "tokens": tokens_amount,
            "amount": result.investment_amount,
            "price": result.token.price,
            "supply": result.token.total_supply,
        })
        return result

    async def unsubscribe(
        self,
        db: AsyncSession,
        user_id: str,
        business_id: str,
    ) -> UnsubscribeResult:
        """
        Sell the user's whole position back to the business at the current price.

        Raises:
            NotFoundError: No subscription, or business/token missing
        """
        async def operation(session: AsyncSession) -> UnsubscribeResult:
            subscription = await ledger.get_subscription(session, user_id, business_id)
            if subscription is None:
                raise NotFoundError(f"subscription not found: user={user_id} business={business_id}")

            token = await ledger.get_token(session, business_id, for_update=True)
            if token is None:
                raise NotFoundError(f"business token not found: {business_id}")

            business = await ledger.get_business(session, business_id)
            if business is None:
                raise NotFoundError(f"business not found: {business_id}")

            tokens_to_return = subscription.tokens_owned
            cost_basis = Decimal(subscription.invested)
            price = Decimal(token.price)
            refund = price * tokens_to_return

            transaction = Transaction(
                business_id=business_id,
                from_user=business.owner_id,
                to_user=user_id,
                tokens=tokens_to_return,
                amount=refund,
                tx_type=TransactionType.SELL,
            )
            session.add(transaction)

            # Priced while the position still exists, then removed
            new_supply = token.total_supply + tokens_to_return
            token.price = await self.pricing.price_for(session, business_id, new_supply)
            token.total_supply = new_supply

            await session.delete(subscription)

            logger.info(
                f"✅ User {user_id} unsubscribed from {business.name} ({business_id}), "
                f"sold {tokens_to_return} tokens at ${price}/token for ${refund} refund "
                f"(cost basis ${cost_basis})"
            )
            return UnsubscribeResult(
                transaction=transaction,
                token=token,
                tokens_returned=tokens_to_return,
                refund_amount=refund,
                cost_basis=cost_basis,
            )

        result = await run_in_transaction(db, operation)

        await self._publisher().publish("token_sold", {
            "business_id": business_id,
            "user_id": user_id,
            "tokens": result.tokens_returned,
            "amount": result.refund_amount,
            "price": result.token.price,
            "supply": result.token.total_supply,
        })
        return result

    # =========================================================================
    # READS
    # =========================================================================

    async def get_user_subscriptions(
        self,
        db: AsyncSession,
        user_id: str,
    ) -> list[BusinessSubscription]:
        subscriptions = await ledger.list_user_subscriptions(db, user_id)
        logger.info(f"📋 Fetched {len(subscriptions)} subscriptions for user {user_id}")
        return subscriptions

    async def get_business_subscribers(
        self,
        db: AsyncSession,
        business_id: str,
    ) -> SubscriberSummary:
        subscriptions = await ledger.list_business_subscriptions(db, business_id)
        total_invested = sum((Decimal(s.invested) for s in subscriptions), Decimal("0"))
        total_tokens = sum(s.tokens_owned for s in subscriptions)
        logger.info(f"📋 Fetched {len(subscriptions)} subscribers for business {business_id}")
        return SubscriberSummary(
            subscriptions=subscriptions,
            total_invested=total_invested,
            total_tokens_sold=total_tokens,
        )

    async def get_subscription_stats(
        self,
        db: AsyncSession,
        user_id: str,
        business_id: str,
    ) -> SubscriptionStats:
        """
        Raises:
            NotFoundError: The user holds no position in the business
        """
        subscription = await ledger.get_subscription(db, user_id, business_id)
        if subscription is None:
            raise NotFoundError(f"subscription not found: user={user_id} business={business_id}")

        token = await ledger.get_token(db, business_id)
        if token is None:
            return SubscriptionStats(subscription, None, None, None)

        price = Decimal(token.price)
        current_value = price * subscription.tokens_owned
        stats = SubscriptionStats(
            subscription=subscription,
            current_price=price,
            current_value=current_value,
            share_percentage=subscription.share_percentage(token.total_supply),
        )
        logger.info(
            f"📊 Subscription stats: User={user_id}, Business={business_id}, "
            f"Tokens={subscription.tokens_owned}, Invested=${subscription.invested}, "
            f"CurrentValue=${current_value}, Profit=${stats.profit}"
        )
        return stats


@lru_cache()
def get_subscription_manager() -> SubscriptionManager:
    """Get the shared subscription manager."""
    return SubscriptionManager()
