"""
Unit tests for SubscriptionManager.

Tests cover buys, full liquidation, atomicity of rejected trades and the
read-side summaries.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.exceptions import InsufficientSupplyError, InvalidArgumentError, NotFoundError
from app.models import BusinessSubscription, Transaction, TransactionType
from app.services import ledger


async def count_rows(db, model) -> int:
    return (await db.execute(select(func.count(model.id)))).scalar()


class TestSubscribe:

    @pytest.mark.asyncio
    async def test_first_buy(self, db, token, subscription_manager, publisher):
        result = await subscription_manager.subscribe(db, "user-1", token.business_id, 10)

        assert result.investment_amount == Decimal("190.00")
        assert result.subscription.tokens_owned == 10
        assert Decimal(result.subscription.invested) == Decimal("190.00")
        assert result.token.total_supply == 90
        assert Decimal(result.token.price) == Decimal("28.33")

        tx = result.transaction
        assert tx.tx_type == TransactionType.BUY
        assert tx.from_user == "user-1"
        assert tx.to_user == "owner-1"
        assert tx.tokens == 10
        assert Decimal(tx.amount) == Decimal("190.00")

        assert publisher.events[-1][0] == "token_purchased"
        assert publisher.events[-1][1]["tokens"] == 10

    @pytest.mark.asyncio
    async def test_second_buy_accumulates_at_new_price(self, db, token, subscription_manager):
        await subscription_manager.subscribe(db, "user-1", token.business_id, 10)
        result = await subscription_manager.subscribe(db, "user-1", token.business_id, 5)

        assert result.investment_amount == Decimal("141.65")
        assert result.subscription.tokens_owned == 15
        assert Decimal(result.subscription.invested) == Decimal("331.65")
        assert result.token.total_supply == 85
        assert await count_rows(db, BusinessSubscription) == 1
        assert await count_rows(db, Transaction) == 2

    @pytest.mark.asyncio
    async def test_buy_entire_supply(self, db, token, subscription_manager):
        result = await subscription_manager.subscribe(db, "user-1", token.business_id, 100)
        assert result.token.total_supply == 0

    @pytest.mark.asyncio
    async def test_insufficient_supply_writes_nothing(self, db, token, subscription_manager, publisher):
        with pytest.raises(InsufficientSupplyError):
            await subscription_manager.subscribe(db, "user-1", token.business_id, 101)

        assert await count_rows(db, BusinessSubscription) == 0
        assert await count_rows(db, Transaction) == 0
        stored = await ledger.get_token(db, token.business_id)
        await db.refresh(stored)
        assert stored.total_supply == 100
        assert Decimal(stored.price) == Decimal("19.00")
        assert publisher.events == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -3])
    async def test_non_positive_amount(self, db, token, subscription_manager, amount):
        with pytest.raises(InvalidArgumentError):
            await subscription_manager.subscribe(db, "user-1", token.business_id, amount)

    @pytest.mark.asyncio
    async def test_unknown_business(self, db, subscription_manager):
        with pytest.raises(NotFoundError):
            await subscription_manager.subscribe(db, "user-1", "missing", 1)

    @pytest.mark.asyncio
    async def test_business_without_token(self, db, business, subscription_manager):
        with pytest.raises(NotFoundError):
            await subscription_manager.subscribe(db, "user-1", business.id, 1)


class TestUnsubscribe:

    @pytest.mark.asyncio
    async def test_full_liquidation(self, db, token, subscription_manager, publisher):
        await subscription_manager.subscribe(db, "user-1", token.business_id, 10)
        result = await subscription_manager.unsubscribe(db, "user-1", token.business_id)

        assert result.tokens_returned == 10
        assert result.refund_amount == Decimal("283.30")
        assert result.cost_basis == Decimal("190.00")
        assert result.realized_profit == Decimal("93.30")

        # Supply is restored; the leaving investor still counts toward the new price
        assert result.token.total_supply == 100
        assert Decimal(result.token.price) == Decimal("29.32")

        tx = result.transaction
        assert tx.tx_type == TransactionType.SELL
        assert tx.from_user == "owner-1"
        assert tx.to_user == "user-1"

        assert await ledger.get_subscription(db, "user-1", token.business_id) is None
        assert await count_rows(db, Transaction) == 2
        assert publisher.events[-1][0] == "token_sold"

    @pytest.mark.asyncio
    async def test_without_position(self, db, token, subscription_manager):
        with pytest.raises(NotFoundError):
            await subscription_manager.unsubscribe(db, "user-1", token.business_id)

    @pytest.mark.asyncio
    async def test_resubscribe_after_liquidation(self, db, token, subscription_manager):
        await subscription_manager.subscribe(db, "user-1", token.business_id, 10)
        await subscription_manager.unsubscribe(db, "user-1", token.business_id)
        result = await subscription_manager.subscribe(db, "user-1", token.business_id, 1)

        assert result.subscription.tokens_owned == 1
        assert await count_rows(db, BusinessSubscription) == 1


class TestReads:

    @pytest.mark.asyncio
    async def test_business_subscribers(self, db, token, subscription_manager):
        await subscription_manager.subscribe(db, "user-1", token.business_id, 10)
        await subscription_manager.subscribe(db, "user-2", token.business_id, 5)

        summary = await subscription_manager.get_business_subscribers(db, token.business_id)

        assert summary.subscriber_count == 2
        assert summary.total_tokens_sold == 15
        assert summary.total_invested == Decimal("190.00") + Decimal("141.65")
        assert {s.user_id for s in summary.subscriptions} == {"user-1", "user-2"}

    @pytest.mark.asyncio
    async def test_subscribers_of_unknown_business(self, db, subscription_manager):
        summary = await subscription_manager.get_business_subscribers(db, "missing")

        assert summary.subscriber_count == 0
        assert summary.total_invested == Decimal("0")

    @pytest.mark.asyncio
    async def test_subscription_stats(self, db, token, subscription_manager):
        await subscription_manager.subscribe(db, "user-1", token.business_id, 10)

        stats = await subscription_manager.get_subscription_stats(db, "user-1", token.business_id)

        assert stats.current_price == Decimal("28.33")
        assert stats.current_value == Decimal("283.30")
        assert stats.profit == Decimal("93.30")
        assert stats.share_percentage == pytest.approx(10 / 90 * 100)

    @pytest.mark.asyncio
    async def test_stats_without_position(self, db, token, subscription_manager):
        with pytest.raises(NotFoundError):
            await subscription_manager.get_subscription_stats(db, "user-1", token.business_id)


class TestTransactionHistory:

    @pytest.mark.asyncio
    async def test_business_history_stats(self, db, token, subscription_manager):
        await subscription_manager.subscribe(db, "user-1", token.business_id, 10)
        await subscription_manager.unsubscribe(db, "user-1", token.business_id)

        history = await ledger.business_transactions(db, token.business_id)

        assert len(history.transactions) == 2
        assert history.stats["total_buy_transactions"] == 1
        assert history.stats["total_sell_transactions"] == 1
        assert history.stats["total_tokens_bought"] == 10
        assert history.stats["total_tokens_sold"] == 10
        assert history.stats["net_tokens"] == 0
        assert history.stats["net_amount"] == Decimal("190.00") - Decimal("283.30")

    @pytest.mark.asyncio
    async def test_business_history_filtered(self, db, token, subscription_manager):
        await subscription_manager.subscribe(db, "user-1", token.business_id, 10)
        await subscription_manager.unsubscribe(db, "user-1", token.business_id)

        history = await ledger.business_transactions(db, token.business_id, TransactionType.SELL)

        assert [t.tx_type for t in history.transactions] == [TransactionType.SELL]

    @pytest.mark.asyncio
    async def test_user_history_stats(self, db, token, subscription_manager):
        await subscription_manager.subscribe(db, "user-1", token.business_id, 10)
        await subscription_manager.subscribe(db, "user-2", token.business_id, 3)
        await subscription_manager.unsubscribe(db, "user-1", token.business_id)

        history = await ledger.user_transactions(db, "user-1")

        assert len(history.transactions) == 2
        assert history.stats["total_tokens_bought"] == 10
        assert history.stats["total_tokens_sold"] == 10
        assert history.stats["total_invested"] == Decimal("190.00")
        assert history.stats["net_tokens"] == 0
        assert history.stats["net_profit"] > 0
