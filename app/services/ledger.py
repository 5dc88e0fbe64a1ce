"""
Ledger Store Queries

Reads and aggregates over the ledger tables. Writes are done by the token
and subscription services through the session they run their transaction
on; this module only looks things up.

Aggregates come back as Python ints and Decimals regardless of the
database driver (SQLite returns floats for SUM over NUMERIC).

Version: 1.0.0
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, func, case, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models import (
    Business,
    BusinessToken,
    BusinessSubscription,
    Transaction,
    TransactionType,
)


def to_decimal(value: Any) -> Decimal:
    """Normalize a driver value (None, int, float, Decimal) to Decimal."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# =============================================================================
# ROW LOOKUPS
# =============================================================================

async def get_business(db: AsyncSession, business_id: str) -> Optional[Business]:
    result = await db.execute(select(Business).where(Business.id == business_id))
    return result.scalar_one_or_none()


async def list_businesses(db: AsyncSession, active_only: bool = False) -> list[Business]:
    query = select(Business).order_by(Business.created_at.desc())
    if active_only:
        query = query.where(Business.is_active.is_(True))
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_token(
    db: AsyncSession,
    business_id: str,
    for_update: bool = False,
) -> Optional[BusinessToken]:
    """
    Fetch the token of a business.

    With ``for_update`` the row is locked until the surrounding transaction
    ends, which serializes concurrent trades on the same business.
    """
    query = select(BusinessToken).where(BusinessToken.business_id == business_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_subscription(
    db: AsyncSession,
    user_id: str,
    business_id: str,
) -> Optional[BusinessSubscription]:
    result = await db.execute(
        select(BusinessSubscription).where(
            BusinessSubscription.user_id == user_id,
            BusinessSubscription.business_id == business_id,
        )
    )
    return result.scalar_one_or_none()


async def list_user_subscriptions(db: AsyncSession, user_id: str) -> list[BusinessSubscription]:
    result = await db.execute(
        select(BusinessSubscription)
        .options(selectinload(BusinessSubscription.business))
        .where(BusinessSubscription.user_id == user_id)
        .order_by(BusinessSubscription.created_at.desc())
    )
    return list(result.scalars().all())


async def list_business_subscriptions(
    db: AsyncSession,
    business_id: str,
) -> list[BusinessSubscription]:
    result = await db.execute(
        select(BusinessSubscription)
        .where(BusinessSubscription.business_id == business_id)
        .order_by(BusinessSubscription.created_at.asc())
    )
    return list(result.scalars().all())


# =============================================================================
# PRICING AGGREGATES
# =============================================================================

async def subscription_aggregates(db: AsyncSession, business_id: str) -> tuple[int, Decimal]:
    """Number of investors and their total cost basis for a business."""
    result = await db.execute(
        select(
            func.count(BusinessSubscription.id),
            func.coalesce(func.sum(BusinessSubscription.invested), 0),
        ).where(BusinessSubscription.business_id == business_id)
    )
    count, total = result.one()
    return int(count or 0), to_decimal(total)


async def count_transactions(db: AsyncSession, business_id: str) -> int:
    result = await db.execute(
        select(func.count(Transaction.id)).where(Transaction.business_id == business_id)
    )
    return int(result.scalar() or 0)


# =============================================================================
# TRANSACTION HISTORY
# =============================================================================

@dataclass
class TransactionHistory:
    """Transactions matching a filter plus their summary statistics."""
    transactions: list[Transaction]
    stats: dict[str, Any] = field(default_factory=dict)


def _sum_where(column, condition):
    return func.coalesce(func.sum(case((condition, column), else_=0)), 0)


def _count_where(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


async def _trade_totals(db: AsyncSession, business_id: str) -> dict[str, Any]:
    """Buy/sell counts, amounts and tokens over every trade of a business."""
    is_buy = Transaction.tx_type == TransactionType.BUY
    is_sell = Transaction.tx_type == TransactionType.SELL
    totals = (
        await db.execute(
            select(
                _count_where(is_buy),
                _count_where(is_sell),
                _sum_where(Transaction.amount, is_buy),
                _sum_where(Transaction.amount, is_sell),
                _sum_where(Transaction.tokens, is_buy),
                _sum_where(Transaction.tokens, is_sell),
            ).where(Transaction.business_id == business_id)
        )
    ).one()

    buy_amount = to_decimal(totals[2])
    sell_amount = to_decimal(totals[3])
    tokens_bought = int(totals[4])
    tokens_sold = int(totals[5])

    return {
        "total_buy_transactions": int(totals[0]),
        "total_sell_transactions": int(totals[1]),
        "total_buy_amount": buy_amount,
        "total_sell_amount": sell_amount,
        "total_tokens_bought": tokens_bought,
        "total_tokens_sold": tokens_sold,
        "net_amount": buy_amount - sell_amount,
        "net_tokens": tokens_bought - tokens_sold,
    }


async def business_transactions(
    db: AsyncSession,
    business_id: str,
    tx_type: Optional[TransactionType] = None,
    limit: Optional[int] = None,
) -> TransactionHistory:
    """Trades of a business, newest first, with buy/sell totals."""
    query = (
        select(Transaction)
        .where(Transaction.business_id == business_id)
        .order_by(Transaction.created_at.desc())
    )
    if tx_type is not None:
        query = query.where(Transaction.tx_type == tx_type)
    if limit:
        query = query.limit(limit)
    rows = list((await db.execute(query)).scalars().all())

    return TransactionHistory(transactions=rows, stats=await _trade_totals(db, business_id))


async def user_transactions(
    db: AsyncSession,
    user_id: str,
    tx_type: Optional[TransactionType] = None,
    business_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> TransactionHistory:
    """
    Trades where the user is on either side, newest first.

    Buys count where the user paid (``from_user``), sells where the user
    was paid out (``to_user``).
    """
    query = (
        select(Transaction)
        .where(or_(Transaction.from_user == user_id, Transaction.to_user == user_id))
        .order_by(Transaction.created_at.desc())
    )
    if tx_type is not None:
        query = query.where(Transaction.tx_type == tx_type)
    if business_id:
        query = query.where(Transaction.business_id == business_id)
    if limit:
        query = query.limit(limit)
    rows = list((await db.execute(query)).scalars().all())

    bought = (Transaction.tx_type == TransactionType.BUY) & (Transaction.from_user == user_id)
    sold = (Transaction.tx_type == TransactionType.SELL) & (Transaction.to_user == user_id)
    totals = (
        await db.execute(
            select(
                _sum_where(Transaction.amount, bought),
                _sum_where(Transaction.tokens, bought),
                _sum_where(Transaction.amount, sold),
                _sum_where(Transaction.tokens, sold),
            )
        )
    ).one()

    invested = to_decimal(totals[0])
    returned = to_decimal(totals[2])
    tokens_bought = int(totals[1])
    tokens_sold = int(totals[3])

    return TransactionHistory(
        transactions=rows,
        stats={
            "total_tokens_bought": tokens_bought,
            "total_tokens_sold": tokens_sold,
            "total_invested": invested,
            "total_returned": returned,
            "net_profit": returned - invested,
            "net_tokens": tokens_bought - tokens_sold,
        },
    )


async def daily_transaction_stats(
    db: AsyncSession,
    business_id: str,
    days: int = 30,
) -> list[dict[str, Any]]:
    """Per-day buy/sell counts, amounts and tokens over the last ``days`` days."""
    since = datetime.now(timezone.utc) - timedelta(days=days)
    is_buy = Transaction.tx_type == TransactionType.BUY
    is_sell = Transaction.tx_type == TransactionType.SELL
    day = func.date(Transaction.created_at).label("day")

    result = await db.execute(
        select(
            day,
            _count_where(is_buy),
            _count_where(is_sell),
            _sum_where(Transaction.amount, is_buy),
            _sum_where(Transaction.amount, is_sell),
            _sum_where(Transaction.tokens, is_buy),
            _sum_where(Transaction.tokens, is_sell),
        )
        .where(Transaction.business_id == business_id, Transaction.created_at >= since)
        .group_by(day)
        .order_by(day.desc())
    )

    return [
        {
            "date": str(row[0]),
            "buy_count": int(row[1]),
            "sell_count": int(row[2]),
            "buy_amount": to_decimal(row[3]),
            "sell_amount": to_decimal(row[4]),
            "buy_tokens": int(row[5]),
            "sell_tokens": int(row[6]),
        }
        for row in result.all()
    ]


# =============================================================================
# MARKET METRICS
# =============================================================================

def _percent(part: Decimal, whole: Decimal) -> float:
    if whole <= 0:
        return 0.0
    return float(part / whole * 100)


async def business_metrics(
    db: AsyncSession,
    business_id: str,
    initial_price: Decimal,
) -> Optional[dict[str, Any]]:
    """
    Market overview of one business, or None when it has no token.

    Investment figures cover open positions (cost basis still held);
    volumes cover every trade ever made. Active traders are buyers
    (``from_user``) and sellers (``to_user``) in the last 24 hours / 7 days.
    """
    token = await get_token(db, business_id)
    if token is None:
        return None

    price = to_decimal(token.price)
    supply = int(token.total_supply)
    market_cap = Decimal(supply) * price

    positions = await list_business_subscriptions(db, business_id)
    investor_count = len(positions)
    invested = sum((to_decimal(p.invested) for p in positions), Decimal("0"))
    tokens_held = sum(p.tokens_owned for p in positions)
    position_rois = [
        _percent(price * p.tokens_owned - to_decimal(p.invested), to_decimal(p.invested))
        for p in positions
        if to_decimal(p.invested) > 0
    ]

    trades = await _trade_totals(db, business_id)
    returned = trades["total_sell_amount"]
    trade_count = trades["total_buy_transactions"] + trades["total_sell_transactions"]

    now = datetime.now(timezone.utc)
    trader = case(
        (Transaction.tx_type == TransactionType.SELL, Transaction.to_user),
        else_=Transaction.from_user,
    )
    daily_active, weekly_active = (
        await db.execute(
            select(
                func.count(func.distinct(case((Transaction.created_at >= now - timedelta(days=1), trader)))),
                func.count(func.distinct(case((Transaction.created_at >= now - timedelta(days=7), trader)))),
            ).where(Transaction.business_id == business_id)
        )
    ).one()

    return {
        "business_id": business_id,
        "token_symbol": token.symbol,
        "current_price": price,
        "initial_price": initial_price,
        "price_change": _percent(price - initial_price, initial_price),
        "tokens_available": supply,
        "tokens_sold": tokens_held,
        "market_cap": market_cap,
        "total_investors": investor_count,
        "total_invested": invested,
        "total_returned": returned,
        "net_inflow": invested - returned,
        "avg_investment": (
            (invested / investor_count).quantize(Decimal("0.01")) if investor_count else Decimal("0")
        ),
        "total_buy_transactions": trades["total_buy_transactions"],
        "total_sell_transactions": trades["total_sell_transactions"],
        "buy_volume": trades["total_buy_amount"],
        "sell_volume": returned,
        "net_volume": trades["net_amount"],
        "daily_active_users": int(daily_active or 0),
        "weekly_active_users": int(weekly_active or 0),
        "roi": _percent(market_cap - invested, invested),
        "avg_investor_roi": sum(position_rois) / len(position_rois) if position_rois else 0.0,
        "token_velocity": trade_count / supply if supply > 0 else 0.0,
    }
