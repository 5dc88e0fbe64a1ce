"""
SQLAlchemy Database Models

Ledger tables for the business token market:
- Business: a restaurant that can be invested in
- BusinessToken: the business's synthetic token (one per business)
- BusinessSubscription: one investor's position in one business
- Transaction: append-only trade log

Plus the Order table used by the order intake path.

Version: 1.0.0
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    Numeric,
    DateTime,
    Text,
    Enum,
    Boolean,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionType(str, enum.Enum):
    """Kinds of ledger entries."""
    BUY = "buy"
    SELL = "sell"
    BURN = "burn"
    TRANSFER = "transfer"


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Business(Base):
    """
    A business listed on the token market.

    Created by the business flow; the initial token is minted right after.
    Deleting is soft (is_active=False) so the ledger stays intact.
    """
    __tablename__ = "businesses"

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(100), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Business {self.id} - {self.name}>"


class BusinessToken(Base):
    """
    Synthetic token of a business.

    ``total_supply`` is the pool still available to buy, not the total
    ever issued. Supply and price are always written together.
    """
    __tablename__ = "business_tokens"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(
        String(36),
        ForeignKey("businesses.id"),
        nullable=False,
        unique=True,
        index=True,
    )
    symbol = Column(String(20), nullable=False)
    total_supply = Column(BigInteger, default=1, nullable=False)
    price = Column(Numeric(10, 2), default=Decimal("19.00"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def market_cap(self) -> Decimal:
        """Total supply × price."""
        return Decimal(self.total_supply) * Decimal(self.price)

    def __repr__(self):
        return f"<BusinessToken {self.symbol} supply={self.total_supply} price={self.price}>"


class BusinessSubscription(Base):
    """
    An investor's cumulative position in one business.

    ``invested`` is the historical cost basis: it only grows on buys and
    is never marked to market.
    """
    __tablename__ = "business_subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "business_id", name="uq_subscription_user_business"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(100), nullable=False, index=True)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    tokens_owned = Column(BigInteger, default=0, nullable=False)
    invested = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    business = relationship(Business, lazy="raise")

    def share_percentage(self, total_supply: int) -> float:
        """Ownership share relative to ``total_supply`` (0 when supply is 0)."""
        if total_supply == 0:
            return 0.0
        return self.tokens_owned / total_supply * 100

    def __repr__(self):
        return f"<BusinessSubscription {self.user_id}@{self.business_id} tokens={self.tokens_owned}>"


class Transaction(Base):
    """Append-only record of a token trade. Never updated or deleted."""
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    from_user = Column(String(100), nullable=True, index=True)
    to_user = Column(String(100), nullable=True, index=True)
    tokens = Column(BigInteger, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    tx_type = Column(
        Enum(TransactionType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<Transaction {self.tx_type.value} {self.tokens} @ {self.business_id}>"


class Order(Base):
    """Restaurant order. Creating one pushes a ``new_order`` notification."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    customer_name = Column(String(100), nullable=False)
    customer_phone = Column(String(20), nullable=False, index=True)
    items = Column(Text, nullable=False)  # JSON string of ordered items
    total_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(
        Enum(OrderStatus, values_callable=lambda e: [m.value for m in e]),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Order #{self.id} - {self.customer_name} - {self.status.value}>"
