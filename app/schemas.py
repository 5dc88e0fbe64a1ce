"""
Pydantic Schemas for Request/Response Validation

Request bodies for businesses, tokens, trades and orders, and the JSON
envelopes the API answers with (``{message, token|subscription|...}``).

Amount validation (positive supply, positive token counts) is left to the
services so that it maps to the ledger error codes instead of 422.

Version: 1.0.0
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
import re

from app.models import TransactionType, OrderStatus


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class BusinessCreate(BaseModel):
    """Request schema for creating a business."""
    name: str = Field(..., min_length=1, max_length=200, examples=["Pizza Palace"])
    description: Optional[str] = Field(None, max_length=2000)
    category: Optional[str] = Field(None, max_length=100, examples=["restaurant"])
    city: Optional[str] = Field(None, max_length=100, examples=["Moscow"])
    owner_id: Optional[str] = Field(None, max_length=100)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()


class BusinessUpdate(BaseModel):
    """Partial update; only provided fields change."""
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    category: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Name cannot be empty")
        return v


class TokenCreate(BaseModel):
    """Explicit token creation. A non-positive price falls back to the base price."""
    symbol: str = Field(default="", max_length=20, examples=["PIZT"])
    initial_price: float = Field(default=0.0, examples=[19.0])
    total_supply: int = Field(default=0, examples=[100])


class SupplyChangeRequest(BaseModel):
    """Mint or burn request."""
    amount: int = Field(..., examples=[10])
    reason: Optional[str] = Field(None, max_length=500, examples=["Quarterly issue"])


class SubscribeRequest(BaseModel):
    """Buy request."""
    tokens_amount: int = Field(..., examples=[10])


class OrderItemCreate(BaseModel):
    """Single item in an order."""
    name: str = Field(..., min_length=1, max_length=100, examples=["Pizza Margherita"])
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    unit_price: float = Field(..., gt=0, examples=[14.99])


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""
    customer_name: str = Field(..., min_length=2, max_length=100, examples=["John Doe"])
    customer_phone: str = Field(..., min_length=10, max_length=20, examples=["555-123-4567"])
    items: List[OrderItemCreate] = Field(..., min_length=1)

    @field_validator("customer_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        cleaned = re.sub(r"[^\d]", "", v)
        if len(cleaned) < 10:
            raise ValueError("Phone number must have at least 10 digits")
        return v


# =============================================================================
# RESOURCE SCHEMAS
# =============================================================================

class BusinessResponse(BaseModel):
    id: str
    owner_id: Optional[str]
    name: str
    description: Optional[str]
    category: Optional[str]
    city: Optional[str]
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    id: str
    business_id: str
    symbol: str
    total_supply: int
    price: float
    market_cap: float
    created_at: datetime

    class Config:
        from_attributes = True


class SubscriptionResponse(BaseModel):
    id: str
    user_id: str
    business_id: str
    tokens_owned: int
    invested: float
    created_at: datetime

    class Config:
        from_attributes = True


class UserSubscriptionResponse(SubscriptionResponse):
    """Subscription with its business attached."""
    business: Optional[BusinessResponse] = None


class TransactionResponse(BaseModel):
    id: str
    business_id: str
    from_user: Optional[str]
    to_user: Optional[str]
    tokens: int
    amount: float
    tx_type: TransactionType
    created_at: datetime

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    customer_name: str
    customer_phone: str
    items: str
    total_amount: float
    status: OrderStatus
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# ENVELOPES
# =============================================================================

class BusinessCreateResponse(BaseModel):
    message: str
    business: BusinessResponse
    token: Optional[TokenResponse] = None


class BusinessMessageResponse(BaseModel):
    message: str
    business: Optional[BusinessResponse] = None
    id: Optional[str] = None


class TokenActionResponse(BaseModel):
    message: str
    token: TokenResponse
    minted: Optional[int] = None
    burned: Optional[int] = None


class SubscribeResponse(BaseModel):
    message: str
    subscription: SubscriptionResponse
    transaction: TransactionResponse
    token: TokenResponse


class UnsubscribeResponse(BaseModel):
    message: str
    transaction: TransactionResponse
    token: TokenResponse
    tokens_returned: int
    refund_amount: float
    cost_basis: float
    realized_profit: float


class UserSubscriptionsResponse(BaseModel):
    message: str
    count: int
    subscriptions: List[UserSubscriptionResponse]


class BusinessSubscribersResponse(BaseModel):
    message: str
    subscriber_count: int
    total_invested: float
    total_tokens_sold: int
    subscribers: List[SubscriptionResponse]


class SubscriptionStatsResponse(BaseModel):
    message: str
    subscription: SubscriptionResponse
    current_price: Optional[float] = None
    current_value: Optional[float] = None
    profit: Optional[float] = None
    share_percentage: Optional[float] = None


class BusinessTransactionStats(BaseModel):
    total_buy_transactions: int
    total_sell_transactions: int
    total_buy_amount: float
    total_sell_amount: float
    total_tokens_bought: int
    total_tokens_sold: int
    net_amount: float
    net_tokens: int


class UserTransactionStats(BaseModel):
    total_tokens_bought: int
    total_tokens_sold: int
    total_invested: float
    total_returned: float
    net_profit: float
    net_tokens: int


class BusinessTransactionsResponse(BaseModel):
    message: str
    count: int
    transactions: List[TransactionResponse]
    stats: BusinessTransactionStats


class UserTransactionsResponse(BaseModel):
    message: str
    count: int
    transactions: List[TransactionResponse]
    stats: UserTransactionStats


class DailyTransactionStats(BaseModel):
    date: str
    buy_count: int
    sell_count: int
    buy_amount: float
    sell_amount: float
    buy_tokens: int
    sell_tokens: int


class TransactionAnalyticsResponse(BaseModel):
    message: str
    business_id: str
    period: str
    data: List[DailyTransactionStats]


class BusinessMetrics(BaseModel):
    """Market overview of one business."""
    business_id: str
    token_symbol: str
    current_price: float
    initial_price: float
    price_change: float = Field(..., description="% change from the initial price")
    tokens_available: int
    tokens_sold: int = Field(..., description="Tokens held by investors")
    market_cap: float
    total_investors: int
    total_invested: float
    total_returned: float
    net_inflow: float
    avg_investment: float
    total_buy_transactions: int
    total_sell_transactions: int
    buy_volume: float
    sell_volume: float
    net_volume: float
    daily_active_users: int
    weekly_active_users: int
    roi: float
    avg_investor_roi: float
    token_velocity: float


class BusinessMetricsResponse(BaseModel):
    message: str
    metrics: BusinessMetrics


class OrderCreateResponse(BaseModel):
    success: bool
    message: str
    order_id: int
    total_amount: float
    notified_clients: int = 0


class OrderListResponse(BaseModel):
    total: int
    orders: List[OrderResponse]


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class WebSocketClientInfo(BaseModel):
    id: str
    label: str
    connected_at: datetime
    last_seen: datetime


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    websocket_clients: int
    websocket_connections: List[WebSocketClientInfo] = []
    timestamp: datetime
