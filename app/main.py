"""
FastAPI Application Entry Point

Business Token Exchange - restaurant businesses, their synthetic tokens and
the investors who buy them.

Endpoints:
    - /api/businesses: Business CRUD (create mints the initial token)
    - /api/businesses/{id}/tokens: Token create, mint, burn, re-price
    - /api/businesses/{id}/subscribe | unsubscribe: Investor buy / sell
    - /api/users/{id}/subscriptions, /api/subscriptions/stats: Positions
    - /api/.../transactions, /api/transactions/analytics: Trade history
    - /api/orders: Order intake (pushes new_order events)
    - /api/admin/ws: Real-time notifications
    - /health: System health check

Version: 1.0.0
"""

import asyncio
import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends, Query, Request, Header, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from app.core.config import get_settings, setup_logging
from app.core.exceptions import LedgerError, NotFoundError
from app.database import get_db, init_db, engine
from app.models import Business, Order, OrderStatus, TransactionType
from app.schemas import (
    BusinessCreate,
    BusinessUpdate,
    BusinessResponse,
    BusinessCreateResponse,
    BusinessMessageResponse,
    TokenCreate,
    TokenResponse,
    TokenActionResponse,
    SupplyChangeRequest,
    SubscribeRequest,
    SubscribeResponse,
    UnsubscribeResponse,
    SubscriptionResponse,
    UserSubscriptionResponse,
    UserSubscriptionsResponse,
    BusinessSubscribersResponse,
    SubscriptionStatsResponse,
    TransactionResponse,
    BusinessTransactionStats,
    UserTransactionStats,
    BusinessTransactionsResponse,
    UserTransactionsResponse,
    DailyTransactionStats,
    TransactionAnalyticsResponse,
    BusinessMetrics,
    BusinessMetricsResponse,
    OrderCreate,
    OrderResponse,
    OrderCreateResponse,
    OrderListResponse,
    ErrorResponse,
    HealthResponse,
    WebSocketClientInfo,
)
from app.services import ledger
from app.services.notifications import get_connection_registry, get_event_publisher, BaseEventPublisher
from app.services.tokens import TokenLifecycleManager, get_token_manager
from app.services.subscriptions import SubscriptionManager, get_subscription_manager

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info(f"   Base token price: ${settings.token_base_price}")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    registry = get_connection_registry()
    logger.info(f"✅ Event publisher: {registry.provider_name}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await registry.close_all()
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Restaurant businesses with tokenized ownership: token pricing, "
        "investor subscriptions and real-time order notifications."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-User-ID"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def require_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-ID")) -> str:
    """Acting user of a trade, taken from the X-User-ID header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="User ID required (X-User-ID header)")
    return x_user_id


def parse_tx_type(tx_type: Optional[str]) -> Optional[TransactionType]:
    if not tx_type:
        return None
    try:
        return TransactionType(tx_type.lower())
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid transaction type. Options: {[t.value for t in TransactionType]}"
        )


def calculate_order_total(items: list) -> Decimal:
    """Sum of quantity × unit price, rounded to cents."""
    total = sum(Decimal(str(item.unit_price)) * item.quantity for item in items)
    return Decimal(total).quantize(Decimal("0.01"))


async def fetch_business(db: AsyncSession, business_id: str) -> Business:
    business = await ledger.get_business(db, business_id)
    if business is None:
        raise HTTPException(status_code=404, detail="Business not found")
    return business


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🪙 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Verify the database is reachable and report live WebSocket clients."""
    registry = get_connection_registry()
    db_status = "healthy"
    try:
        await db.execute(select(func.count(Business.id)))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    return HealthResponse(
        status="operational" if db_status == "healthy" else "degraded",
        database=db_status,
        websocket_clients=registry.active_count,
        websocket_connections=[WebSocketClientInfo(**c) for c in registry.connections()],
        timestamp=datetime.now(),
    )


# =============================================================================
# BUSINESS ENDPOINTS
# =============================================================================

@app.get("/api/businesses", response_model=list[BusinessResponse], tags=["Businesses"])
async def list_businesses(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
) -> list[BusinessResponse]:
    businesses = await ledger.list_businesses(db, active_only=active_only)
    return [BusinessResponse.model_validate(b) for b in businesses]


@app.post(
    "/api/businesses",
    response_model=BusinessCreateResponse,
    tags=["Businesses"],
    summary="Create Business (mints the initial token)",
)
async def create_business(
    data: BusinessCreate,
    db: AsyncSession = Depends(get_db),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
) -> BusinessCreateResponse:
    business = Business(
        name=data.name,
        description=data.description,
        category=data.category,
        city=data.city,
        owner_id=data.owner_id,
        is_active=True,
    )
    db.add(business)
    await db.commit()
    logger.info(f"✅ Business created: ID={business.id}, Name={business.name}, Owner={business.owner_id}")

    # The business stays created even if the token cannot be minted
    token = None
    try:
        token = await tokens.mint_initial(db, business.id)
        logger.info(f"🪙 Initial token created: Symbol={token.symbol}, Price=${token.price}")
    except LedgerError as e:
        logger.warning(f"⚠️ Failed to create initial token for {business.id}: {e}")

    return BusinessCreateResponse(
        message="✅ Business created successfully",
        business=BusinessResponse.model_validate(business),
        token=TokenResponse.model_validate(token) if token else None,
    )


@app.get("/api/businesses/{business_id}", response_model=BusinessResponse, tags=["Businesses"])
async def get_business(business_id: str, db: AsyncSession = Depends(get_db)) -> BusinessResponse:
    business = await fetch_business(db, business_id)
    return BusinessResponse.model_validate(business)


@app.put("/api/businesses/{business_id}", response_model=BusinessMessageResponse, tags=["Businesses"])
async def update_business(
    business_id: str,
    data: BusinessUpdate,
    db: AsyncSession = Depends(get_db),
) -> BusinessMessageResponse:
    business = await fetch_business(db, business_id)

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(business, field, value)
    await db.commit()
    await db.refresh(business)

    logger.info(f"✅ Business updated: ID={business.id}, Name={business.name}")
    return BusinessMessageResponse(
        message="✅ Business updated successfully",
        business=BusinessResponse.model_validate(business),
    )


@app.delete("/api/businesses/{business_id}", response_model=BusinessMessageResponse, tags=["Businesses"])
async def deactivate_business(business_id: str, db: AsyncSession = Depends(get_db)) -> BusinessMessageResponse:
    """Soft delete: the business is deactivated, its ledger is kept."""
    business = await fetch_business(db, business_id)
    business.is_active = False
    await db.commit()

    logger.info(f"✅ Business deactivated: ID={business.id}, Name={business.name}")
    return BusinessMessageResponse(message="✅ Business deactivated successfully", id=business_id)


# =============================================================================
# TOKEN ENDPOINTS
# =============================================================================

@app.get("/api/businesses/{business_id}/tokens", response_model=TokenResponse, tags=["Tokens"])
async def get_business_token(
    business_id: str,
    db: AsyncSession = Depends(get_db),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
) -> TokenResponse:
    token = await tokens.get_token(db, business_id)
    return TokenResponse.model_validate(token)


@app.post("/api/businesses/{business_id}/tokens", response_model=TokenActionResponse, tags=["Tokens"])
async def create_business_token(
    business_id: str,
    data: TokenCreate,
    db: AsyncSession = Depends(get_db),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
) -> TokenActionResponse:
    token = await tokens.create_token(
        db,
        business_id,
        symbol=data.symbol,
        initial_price=Decimal(str(data.initial_price)),
        total_supply=data.total_supply,
    )
    return TokenActionResponse(
        message="✅ Token created successfully",
        token=TokenResponse.model_validate(token),
    )


@app.post("/api/businesses/{business_id}/tokens/mint", response_model=TokenActionResponse, tags=["Tokens"])
async def mint_business_tokens(
    business_id: str,
    data: SupplyChangeRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
) -> TokenActionResponse:
    token = await tokens.mint_tokens(db, business_id, data.amount, data.reason or "Manual mint")
    return TokenActionResponse(
        message="✅ Tokens minted successfully",
        token=TokenResponse.model_validate(token),
        minted=data.amount,
    )


@app.post("/api/businesses/{business_id}/tokens/burn", response_model=TokenActionResponse, tags=["Tokens"])
async def burn_business_tokens(
    business_id: str,
    data: SupplyChangeRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
) -> TokenActionResponse:
    token = await tokens.burn_tokens(db, business_id, data.amount, data.reason or "Manual burn")
    return TokenActionResponse(
        message="🔥 Tokens burned successfully",
        token=TokenResponse.model_validate(token),
        burned=data.amount,
    )


@app.post(
    "/api/businesses/{business_id}/tokens/recalculate-price",
    response_model=TokenActionResponse,
    tags=["Tokens"],
)
async def recalculate_token_price(
    business_id: str,
    db: AsyncSession = Depends(get_db),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
) -> TokenActionResponse:
    token = await tokens.recalculate_price(db, business_id)
    return TokenActionResponse(
        message="💰 Price recalculated successfully",
        token=TokenResponse.model_validate(token),
    )


# =============================================================================
# SUBSCRIPTION ENDPOINTS
# =============================================================================

@app.post("/api/businesses/{business_id}/subscribe", response_model=SubscribeResponse, tags=["Subscriptions"])
async def subscribe_to_business(
    business_id: str,
    data: SubscribeRequest,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
    subscriptions: SubscriptionManager = Depends(get_subscription_manager),
) -> SubscribeResponse:
    result = await subscriptions.subscribe(db, user_id, business_id, data.tokens_amount)
    return SubscribeResponse(
        message="✅ Successfully subscribed to business",
        subscription=SubscriptionResponse.model_validate(result.subscription),
        transaction=TransactionResponse.model_validate(result.transaction),
        token=TokenResponse.model_validate(result.token),
    )


@app.delete(
    "/api/businesses/{business_id}/unsubscribe",
    response_model=UnsubscribeResponse,
    tags=["Subscriptions"],
)
async def unsubscribe_from_business(
    business_id: str,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
    subscriptions: SubscriptionManager = Depends(get_subscription_manager),
) -> UnsubscribeResponse:
    result = await subscriptions.unsubscribe(db, user_id, business_id)
    return UnsubscribeResponse(
        message="✅ Successfully unsubscribed from business",
        transaction=TransactionResponse.model_validate(result.transaction),
        token=TokenResponse.model_validate(result.token),
        tokens_returned=result.tokens_returned,
        refund_amount=result.refund_amount,
        cost_basis=result.cost_basis,
        realized_profit=result.realized_profit,
    )


@app.get(
    "/api/businesses/{business_id}/subscribers",
    response_model=BusinessSubscribersResponse,
    tags=["Subscriptions"],
)
async def get_business_subscribers(
    business_id: str,
    db: AsyncSession = Depends(get_db),
    subscriptions: SubscriptionManager = Depends(get_subscription_manager),
) -> BusinessSubscribersResponse:
    summary = await subscriptions.get_business_subscribers(db, business_id)
    return BusinessSubscribersResponse(
        message="✅ Business subscribers fetched",
        subscriber_count=summary.subscriber_count,
        total_invested=summary.total_invested,
        total_tokens_sold=summary.total_tokens_sold,
        subscribers=[SubscriptionResponse.model_validate(s) for s in summary.subscriptions],
    )


@app.get(
    "/api/users/{user_id}/subscriptions",
    response_model=UserSubscriptionsResponse,
    tags=["Subscriptions"],
)
async def get_user_subscriptions(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    subscriptions: SubscriptionManager = Depends(get_subscription_manager),
) -> UserSubscriptionsResponse:
    rows = await subscriptions.get_user_subscriptions(db, user_id)
    return UserSubscriptionsResponse(
        message="✅ User subscriptions fetched",
        count=len(rows),
        subscriptions=[UserSubscriptionResponse.model_validate(s) for s in rows],
    )


@app.get(
    "/api/subscriptions/stats",
    response_model=SubscriptionStatsResponse,
    tags=["Subscriptions"],
)
async def get_subscription_stats(
    user_id: str = Query(..., min_length=1),
    business_id: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    subscriptions: SubscriptionManager = Depends(get_subscription_manager),
) -> SubscriptionStatsResponse:
    stats = await subscriptions.get_subscription_stats(db, user_id, business_id)
    return SubscriptionStatsResponse(
        message="✅ Subscription stats fetched",
        subscription=SubscriptionResponse.model_validate(stats.subscription),
        current_price=stats.current_price,
        current_value=stats.current_value,
        profit=stats.profit,
        share_percentage=stats.share_percentage,
    )


# =============================================================================
# TRANSACTION ENDPOINTS
# =============================================================================

@app.get(
    "/api/businesses/{business_id}/transactions",
    response_model=BusinessTransactionsResponse,
    tags=["Transactions"],
)
async def get_business_transactions(
    business_id: str,
    type: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> BusinessTransactionsResponse:
    history = await ledger.business_transactions(db, business_id, parse_tx_type(type), limit)
    logger.info(f"📊 Fetched {len(history.transactions)} transactions for business {business_id}")
    return BusinessTransactionsResponse(
        message="✅ Business transactions fetched",
        count=len(history.transactions),
        transactions=[TransactionResponse.model_validate(t) for t in history.transactions],
        stats=BusinessTransactionStats(**history.stats),
    )


@app.get(
    "/api/users/{user_id}/transactions",
    response_model=UserTransactionsResponse,
    tags=["Transactions"],
)
async def get_user_transactions(
    user_id: str,
    type: Optional[str] = Query(None),
    business_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> UserTransactionsResponse:
    history = await ledger.user_transactions(db, user_id, parse_tx_type(type), business_id, limit)
    logger.info(f"📊 Fetched {len(history.transactions)} transactions for user {user_id}")
    return UserTransactionsResponse(
        message="✅ User transactions fetched",
        count=len(history.transactions),
        transactions=[TransactionResponse.model_validate(t) for t in history.transactions],
        stats=UserTransactionStats(**history.stats),
    )


@app.get(
    "/api/transactions/analytics",
    response_model=TransactionAnalyticsResponse,
    tags=["Transactions"],
)
async def get_transaction_analytics(
    business_id: str = Query(..., min_length=1),
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
) -> TransactionAnalyticsResponse:
    rows = await ledger.daily_transaction_stats(db, business_id, days)
    logger.info(f"📈 Fetched analytics for business {business_id}: {len(rows)} days")
    return TransactionAnalyticsResponse(
        message="✅ Transaction analytics fetched",
        business_id=business_id,
        period=f"{days} days",
        data=[DailyTransactionStats(**row) for row in rows],
    )


@app.get(
    "/api/businesses/{business_id}/metrics",
    response_model=BusinessMetricsResponse,
    tags=["Transactions"],
    summary="Business Market Metrics",
)
async def get_business_metrics(
    business_id: str,
    db: AsyncSession = Depends(get_db),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
) -> BusinessMetricsResponse:
    """Price, supply, investment, volume, activity and ROI figures of one business."""
    metrics = await ledger.business_metrics(db, business_id, tokens.pricing.base_price)
    if metrics is None:
        raise NotFoundError(f"token not found for business: {business_id}")

    logger.info(
        f"📊 Metrics for business {business_id}: Price=${metrics['current_price']} "
        f"({metrics['price_change']:.1f}%), Investors={metrics['total_investors']}, "
        f"MarketCap=${metrics['market_cap']}, ROI={metrics['roi']:.1f}%"
    )
    return BusinessMetricsResponse(
        message="✅ Business metrics calculated",
        metrics=BusinessMetrics(**metrics),
    )


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Create Order",
)
async def create_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    publisher: BaseEventPublisher = Depends(get_event_publisher),
) -> OrderCreateResponse:
    """Store an order and notify connected admin clients."""
    logger.info(f"Creating order for: {order_data.customer_name}")

    total = calculate_order_total(order_data.items)
    items_json = json.dumps([
        {
            "name": item.name,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
        }
        for item in order_data.items
    ])

    order = Order(
        customer_name=order_data.customer_name,
        customer_phone=order_data.customer_phone,
        items=items_json,
        total_amount=total,
        status=OrderStatus.PENDING,
    )
    db.add(order)
    await db.commit()
    await db.refresh(order)

    logger.info(f"Order #{order.id} created successfully")

    notified = await publisher.publish(
        "new_order",
        OrderResponse.model_validate(order).model_dump(mode="json"),
    )

    return OrderCreateResponse(
        success=True,
        message="Order placed successfully!",
        order_id=order.id,
        total_amount=order.total_amount,
        notified_clients=notified,
    )


@app.get("/api/orders", response_model=OrderListResponse, tags=["Orders"], summary="List Orders")
async def list_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> OrderListResponse:
    """Retrieve paginated list of orders."""
    query = select(Order).order_by(Order.created_at.desc())
    count_query = select(func.count(Order.id))

    if status:
        try:
            status_enum = OrderStatus(status.lower())
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid status. Options: {[s.value for s in OrderStatus]}"
            )
        query = query.where(Order.status == status_enum)
        count_query = count_query.where(Order.status == status_enum)

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(query.offset(skip).limit(limit))

    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(o) for o in result.scalars().all()],
    )


# =============================================================================
# WEBSOCKET
# =============================================================================

@app.websocket("/api/admin/ws")
async def admin_notifications(websocket: WebSocket) -> None:
    """
    Stream order and market events to an admin client.

    The socket gets a ``connected`` welcome message, then every published
    event as ``{"type": ..., "data": ...}``. Incoming frames are read (and
    ignored) so that a peer going away is noticed without waiting for the
    next event.
    """
    registry = get_connection_registry()
    await websocket.accept()
    client = await registry.register(label=str(websocket.client))

    async def write_events() -> None:
        # Ends when the registry closes the client
        while True:
            message = await client.next_message()
            if message is None:
                return
            await websocket.send_text(message)
            client.touch()

    async def read_frames() -> None:
        # Ends when the peer disconnects
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            client.touch()

    tasks: list[asyncio.Task] = []
    try:
        await websocket.send_json({
            "type": "connected",
            "data": {"message": "Connected to admin order notifications", "status": "ready"},
        })
        writer = asyncio.create_task(write_events())
        reader = asyncio.create_task(read_frames())
        tasks = [writer, reader]

        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"⚠️ WebSocket {client.id} closed on error: {error!r}")

        if writer in done and websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
    except WebSocketDisconnect:
        pass
    finally:
        for task in tasks:
            task.cancel()
        await registry.unregister(client)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Map engine errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc}")
    else:
        logger.warning(f"❌ {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
