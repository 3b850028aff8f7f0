"""
FastAPI Application Entry Point

FoodHub Ordering Backend - Hybrid Architecture
Supports both Mock services (development) and Real APIs (production).

Endpoints:
    - POST /api/orders: Create an order (payment_pending)
    - GET /api/orders: List orders
    - GET /api/orders/{id}: Order with lines and payment status
    - GET /api/restaurants/{id}/stats: Sales statistics of paid orders
    - POST /api/orders/{id}/payment-session: Open a gateway session
    - GET /api/orders/{id}/payment-session: Current session status
    - POST /api/orders/{id}/payment-session/refresh: Poll the gateway
    - POST /api/payment-sessions/{id}/callback: Gateway outcome callback
    - POST /webhook/stripe: Signed Stripe events
    - POST /api/orders/{id}/transition: Restaurant / customer actions
    - POST /api/users/{id}/notification-tokens: Register a device token
    - GET /api/users/{id}/notifications: User inbox
    - POST|GET /api/restaurants/{id}/notifications: Restaurant broadcasts
    - GET /api/payment-incidents: Reconciliation incidents
    - GET /health: System health check
"""

import asyncio
import logging
import sys
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import redis
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from foodhub.core.config import NotificationDispatchMode, get_settings, setup_logging
from foodhub.core.exceptions import FoodHubError, NotFoundError
from foodhub.database import async_session_maker, engine, get_db, init_db
from foodhub.models import OrderAction, OrderStatus, PaymentIncident
from foodhub.schemas import (
    BroadcastRequest,
    DeliveryFailureResponse,
    DeliveryReportResponse,
    ErrorResponse,
    HealthResponse,
    ItemSalesResponse,
    NotificationResponse,
    NotificationTokenRequest,
    NotificationTokenResponse,
    OrderCreate,
    OrderCreateResponse,
    OrderListResponse,
    OrderResponse,
    PaymentCallbackRequest,
    PaymentCallbackResponse,
    PaymentIncidentResponse,
    PaymentSessionResponse,
    PaymentSessionStatusResponse,
    RestaurantStatsResponse,
    TransitionRequest,
    TransitionResponse,
)
from foodhub.services.notifications import (
    Broadcast,
    CeleryEventPublisher,
    DeliveryReport,
    FromRestaurant,
    InlineEventPublisher,
    NotificationDispatcher,
    NotificationDraft,
    get_notification_dispatcher,
    get_push_provider,
)
from foodhub.services.notifications import inbox
from foodhub.services.orders import (
    CustomerActor,
    EventPublisher,
    LineRequest,
    OrderLifecycleManager,
    RestaurantActor,
    restaurant_stats,
)
from foodhub.services.payment import (
    BasePaymentGateway,
    GatewayCallback,
    PaymentSessionCoordinator,
    get_payment_gateway,
    parse_reported_status,
)

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
    logger.info(f"   Notification dispatch: {settings.notification_dispatch_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Initialize database
    await init_db()
    logger.info("✅ Database initialized")

    # Log service configuration
    logger.info(f"✅ Payment Gateway: {get_payment_gateway().provider_name}")
    logger.info(f"✅ Push Provider: {get_push_provider().provider_name}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await get_push_provider().close()
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order, payment and notification core of a food-ordering platform. "
        "Supports both mock services for development and real APIs for production."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_gateway() -> BasePaymentGateway:
    return get_payment_gateway()


def get_dispatcher() -> NotificationDispatcher:
    return get_notification_dispatcher()


def get_event_publisher(
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> EventPublisher:
    if settings.notification_dispatch_mode == NotificationDispatchMode.CELERY:
        return CeleryEventPublisher()
    return InlineEventPublisher(async_session_maker, dispatcher)


def get_lifecycle_manager(
    publisher: EventPublisher = Depends(get_event_publisher),
) -> OrderLifecycleManager:
    return OrderLifecycleManager(publisher=publisher)


def get_payment_coordinator(
    gateway: BasePaymentGateway = Depends(get_gateway),
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle_manager),
) -> PaymentSessionCoordinator:
    return PaymentSessionCoordinator(gateway, lifecycle)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

async def build_order_response(
    db: AsyncSession,
    coordinator: PaymentSessionCoordinator,
    order_id: uuid.UUID,
) -> OrderResponse:
    order = await coordinator.store.get_order(db, order_id)
    view = await coordinator.current_status(db, order_id)
    response = OrderResponse.model_validate(order)
    response.payment_status = view.session_status
    return response


def build_report_response(report: DeliveryReport) -> DeliveryReportResponse:
    return DeliveryReportResponse(
        notification_id=report.notification_id,
        duplicate=report.duplicate,
        attempted=report.attempted,
        succeeded=report.succeeded,
        failed=report.failed,
        per_user={user_id: d.attempted for user_id, d in report.per_user.items()},
        failures=[DeliveryFailureResponse.model_validate(f) for f in report.failures],
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍔 Welcome to {settings.app_name}",
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
async def health_check(
    db: AsyncSession = Depends(get_db),
    gateway: BasePaymentGateway = Depends(get_gateway),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    payment_status = "healthy" if await gateway.health_check() else "unhealthy"
    push_status = "healthy" if await dispatcher.provider.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, payment_status, push_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        payment_service=payment_status,
        notification_service=push_status,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    status_code=201,
    tags=["Orders"],
    summary="Create Order",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def create_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle_manager),
) -> OrderCreateResponse:
    """Create an order from menu items; it starts in payment_pending."""
    order = await lifecycle.place_order(
        db,
        restaurant_id=order_data.restaurant_id,
        customer_id=order_data.customer_id,
        lines=[LineRequest(item_id=l.item_id, quantity=l.quantity) for l in order_data.lines],
    )
    return OrderCreateResponse(order_id=order.id, status=order.status, total=order.total)


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    restaurant_id: Optional[uuid.UUID] = Query(None),
    customer_id: Optional[uuid.UUID] = Query(None),
    status: Optional[OrderStatus] = Query(None),
    since_days: Optional[int] = Query(None, ge=1, description="Only orders created in the last N days"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle_manager),
) -> OrderListResponse:
    """Retrieve a paginated list of orders, newest first."""
    total, orders = await lifecycle.store.list_orders(
        db,
        restaurant_id=restaurant_id,
        customer_id=customer_id,
        status=status,
        since_days=since_days,
        skip=skip,
        limit=limit,
    )
    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    tags=["Orders"],
    responses={404: {"model": ErrorResponse}},
)
async def get_order(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    coordinator: PaymentSessionCoordinator = Depends(get_payment_coordinator),
) -> OrderResponse:
    """Get an order with its lines and payment session status."""
    return await build_order_response(db, coordinator, order_id)


@app.get(
    "/api/restaurants/{restaurant_id}/stats",
    response_model=RestaurantStatsResponse,
    tags=["Orders"],
    responses={404: {"model": ErrorResponse}},
)
async def get_restaurant_stats(
    restaurant_id: uuid.UUID,
    since_days: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
) -> RestaurantStatsResponse:
    """Order count, revenue, best and worst sellers and the weekday/hour grid."""
    stats = await restaurant_stats(
        db,
        restaurant_id,
        tz=settings.stats_tzinfo,
        since_days=since_days,
    )
    return RestaurantStatsResponse(
        restaurant_id=stats.restaurant_id,
        total_orders=stats.total_orders,
        total_revenue=stats.total_revenue,
        average_order_value=stats.average_order_value,
        top_items=[ItemSalesResponse.model_validate(i) for i in stats.top_items],
        bottom_items=[ItemSalesResponse.model_validate(i) for i in stats.bottom_items],
        orders_per_hour_by_weekday=stats.orders_per_hour_by_weekday,
        timezone=settings.stats_timezone,
    )


@app.post(
    "/api/orders/{order_id}/transition",
    response_model=TransitionResponse,
    tags=["Orders"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def transition_order(
    order_id: uuid.UUID,
    request: TransitionRequest,
    db: AsyncSession = Depends(get_db),
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle_manager),
) -> TransitionResponse:
    """Apply a restaurant action, or a customer cancel of an unpaid order."""
    if request.restaurant_id is not None:
        actor = RestaurantActor(request.restaurant_id)
    else:
        actor = CustomerActor(request.customer_id)

    order, event = await lifecycle.transition(db, order_id, OrderAction(request.action), actor)
    return TransitionResponse(order_id=order.id, from_status=event.from_status, status=event.to_status)


# =============================================================================
# PAYMENT ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders/{order_id}/payment-session",
    response_model=PaymentSessionResponse,
    status_code=201,
    tags=["Payments"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def open_payment_session(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    coordinator: PaymentSessionCoordinator = Depends(get_payment_coordinator),
) -> PaymentSessionResponse:
    """Open the gateway session used for client-side checkout."""
    session = await coordinator.open_session(db, order_id)
    return PaymentSessionResponse(
        session_id=session.session_id,
        order_id=session.order_id,
        status=session.status,
        gateway_order_ref=session.gateway_order_ref,
        amount=session.amount,
    )


@app.get(
    "/api/orders/{order_id}/payment-session",
    response_model=PaymentSessionStatusResponse,
    tags=["Payments"],
)
async def get_payment_session(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    coordinator: PaymentSessionCoordinator = Depends(get_payment_coordinator),
) -> PaymentSessionStatusResponse:
    """The active session of an order, or its most recent one."""
    view = await coordinator.current_status(db, order_id)
    return PaymentSessionStatusResponse.model_validate(view)


@app.post(
    "/api/orders/{order_id}/payment-session/refresh",
    response_model=PaymentSessionStatusResponse,
    tags=["Payments"],
    responses={409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def refresh_payment_session(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    coordinator: PaymentSessionCoordinator = Depends(get_payment_coordinator),
) -> PaymentSessionStatusResponse:
    """Ask the gateway for the outcome of the active session."""
    view = await coordinator.refresh(db, order_id)
    return PaymentSessionStatusResponse.model_validate(view)


@app.post(
    "/api/payment-sessions/{session_id}/callback",
    response_model=PaymentCallbackResponse,
    tags=["Payments"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def payment_callback(
    session_id: str,
    request: PaymentCallbackRequest,
    db: AsyncSession = Depends(get_db),
    coordinator: PaymentSessionCoordinator = Depends(get_payment_coordinator),
) -> PaymentCallbackResponse:
    """
    Reconcile a gateway outcome. Duplicates are acknowledged without
    changes; contradictions answer 409 and are recorded as incidents.
    """
    callback = GatewayCallback(
        session_id=session_id,
        status=parse_reported_status(request.status),
        gateway_order_ref=request.gateway_order_ref,
    )
    result = await coordinator.reconcile(db, callback)
    return PaymentCallbackResponse.model_validate(result)


@app.post(
    "/webhook/stripe",
    tags=["Webhooks"],
    summary="Stripe Webhook",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    gateway: BasePaymentGateway = Depends(get_gateway),
    coordinator: PaymentSessionCoordinator = Depends(get_payment_coordinator),
) -> dict:
    """
    Translate a signed Stripe event into a callback and reconcile it.

    Always acknowledged: Stripe retries anything else, and a retried
    contradiction would only record the same incident again.
    """
    payload = await request.body()
    callback = await gateway.parse_callback(payload, stripe_signature)
    if callback is None:
        return {"received": True, "reconciled": False}

    try:
        result = await coordinator.reconcile(db, callback)
    except NotFoundError as e:
        logger.warning(f"Stripe webhook for unknown payment: {e.message}")
        return {"received": True, "reconciled": False}
    except FoodHubError as e:
        return {"received": True, "reconciled": False, "error": e.error_code}

    return {
        "received": True,
        "reconciled": True,
        "changed": result.changed,
        "order_status": result.order_status.value,
    }


@app.get(
    "/api/payment-incidents",
    response_model=list[PaymentIncidentResponse],
    tags=["Payments"],
)
async def list_payment_incidents(
    order_id: Optional[uuid.UUID] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> list[PaymentIncidentResponse]:
    """Reconciliation incidents awaiting manual review, newest first."""
    query = select(PaymentIncident).order_by(PaymentIncident.created_at.desc())
    if order_id is not None:
        query = query.where(PaymentIncident.order_id == order_id)
    result = await db.execute(query.offset(skip).limit(limit))
    return [PaymentIncidentResponse.model_validate(i) for i in result.scalars().all()]


# =============================================================================
# NOTIFICATION ENDPOINTS
# =============================================================================

@app.post(
    "/api/users/{user_id}/notification-tokens",
    response_model=NotificationTokenResponse,
    tags=["Notifications"],
    responses={404: {"model": ErrorResponse}},
)
async def register_notification_token(
    user_id: uuid.UUID,
    request: NotificationTokenRequest,
    db: AsyncSession = Depends(get_db),
) -> NotificationTokenResponse:
    """Register or replace the push token of one of the user's devices."""
    record = await inbox.register_token(db, user_id, request.device_id, request.token)
    return NotificationTokenResponse.model_validate(record)


@app.get(
    "/api/users/{user_id}/notifications",
    response_model=list[NotificationResponse],
    tags=["Notifications"],
)
async def list_user_notifications(
    user_id: uuid.UUID,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> list[NotificationResponse]:
    notifications = await inbox.list_for_user(db, user_id, skip=skip, limit=limit)
    return [NotificationResponse.model_validate(n) for n in notifications]


@app.post(
    "/api/restaurants/{restaurant_id}/notifications",
    response_model=DeliveryReportResponse,
    status_code=201,
    tags=["Notifications"],
    responses={404: {"model": ErrorResponse}},
)
async def broadcast_notification(
    restaurant_id: uuid.UUID,
    request: BroadcastRequest,
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> DeliveryReportResponse:
    """Send a restaurant broadcast to every user."""
    report = await dispatcher.dispatch(
        db,
        NotificationDraft(
            recipient=Broadcast(),
            sender=FromRestaurant(restaurant_id),
            title=request.title,
            body=request.body,
            ttl_minutes=request.ttl_minutes or settings.notification_ttl_minutes,
        ),
    )
    return build_report_response(report)


@app.get(
    "/api/restaurants/{restaurant_id}/notifications",
    response_model=list[NotificationResponse],
    tags=["Notifications"],
)
async def list_restaurant_notifications(
    restaurant_id: uuid.UUID,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> list[NotificationResponse]:
    notifications = await inbox.list_for_restaurant(db, restaurant_id, skip=skip, limit=limit)
    return [NotificationResponse.model_validate(n) for n in notifications]


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(FoodHubError)
async def foodhub_exception_handler(request: Request, exc: FoodHubError) -> JSONResponse:
    """Map service errors to the standard error response."""
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc.error_code} - {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path}: {exc.error_code} - {exc.message}")
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
        "foodhub.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
