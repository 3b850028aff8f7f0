"""
Celery Tasks
Background work for the ordering core: notification fan-out for lifecycle
events and gateway polling of payment sessions stuck in pending.

Tasks are synchronous Celery entry points around the async services; each
run gets its own engine so no connection crosses event loops.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone

from foodhub.celery_worker import celery_app
from foodhub.core.config import get_settings
from foodhub.core.exceptions import FoodHubError
from foodhub.database import build_engine, build_session_maker
from foodhub.services.notifications import (
    InlineEventPublisher,
    get_notification_dispatcher,
    get_push_provider,
    reset_push_provider,
)
from foodhub.services.orders import LifecycleEvent, OrderLifecycleManager
from foodhub.services.payment import PaymentSessionCoordinator, get_payment_gateway

logger = logging.getLogger(__name__)


async def _release(engine) -> None:
    # Each task runs in a fresh event loop; pooled connections must not outlive it
    await get_push_provider().close()
    reset_push_provider()
    await engine.dispose()


async def _dispatch(event: LifecycleEvent) -> dict:
    settings = get_settings()
    engine = build_engine(settings.database_url)
    try:
        async with build_session_maker(engine)() as db:
            reports = await get_notification_dispatcher().dispatch_event(db, event)
    finally:
        await _release(engine)

    return {
        'notifications': [str(r.notification_id) for r in reports],
        'duplicates': sum(1 for r in reports if r.duplicate),
        'attempted': sum(r.attempted for r in reports),
        'succeeded': sum(r.succeeded for r in reports),
    }


async def _poll(order_id: uuid.UUID) -> dict:
    settings = get_settings()
    engine = build_engine(settings.database_url)
    session_maker = build_session_maker(engine)

    lifecycle = OrderLifecycleManager(
        publisher=InlineEventPublisher(session_maker, get_notification_dispatcher())
    )
    coordinator = PaymentSessionCoordinator(get_payment_gateway(), lifecycle)
    try:
        async with session_maker() as db:
            view = await coordinator.refresh(db, order_id)
    finally:
        await _release(engine)

    return {
        'order_id': str(view.order_id),
        'order_status': view.order_status.value,
        'gateway_order_ref': view.gateway_order_ref,
        'session_status': view.session_status.value if view.session_status else None,
    }


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def dispatch_lifecycle_event(self, event_data: dict) -> dict:
    """
    Send the notifications caused by one lifecycle event.

    Safe to retry: notifications are deduplicated per (order, status).
    """
    task_id = self.request.id
    event = LifecycleEvent.from_dict(event_data)

    logger.info(f"Task {task_id}: Dispatching '{event.dedupe_key}'")
    start_time = time.time()

    result = asyncio.run(_dispatch(event))

    result['task_id'] = task_id
    result['processing_time_seconds'] = round(time.time() - start_time, 3)
    logger.info(
        f"Task {task_id}: '{event.dedupe_key}' done, "
        f"{result['succeeded']}/{result['attempted']} pushes delivered"
    )
    return result


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,
    retry_backoff=True
)
def poll_payment_session(self, order_id: str) -> dict:
    """
    Ask the gateway for the outcome of an order's pending session and
    reconcile it. Scheduled by the stale-session sweeper.
    """
    task_id = self.request.id
    logger.info(f"Task {task_id}: Polling payment session for order {order_id}")

    try:
        result = asyncio.run(_poll(uuid.UUID(order_id)))
    except FoodHubError as e:
        if e.status_code >= 500:
            # Gateway unreachable; try again later
            raise self.retry(exc=e)
        logger.warning(f"Task {task_id}: Order {order_id} not reconciled - {e.error_code}: {e.message}")
        return {'order_id': order_id, 'error': e.error_code, 'detail': e.message}

    result['task_id'] = task_id
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
