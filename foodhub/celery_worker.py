"""
Celery Worker Configuration

Redis is both broker and result backend. Notification fan-out and payment
polling run on separate queues so a slow push provider never delays
payment reconciliation.

Run a worker for both queues:
    celery -A foodhub.celery_worker worker -Q notifications,payments,celery
"""

from celery import Celery

from foodhub.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    'foodhub_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['foodhub.tasks'],
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    task_routes={
        'foodhub.tasks.dispatch_lifecycle_event': {'queue': 'notifications'},
        'foodhub.tasks.poll_payment_session': {'queue': 'payments'},
    },

    # One event or poll per worker slot; both tasks do network I/O
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # A push fan-out or gateway poll stuck this long is abandoned and retried
    task_soft_time_limit=60,
    task_time_limit=90,

    result_expires=3600,

    # Events are delivered at least once; dispatch dedupes replays
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,
)


if __name__ == '__main__':
    celery_app.start()
