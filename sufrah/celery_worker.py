"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend, and the
beat schedule that reconciles senders still waiting on Twilio.
"""

from celery import Celery

from sufrah.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    'sufrah_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['sufrah.tasks']
)

celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=2,

    # Result settings
    result_expires=3600,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,

    beat_schedule={
        'reconcile-verifying-senders': {
            'task': 'sufrah.tasks.reconcile_verifying_senders',
            'schedule': float(settings.reconcile_interval_seconds),
        },
    },
)


if __name__ == '__main__':
    celery_app.start()
