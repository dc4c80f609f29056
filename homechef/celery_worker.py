"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend.

The same app object is used by the API process to publish notification
events (send_task) and by the worker to run the ledger maintenance tasks.
"""

from celery import Celery

from homechef.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    'homechef_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['homechef.tasks']  # Module containing our tasks
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Worker settings
    worker_prefetch_multiplier=1,  # Process one task at a time
    worker_concurrency=4,  # Number of worker processes

    # Result settings
    result_expires=3600,  # Results expire after 1 hour

    # Task execution settings
    task_acks_late=True,  # Acknowledge task after completion
    task_reject_on_worker_lost=True,  # Requeue task if worker dies

    broker_connection_retry_on_startup=True,

    # Periodic ledger maintenance (run with `celery -A homechef.celery_worker beat`)
    beat_schedule={
        'reconcile-pending-tips': {
            'task': 'homechef.tasks.reconcile_pending_tips',
            'schedule': 300.0,
        },
        'export-ledger-to-excel': {
            'task': 'homechef.tasks.export_ledger_to_excel',
            'schedule': 3600.0,
        },
    },
)


if __name__ == '__main__':
    celery_app.start()
