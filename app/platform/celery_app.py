from celery import Celery
from kombu import Queue

from app.platform.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - scan.pages: Page scans (Selenium + axe-core), one browser pool per worker process
    - batch: Batch completion notifications
    - maintenance: Periodic sweeps over batches, claims and attempt history
    - celery: Default queue for everything else

    Delivery is at-least-once (late ack, requeue on worker loss); scan tasks
    claim their job atomically so a redelivered message is dropped.
    """
    celery_app = Celery(
        "access_scan",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    # Task serialization
    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_track_started=settings.CELERY_TASK_TRACK_STARTED,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,

        # Result settings
        result_expires=3600,  # Results expire after 1 hour

        # Task routing
        task_routes={
            "app.features.scan.workers.tasks.process_scan_page": {"queue": "scan.pages"},
            "app.features.scan.workers.tasks.notify_scan_complete": {"queue": "batch"},
            "app.features.batch.workers.tasks.notify_batch_complete": {"queue": "batch"},
            "app.features.batch.workers.tasks.check_stale_batches": {"queue": "maintenance"},
            "app.features.scan.workers.periodic_tasks.purge_expired_scan_attempts": {"queue": "maintenance"},
            "app.features.scan.workers.periodic_tasks.clear_failed_scan_attempts": {"queue": "maintenance"},
            "app.features.scan.workers.periodic_tasks.requeue_expired_scan_claims": {"queue": "maintenance"},
        },

        # Define queues
        task_queues=(
            Queue("celery"),
            Queue("scan.pages"),
            Queue("batch"),
            Queue("maintenance"),
        ),

        # Default queue
        task_default_queue="celery",

        # Concurrency settings (can be overridden per worker)
        worker_prefetch_multiplier=1,  # Fair distribution

        # Retry settings
        task_acks_late=True,  # Acknowledge after task completes
        task_reject_on_worker_lost=True,  # Requeue if worker dies

        # Celery Beat schedule for periodic tasks
        beat_schedule={
            "check-stale-batches": {
                "task": "app.features.batch.workers.tasks.check_stale_batches",
                "schedule": settings.STALE_CHECK_INTERVAL_MINUTES * 60.0,
            },
            "purge-expired-scan-attempts": {
                "task": "app.features.scan.workers.periodic_tasks.purge_expired_scan_attempts",
                "schedule": 3600.0,  # Run every hour (3600 seconds)
            },
            "requeue-expired-scan-claims": {
                "task": "app.features.scan.workers.periodic_tasks.requeue_expired_scan_claims",
                "schedule": float(settings.SCAN_CLAIM_SWEEP_INTERVAL_SECONDS),
            },
        },
    )

    # Auto-discover tasks in the workers modules
    celery_app.autodiscover_tasks(["app.features.scan.workers", "app.features.batch.workers"])
    celery_app.conf.imports = ("app.features.scan.workers.periodic_tasks",)

    return celery_app


# Global Celery app instance
celery_app = create_celery_app()
