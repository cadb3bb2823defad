import logging
from typing import Any, Dict

from celery.signals import worker_process_shutdown
from kombu.exceptions import OperationalError as BrokerOperationalError
from sqlalchemy.exc import OperationalError

from app.platform.celery_app import celery_app
from app.platform.db.session import get_sync_db
from app.platform.schemas import SideEffectResult
from app.features.scan.models.scan_job import ScanJob
from app.features.scan.services.browser.browser_pool import (
    PoolExhaustedError,
    get_browser_pool,
    shutdown_browser_pool,
)
from app.features.scan.services.scan.job_runner import JobRunResult, run_scan_job
from app.features.scan.services.scanner.axe_analyzer import AxeAnalyzer
from app.features.scan.services.scanner.page_scanner import PageScanner

logger = logging.getLogger(__name__)

_scanner = None


def get_page_scanner() -> PageScanner:
    """One scanner per worker process, sharing the process browser pool."""
    global _scanner
    if _scanner is None or _scanner.pool.closed:
        _scanner = PageScanner(pool=get_browser_pool(), analyzer=AxeAnalyzer())
    return _scanner


@worker_process_shutdown.connect
def _close_browser_pool(**kwargs):
    logger.info("Worker process shutting down; closing browser pool")
    shutdown_browser_pool()


@celery_app.task(
    bind=True,
    name="app.features.scan.workers.tasks.process_scan_page",
    autoretry_for=(OperationalError, PoolExhaustedError, BrokerOperationalError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_jitter=True,
    max_retries=5,
)
def process_scan_page(self, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Scan one page.

    Page-level failures are retried by re-queueing a fresh message with the
    scan's own backoff (see job_runner). Only infrastructure errors go through
    Celery's autoretry, after the claim has been handed back.
    """
    scan_id = payload.get("scan_id") if isinstance(payload, dict) else None
    logger.info(f"[{scan_id}] Received scan task {self.request.id} (delivery {self.request.retries + 1})")

    result: JobRunResult = run_scan_job(payload, get_page_scanner(), task_id=self.request.id)

    if result.action in ("completed", "failed"):
        notify = notify_scan_complete_if_requested(result.scan_id)
        if not notify.ok:
            logger.warning(f"[{scan_id}] Completion notification not queued: {notify.error}")

    return {
        "scan_id": result.scan_id,
        "action": result.action,
        "error_kind": result.error_kind.value if result.error_kind else None,
        "countdown": result.countdown,
    }


def notify_scan_complete_if_requested(scan_id: str) -> SideEffectResult:
    """Queue the completion email of a single-page scan that asked for one."""
    db = get_sync_db()
    try:
        scan = db.get(ScanJob, scan_id)
        if scan is None or scan.batch_id is not None or not scan.email:
            return SideEffectResult.success()
    finally:
        db.close()

    try:
        notify_scan_complete.delay(scan_id)
        return SideEffectResult.success()
    except Exception as e:
        logger.error(f"[{scan_id}] Failed to queue completion notification: {e}")
        return SideEffectResult.failure(str(e))


@celery_app.task(
    bind=True,
    name="app.features.scan.workers.tasks.notify_scan_complete",
    max_retries=3,
    default_retry_delay=30,
)
def notify_scan_complete(self, scan_id: str) -> Dict[str, Any]:
    """Hand a finished scan over to the email service."""
    db = get_sync_db()
    try:
        scan = db.get(ScanJob, scan_id)
        if scan is None:
            logger.warning(f"[{scan_id}] Scan not found; no notification sent")
            return {"scan_id": scan_id, "sent": False}

        logger.info(
            f"[{scan_id}] Scan {scan.status.value} for {scan.url}; "
            f"notification handed off for {scan.email}"
        )
        return {"scan_id": scan_id, "sent": True, "status": scan.status.value}
    finally:
        db.close()
