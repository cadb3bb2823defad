"""
Celery periodic tasks for scan maintenance.

This module contains tasks that run on a schedule via Celery Beat.
"""
import logging
from datetime import datetime
from typing import List

from celery import shared_task

from app.platform.db.session import get_sync_db
from app.features.scan.services.scan.job_service import (
    clear_failed_attempts,
    purge_expired_attempts,
    requeue_expired_claims,
)

logger = logging.getLogger(__name__)


@shared_task(bind=True, name="app.features.scan.workers.periodic_tasks.purge_expired_scan_attempts")
def purge_expired_scan_attempts(self):
    """
    Delete attempt history past its retention window.

    Runs every hour via Celery Beat. Attempts of terminally failed scans are
    left for operators and removed with clear_failed_scan_attempts.
    """
    db = get_sync_db()
    try:
        deleted = purge_expired_attempts(db, now=datetime.utcnow())
        logger.info(f"Attempt retention pass removed {deleted} rows")
        return {"deleted": deleted}
    finally:
        db.close()


@shared_task(bind=True, name="app.features.scan.workers.periodic_tasks.clear_failed_scan_attempts")
def clear_failed_scan_attempts(self, scan_ids: List[str]):
    db = get_sync_db()
    try:
        return {"deleted": clear_failed_attempts(db, scan_ids)}
    finally:
        db.close()


@shared_task(bind=True, name="app.features.scan.workers.periodic_tasks.requeue_expired_scan_claims")
def requeue_expired_scan_claims(self):
    """
    Queue scans again whose worker died while holding the claim.

    Runs every few minutes via Celery Beat.
    """
    db = get_sync_db()
    try:
        requeued = requeue_expired_claims(db, now=datetime.utcnow())
        return {"requeued": len(requeued), "scan_ids": requeued}
    finally:
        db.close()
