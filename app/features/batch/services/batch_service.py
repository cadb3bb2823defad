"""
Batch orchestration: submitting a group of URLs, cancelling it and reporting
its progress.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.platform.celery_app import celery_app
from app.platform.config import settings
from app.platform.schemas import SideEffectResult
from app.platform.utils.url_validator import validate_url
from app.features.batch.models.batch_scan import ACTIVE_BATCH_STATUSES, BatchScan, BatchStatus
from app.features.batch.schemas.batch import BatchAggregates, BatchScanItem, BatchStatusView
from app.features.scan.models.scan_job import CLAIMABLE_STATUSES, ConformanceLevel, ScanJob, ScanJobStatus
from app.features.scan.services.cache.status_cache import status_cache
from app.features.scan.services.scan.job_service import create_scan_job, dispatch_or_fail
from app.features.scan.services.security.navigation_validator import NavigationValidator

logger = logging.getLogger(__name__)


class BatchServiceError(Exception):
    """Raised for rejected batch operations. ``code`` is machine-readable."""

    def __init__(self, message: str, code: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or []


@dataclass
class CancelBatchResult:
    batch_id: str
    status: BatchStatus
    cancelled_scans: int
    completed_scans: int
    cancelled_at: datetime
    revoke: SideEffectResult


def _validate_batch_urls(urls: List[str], validator: NavigationValidator) -> List[str]:
    if not urls:
        raise BatchServiceError("At least one URL is required", "INVALID_URL")

    # Syntax and de-duplication first; the size limit is checked before any DNS lookup
    distinct: Dict[str, str] = {}
    errors: List[str] = []
    for url in urls:
        is_valid, normalized_url, error = validate_url(url)
        if not is_valid:
            errors.append(f"{url}: {error}")
            continue
        distinct.setdefault(normalized_url, url)

    if len(distinct) > settings.MAX_URLS_PER_BATCH:
        raise BatchServiceError(
            f"A batch can contain at most {settings.MAX_URLS_PER_BATCH} URLs",
            "TOO_MANY_URLS",
        )
    if errors:
        raise BatchServiceError("One or more URLs are invalid", "INVALID_URL", details=errors)

    for normalized_url, url in distinct.items():
        verdict = validator.validate_target(normalized_url)
        if not verdict.allowed:
            logger.warning(f"Rejected batch URL {normalized_url}: {verdict.reason} (host={verdict.host})")
            errors.append(f"{url}: This destination is not permitted.")

    if errors:
        raise BatchServiceError("One or more URLs are invalid", "INVALID_URL", details=errors)
    return list(distinct)


def enqueue_batch(
    db: Session,
    urls: List[str],
    conformance_level: ConformanceLevel = ConformanceLevel.AA,
    homepage_url: Optional[str] = None,
    email: Optional[str] = None,
    validator: Optional[NavigationValidator] = None,
) -> str:
    """
    Create a batch and one scan per distinct URL, then queue the scans.

    Any invalid or blocked URL rejects the whole batch before anything is
    written.
    """
    validator = validator or NavigationValidator()
    normalized = _validate_batch_urls(urls, validator)

    if homepage_url:
        is_valid, homepage_url, error = validate_url(homepage_url)
        if not is_valid:
            raise BatchServiceError(f"Invalid homepage URL: {error}", "INVALID_URL")
    else:
        homepage_url = normalized[0]

    batch = BatchScan(
        homepage_url=homepage_url,
        conformance_level=conformance_level.value,
        email=email,
        status=BatchStatus.pending,
        total_urls=len(normalized),
        completed_count=0,
        failed_count=0,
    )
    db.add(batch)
    db.flush()

    scans = [
        create_scan_job(db, url, conformance_level, batch_id=batch.id)
        for url in normalized
    ]
    db.commit()

    batch_id = batch.id
    logger.info(f"[{batch_id}] Created batch of {len(scans)} scans for {homepage_url}")
    status_cache.set_batch_status(batch_id, BatchStatus.pending.value, total_urls=len(scans))

    for scan in scans:
        dispatch_or_fail(db, scan)

    return batch_id


def cancel_batch(db: Session, batch_id: str, now: Optional[datetime] = None) -> CancelBatchResult:
    """
    Cancel a PENDING or RUNNING batch.

    Queued child scans are cancelled; scans already running finish on their
    own and completed results are kept.
    """
    now = now or datetime.utcnow()

    batch = db.get(BatchScan, batch_id)
    if batch is None:
        raise BatchServiceError(f"Batch {batch_id} not found", "NOT_FOUND")
    if batch.status not in ACTIVE_BATCH_STATUSES:
        raise BatchServiceError(
            f"Batch is already {batch.status.value} and cannot be cancelled",
            "INVALID_STATE",
        )

    moved = db.execute(
        update(BatchScan)
        .where(BatchScan.id == batch_id, BatchScan.status.in_(ACTIVE_BATCH_STATUSES))
        .values(status=BatchStatus.cancelled, cancelled_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount == 1
    if not moved:
        db.rollback()
        raise BatchServiceError("Batch finished before it could be cancelled", "INVALID_STATE")

    queued = db.execute(
        select(ScanJob.id, ScanJob.celery_task_id)
        .where(ScanJob.batch_id == batch_id, ScanJob.status.in_(CLAIMABLE_STATUSES))
    ).all()

    cancelled_scans = db.execute(
        update(ScanJob)
        .where(ScanJob.batch_id == batch_id, ScanJob.status.in_(CLAIMABLE_STATUSES))
        .values(status=ScanJobStatus.cancelled, completed_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    db.refresh(batch)

    logger.info(f"[{batch_id}] Cancelled batch; {cancelled_scans} queued scans cancelled")

    revoke = _revoke_tasks([task_id for _, task_id in queued if task_id])
    status_cache.set_batch_status(batch_id, BatchStatus.cancelled.value)

    return CancelBatchResult(
        batch_id=batch_id,
        status=batch.status,
        cancelled_scans=cancelled_scans,
        completed_scans=batch.completed_count,
        cancelled_at=now,
        revoke=revoke,
    )


def _revoke_tasks(task_ids: List[str]) -> SideEffectResult:
    """Best effort: a message that is still delivered finds its scan CANCELLED and is dropped."""
    if not task_ids:
        return SideEffectResult.success()
    try:
        celery_app.control.revoke(task_ids)
        return SideEffectResult.success()
    except Exception as e:
        logger.warning(f"Could not revoke {len(task_ids)} queued scan tasks: {e}")
        return SideEffectResult.failure(str(e))


def get_batch_status(db: Session, batch_id: str) -> BatchStatusView:
    batch = db.get(BatchScan, batch_id)
    if batch is None:
        raise BatchServiceError(f"Batch {batch_id} not found", "NOT_FOUND")

    scans = db.execute(
        select(ScanJob).where(ScanJob.batch_id == batch_id).order_by(ScanJob.created_at, ScanJob.id)
    ).scalars().all()

    return BatchStatusView(
        batch_id=batch.id,
        status=batch.status.value,
        homepage_url=batch.homepage_url,
        conformance_level=batch.conformance_level,
        total_urls=batch.total_urls,
        completed_count=batch.completed_count,
        failed_count=batch.failed_count,
        pending_count=batch.total_urls - batch.completed_count - batch.failed_count,
        aggregates=BatchAggregates(
            total_issues=batch.total_issues,
            critical_count=batch.critical_count,
            serious_count=batch.serious_count,
            moderate_count=batch.moderate_count,
            minor_count=batch.minor_count,
            passed_checks=batch.passed_checks,
        ),
        created_at=batch.created_at,
        completed_at=batch.completed_at,
        cancelled_at=batch.cancelled_at,
        stale_at=batch.stale_at,
        scans=[
            BatchScanItem(
                scan_id=s.id,
                url=s.url,
                status=s.status.value,
                error_kind=s.error_kind,
                error_message=s.error_message,
            )
            for s in scans
        ],
    )
