"""
Scan job lifecycle: creation, dispatch, claiming and terminal transitions.

Status changes are conditional UPDATEs on the current status, so redelivered
or duplicated queue messages can never move a job twice.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.orm import Session

from app.platform.config import settings
from app.platform.utils.url_validator import validate_url
from app.features.batch.models.batch_scan import BatchScan, BatchStatus
from app.features.batch.services.batch_status import (
    BatchProgress,
    publish_batch_progress,
    record_child_terminal,
)
from app.features.scan.models.scan_attempt import AttemptOutcome, ScanAttempt
from app.features.scan.models.scan_issue import Issue
from app.features.scan.models.scan_job import (
    CLAIMABLE_STATUSES,
    ConformanceLevel,
    ScanJob,
    ScanJobStatus,
)
from app.features.scan.models.scan_result import ScanResult
from app.features.scan.schemas.payloads import BatchScanPagePayload, ScanPagePayload
from app.features.scan.services.cache.status_cache import status_cache
from app.features.scan.services.scan.error_policy import user_message_for
from app.features.scan.services.scanner.errors import ScanErrorKind
from app.features.scan.services.scanner.page_scanner import ScanOutcome
from app.features.scan.services.security.navigation_validator import NavigationValidator

logger = logging.getLogger(__name__)


class ScanServiceError(Exception):
    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.message = message
        self.code = code


def create_scan_job(
    db: Session,
    url: str,
    conformance_level: ConformanceLevel = ConformanceLevel.AA,
    email: Optional[str] = None,
    batch_id: Optional[str] = None,
) -> ScanJob:
    """Add a PENDING scan to the session. The caller commits."""
    scan = ScanJob(
        url=url,
        conformance_level=conformance_level,
        email=email,
        batch_id=batch_id,
        status=ScanJobStatus.pending,
        attempt_count=0,
        max_attempts=settings.SCAN_MAX_ATTEMPTS,
    )
    db.add(scan)
    return scan


def build_payload(scan: ScanJob):
    if scan.batch_id:
        return BatchScanPagePayload(
            scan_id=scan.id,
            batch_id=scan.batch_id,
            url=scan.url,
            conformance_level=scan.conformance_level,
        )
    return ScanPagePayload(
        scan_id=scan.id,
        url=scan.url,
        conformance_level=scan.conformance_level,
        email=scan.email,
    )


def dispatch_scan(db: Session, scan: ScanJob, countdown: Optional[float] = None) -> str:
    """Put the scan on the queue and remember the task id."""
    from app.features.scan.workers.tasks import process_scan_page

    payload = build_payload(scan)
    async_result = process_scan_page.apply_async(
        args=[payload.model_dump(mode="json")],
        countdown=countdown,
    )

    db.execute(
        update(ScanJob)
        .where(ScanJob.id == scan.id)
        .values(celery_task_id=async_result.id)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    logger.info(f"[{scan.id}] Dispatched as task {async_result.id} (countdown={countdown})")
    return async_result.id


def dispatch_or_fail(db: Session, scan: ScanJob) -> Optional[str]:
    """
    Dispatch a freshly created scan. A scan that cannot be queued is failed
    straight away so that its batch can still finish.
    """
    try:
        return dispatch_scan(db, scan)
    except Exception as e:
        logger.error(f"[{scan.id}] Could not queue scan: {e}")
        db.rollback()
        progress = fail_scan_job(
            db,
            scan.id,
            ScanErrorKind.INTERNAL,
            detail=f"dispatch failed: {e}",
            from_statuses=(ScanJobStatus.pending,),
        )
        publish_batch_progress(progress)
        return None


def enqueue_scan(
    db: Session,
    url: str,
    conformance_level: ConformanceLevel = ConformanceLevel.AA,
    email: Optional[str] = None,
    validator: Optional[NavigationValidator] = None,
) -> str:
    """Validate, persist and queue a single-page scan. Returns the scan id."""
    is_valid, normalized_url, error = validate_url(url)
    if not is_valid:
        raise ScanServiceError(error, "INVALID_URL")

    verdict = (validator or NavigationValidator()).validate_target(normalized_url)
    if not verdict.allowed:
        logger.warning(f"Rejected scan of {normalized_url}: {verdict.reason} (host={verdict.host})")
        raise ScanServiceError(user_message_for(ScanErrorKind.BLOCKED_URL), "BLOCKED_URL")

    scan = create_scan_job(db, normalized_url, conformance_level, email=email)
    db.commit()
    db.refresh(scan)

    logger.info(f"[{scan.id}] Created scan for {normalized_url} ({conformance_level.value})")
    status_cache.set_scan_status(scan.id, scan.status.value)
    dispatch_or_fail(db, scan)
    return scan.id


def get_scan(db: Session, scan_id: str) -> Optional[ScanJob]:
    return db.get(ScanJob, scan_id)


def claim_scan_job(
    db: Session,
    scan_id: str,
    task_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Tuple[ScanJob, ScanAttempt]]:
    """
    Atomically take ownership of a scan for one attempt.

    Succeeds for PENDING or RETRYING scans, and for RUNNING scans whose claim
    lease has expired (the worker that held it is gone). Returns None when
    another delivery owns the scan or it is already terminal.
    """
    now = now or datetime.utcnow()
    lease_expired_before = now - timedelta(seconds=settings.SCAN_CLAIM_LEASE_SECONDS)

    claimed = db.execute(
        update(ScanJob)
        .where(
            ScanJob.id == scan_id,
            or_(
                ScanJob.status.in_(CLAIMABLE_STATUSES),
                and_(ScanJob.status == ScanJobStatus.running, ScanJob.claimed_at < lease_expired_before),
            ),
        )
        .values(
            status=ScanJobStatus.running,
            attempt_count=ScanJob.attempt_count + 1,
            claimed_at=now,
            celery_task_id=task_id,
        )
        .execution_options(synchronize_session=False)
    ).rowcount == 1

    if not claimed:
        db.rollback()
        return None

    # Attempts left open by a lost worker
    db.execute(
        update(ScanAttempt)
        .where(ScanAttempt.scan_job_id == scan_id, ScanAttempt.outcome == AttemptOutcome.running)
        .values(
            outcome=AttemptOutcome.failed,
            error_kind=ScanErrorKind.INTERNAL.value,
            error_message="Worker lost before the attempt finished",
            finished_at=now,
        )
        .execution_options(synchronize_session=False)
    )

    scan = db.execute(
        select(ScanJob).where(ScanJob.id == scan_id).execution_options(populate_existing=True)
    ).scalar_one()
    if scan.started_at is None:
        scan.started_at = now

    attempt = ScanAttempt(
        scan_job_id=scan.id,
        attempt_number=scan.attempt_count,
        celery_task_id=task_id,
        outcome=AttemptOutcome.running,
        started_at=now,
    )
    db.add(attempt)
    db.commit()
    db.refresh(scan)

    logger.info(f"[{scan_id}] Claimed attempt {scan.attempt_count}/{scan.max_attempts}")
    return scan, attempt


def _finish_attempt(
    db: Session,
    attempt_id: Optional[str],
    outcome: AttemptOutcome,
    now: datetime,
    error_kind: Optional[ScanErrorKind] = None,
    error_message: Optional[str] = None,
) -> None:
    if attempt_id is None:
        return
    db.execute(
        update(ScanAttempt)
        .where(ScanAttempt.id == attempt_id)
        .values(
            outcome=outcome,
            finished_at=now,
            error_kind=error_kind.value if error_kind else None,
            error_message=error_message,
        )
        .execution_options(synchronize_session=False)
    )


def complete_scan_job(
    db: Session,
    scan_id: str,
    outcome: ScanOutcome,
    attempt_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[BatchProgress]:
    """
    RUNNING -> COMPLETED, storing the result, its issues and the batch
    increment in one transaction.

    Raises ScanServiceError(LOST_CLAIM) when the scan is no longer RUNNING.
    """
    now = now or datetime.utcnow()

    moved = db.execute(
        update(ScanJob)
        .where(ScanJob.id == scan_id, ScanJob.status == ScanJobStatus.running)
        .values(
            status=ScanJobStatus.completed,
            final_url=outcome.final_url,
            page_title=(outcome.title or "")[:512] or None,
            completed_at=now,
            duration_ms=outcome.duration_ms,
            error_kind=None,
            error_message=None,
        )
        .execution_options(synchronize_session=False)
    ).rowcount == 1

    if not moved:
        db.rollback()
        raise ScanServiceError(f"Scan {scan_id} is no longer running", "LOST_CLAIM")

    result = ScanResult(
        scan_job_id=scan_id,
        total_issues=outcome.summary.total,
        critical_count=outcome.summary.critical,
        serious_count=outcome.summary.serious,
        moderate_count=outcome.summary.moderate,
        minor_count=outcome.summary.minor,
        passed_checks=outcome.passes,
        inapplicable_checks=outcome.inapplicable,
        scan_duration_ms=outcome.duration_ms,
    )
    db.add(result)
    db.flush()

    for mapped in outcome.issues:
        db.add(
            Issue(
                scan_result_id=result.id,
                rule_id=mapped.rule_id,
                impact=mapped.impact,
                description=mapped.description,
                help_text=mapped.help_text,
                help_url=mapped.help_url,
                wcag_criteria=mapped.wcag_criteria,
                css_selector=mapped.css_selector,
                html_snippet=mapped.html_snippet,
                nodes=mapped.nodes,
            )
        )

    _finish_attempt(db, attempt_id, AttemptOutcome.succeeded, now)

    scan = db.get(ScanJob, scan_id)
    progress = record_child_terminal(db, scan, ScanJobStatus.completed, result, now=now)
    db.commit()

    logger.info(f"[{scan_id}] Completed with {outcome.summary.total} issues")
    status_cache.set_scan_status(scan_id, ScanJobStatus.completed.value, total_issues=outcome.summary.total)
    return progress


def fail_scan_job(
    db: Session,
    scan_id: str,
    kind: ScanErrorKind,
    detail: Optional[str] = None,
    attempt_id: Optional[str] = None,
    now: Optional[datetime] = None,
    from_statuses: Iterable[ScanJobStatus] = (ScanJobStatus.running,),
) -> Optional[BatchProgress]:
    """Terminal failure with a user-facing reason; detail only goes to the attempt log."""
    now = now or datetime.utcnow()
    message = user_message_for(kind)

    moved = db.execute(
        update(ScanJob)
        .where(ScanJob.id == scan_id, ScanJob.status.in_(tuple(from_statuses)))
        .values(
            status=ScanJobStatus.failed,
            error_kind=kind.value,
            error_message=message,
            completed_at=now,
        )
        .execution_options(synchronize_session=False)
    ).rowcount == 1

    if not moved:
        db.rollback()
        logger.warning(f"[{scan_id}] Not failing scan; it is no longer in {[s.value for s in from_statuses]}")
        return None

    _finish_attempt(db, attempt_id, AttemptOutcome.failed, now, kind, detail or message)

    scan = db.get(ScanJob, scan_id)
    progress = record_child_terminal(db, scan, ScanJobStatus.failed, now=now)
    db.commit()

    logger.warning(f"[{scan_id}] Failed ({kind.value}): {detail or message}")
    status_cache.set_scan_status(scan_id, ScanJobStatus.failed.value, error_kind=kind.value)
    return progress


def schedule_retry(
    db: Session,
    scan_id: str,
    kind: ScanErrorKind,
    detail: Optional[str] = None,
    attempt_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ScanJobStatus:
    """
    RUNNING -> RETRYING after a retryable failure.

    Scans of a cancelled batch go to CANCELLED instead; the returned status
    tells the caller whether to queue another attempt.
    """
    now = now or datetime.utcnow()

    batch_cancelled = db.execute(
        select(BatchScan.id)
        .join(ScanJob, ScanJob.batch_id == BatchScan.id)
        .where(ScanJob.id == scan_id, BatchScan.status == BatchStatus.cancelled)
    ).first() is not None

    new_status = ScanJobStatus.cancelled if batch_cancelled else ScanJobStatus.retrying
    values = {
        "status": new_status,
        "error_kind": kind.value,
        "error_message": user_message_for(kind),
    }
    if batch_cancelled:
        values["completed_at"] = now

    moved = db.execute(
        update(ScanJob)
        .where(ScanJob.id == scan_id, ScanJob.status == ScanJobStatus.running)
        .values(**values)
        .execution_options(synchronize_session=False)
    ).rowcount == 1

    if not moved:
        db.rollback()
        raise ScanServiceError(f"Scan {scan_id} is no longer running", "LOST_CLAIM")

    _finish_attempt(db, attempt_id, AttemptOutcome.retrying, now, kind, detail)
    db.commit()

    if batch_cancelled:
        logger.info(f"[{scan_id}] Batch was cancelled; not retrying")
    else:
        logger.info(f"[{scan_id}] Will retry after {kind.value}")
    status_cache.set_scan_status(scan_id, new_status.value, error_kind=kind.value)
    return new_status


def release_claim(
    db: Session,
    scan_id: str,
    attempt_id: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Hand a claimed scan back after an infrastructure error. The attempt does
    not count against the scan's limit.
    """
    now = now or datetime.utcnow()
    db.rollback()

    released = db.execute(
        update(ScanJob)
        .where(ScanJob.id == scan_id, ScanJob.status == ScanJobStatus.running)
        .values(
            status=ScanJobStatus.retrying,
            attempt_count=ScanJob.attempt_count - 1,
            claimed_at=None,
        )
        .execution_options(synchronize_session=False)
    ).rowcount == 1

    if not released:
        db.rollback()
        logger.info(f"[{scan_id}] Nothing to release; scan already left RUNNING")
        return False

    _finish_attempt(db, attempt_id, AttemptOutcome.released, now, ScanErrorKind.INTERNAL, reason)
    db.commit()

    logger.warning(f"[{scan_id}] Released claim: {reason}")
    status_cache.set_scan_status(scan_id, ScanJobStatus.retrying.value)
    return True


def requeue_expired_claims(db: Session, now: Optional[datetime] = None) -> List[str]:
    """
    Queue another delivery for RUNNING scans whose claim lease has expired.

    Covers workers that died or were killed mid-scan without handing their
    claim back. The new delivery takes the scan through the lease-expiry
    branch of claim_scan_job; a scan that is claimed again in the meantime
    simply drops the extra message.
    """
    now = now or datetime.utcnow()
    lease_expired_before = now - timedelta(seconds=settings.SCAN_CLAIM_LEASE_SECONDS)

    expired = db.execute(
        select(ScanJob)
        .where(ScanJob.status == ScanJobStatus.running, ScanJob.claimed_at < lease_expired_before)
        .order_by(ScanJob.claimed_at)
    ).scalars().all()

    requeued = []
    for scan in expired:
        try:
            dispatch_scan(db, scan)
        except Exception as e:
            logger.error(f"[{scan.id}] Could not requeue expired claim: {e}")
            db.rollback()
            continue
        requeued.append(scan.id)

    if requeued:
        logger.warning(f"Requeued {len(requeued)} scans with expired claims")
    return requeued


def purge_expired_attempts(db: Session, now: Optional[datetime] = None) -> int:
    """
    Delete attempt history that is no longer useful: attempts of COMPLETED
    scans after the completed retention window, and attempts of cancelled or
    still-retrying scans after the longer failure window. Attempts of FAILED
    scans are kept until cleared explicitly.
    """
    now = now or datetime.utcnow()
    completed_cutoff = now - timedelta(hours=settings.COMPLETED_JOB_RETENTION_HOURS)
    failed_cutoff = now - timedelta(hours=settings.FAILED_JOB_RETENTION_HOURS)

    completed_ids = select(ScanJob.id).where(ScanJob.status == ScanJobStatus.completed)
    other_ids = select(ScanJob.id).where(
        ScanJob.status.in_((ScanJobStatus.cancelled, ScanJobStatus.retrying))
    )

    deleted = db.execute(
        delete(ScanAttempt)
        .where(ScanAttempt.scan_job_id.in_(completed_ids), ScanAttempt.started_at < completed_cutoff)
        .execution_options(synchronize_session=False)
    ).rowcount
    deleted += db.execute(
        delete(ScanAttempt)
        .where(
            ScanAttempt.scan_job_id.in_(other_ids),
            ScanAttempt.started_at < failed_cutoff,
            ScanAttempt.outcome != AttemptOutcome.running,
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()

    if deleted:
        logger.info(f"Purged {deleted} expired scan attempts")
    return deleted


def clear_failed_attempts(db: Session, scan_ids: List[str]) -> int:
    """Explicitly drop the attempt history of terminally failed scans."""
    if not scan_ids:
        return 0
    failed_ids = select(ScanJob.id).where(
        ScanJob.id.in_(scan_ids), ScanJob.status == ScanJobStatus.failed
    )
    deleted = db.execute(
        delete(ScanAttempt)
        .where(ScanAttempt.scan_job_id.in_(failed_ids))
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    logger.info(f"Cleared {deleted} attempts of {len(scan_ids)} failed scans")
    return deleted
