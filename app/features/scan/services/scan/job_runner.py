"""
Processing of one scan queue message.

Kept apart from the Celery task so the whole claim -> scan -> record cycle can
be driven directly; the task only maps the returned decision onto Celery.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.platform.db.session import get_sync_db
from app.features.batch.services.batch_status import publish_batch_progress
from app.features.scan.models.scan_job import ScanJobStatus
from app.features.scan.schemas.payloads import BatchScanPagePayload, JobPayloadError, parse_job_payload
from app.features.scan.services.cache.status_cache import status_cache
from app.features.scan.services.browser.browser_pool import PoolClosedError, PoolExhaustedError
from app.features.scan.services.scan import job_service
from app.features.scan.services.scan.error_policy import (
    backoff_delay,
    classify_error,
    should_retry,
)
from app.features.scan.services.scanner.errors import ScanError, ScanErrorKind
from app.features.scan.services.scanner.page_scanner import PageScanner

logger = logging.getLogger(__name__)

# Failures of our own infrastructure rather than of the scanned page
INFRASTRUCTURE_ERRORS = (OperationalError, PoolExhaustedError, PoolClosedError)


@dataclass
class JobRunResult:
    action: str  # completed | retry | failed | cancelled | skipped | rejected
    scan_id: Optional[str] = None
    error_kind: Optional[ScanErrorKind] = None
    countdown: Optional[float] = None


def run_scan_job(
    data: Dict[str, Any],
    scanner: PageScanner,
    task_id: Optional[str] = None,
    session_factory: Callable[[], Session] = get_sync_db,
) -> JobRunResult:
    """
    Claim the scan named in ``data``, scan its page and record the outcome.

    Infrastructure errors raised while scanning or while recording the outcome
    are re-raised after the claim is handed back, so the queue can redeliver
    the message with its own backoff. A claim lost to another delivery drops
    this one.
    """
    try:
        payload = parse_job_payload(data)
    except JobPayloadError as e:
        logger.error(f"Rejected scan message: {e}")
        return JobRunResult(action="rejected")

    scan_id = payload.scan_id
    db = session_factory()
    try:
        claim = job_service.claim_scan_job(db, scan_id, task_id)
        if claim is None:
            logger.info(f"[{scan_id}] Not claimable (owned elsewhere or finished); dropping delivery")
            return JobRunResult(action="skipped", scan_id=scan_id)

        scan, attempt = claim
        attempt_id = attempt.id
        try:
            return _run_claimed(db, payload, scan, attempt_id, scanner)
        except INFRASTRUCTURE_ERRORS as e:
            _release_after_infrastructure_error(db, scan_id, attempt_id, e)
            raise
        except job_service.ScanServiceError as e:
            if e.code != "LOST_CLAIM":
                raise
            logger.warning(f"[{scan_id}] Lost the claim to another delivery; dropping this one")
            return JobRunResult(action="skipped", scan_id=scan_id)
    finally:
        db.close()


def _run_claimed(db: Session, payload, scan, attempt_id: str, scanner: PageScanner) -> JobRunResult:
    scan_id = scan.id
    status_cache.set_scan_status(scan_id, ScanJobStatus.running.value, attempt=scan.attempt_count)

    if isinstance(payload, BatchScanPagePayload) and scan.batch_id != payload.batch_id:
        progress = job_service.fail_scan_job(
            db, scan_id, ScanErrorKind.VALIDATION_FAILED,
            detail=f"payload batch {payload.batch_id} does not match scan batch {scan.batch_id}",
            attempt_id=attempt_id,
        )
        publish_batch_progress(progress)
        return JobRunResult(action="failed", scan_id=scan_id, error_kind=ScanErrorKind.VALIDATION_FAILED)

    try:
        outcome = scanner.scan(scan.url, scan.conformance_level)
    except INFRASTRUCTURE_ERRORS:
        raise
    except Exception as e:
        return _handle_failure(db, scan, attempt_id, e)

    progress = job_service.complete_scan_job(db, scan_id, outcome, attempt_id=attempt_id)
    publish_batch_progress(progress)
    return JobRunResult(action="completed", scan_id=scan_id)


def _release_after_infrastructure_error(db: Session, scan_id: str, attempt_id: str, exc: Exception) -> None:
    """
    Hand the claim back so the redelivered message can take it. When the
    database itself is unreachable the claim stays until its lease expires and
    the expired-claim sweep queues the scan again.
    """
    try:
        job_service.release_claim(db, scan_id, attempt_id, reason=f"{type(exc).__name__}: {exc}")
    except OperationalError:
        logger.exception(f"[{scan_id}] Could not release claim; leaving it to lease expiry")
        db.rollback()


def _handle_failure(db: Session, scan, attempt_id: str, exc: Exception) -> JobRunResult:
    scan_id = scan.id
    classification = classify_error(exc)
    detail = exc.detail if isinstance(exc, ScanError) and exc.detail else str(exc)

    if classification.kind == ScanErrorKind.INTERNAL:
        logger.exception(f"[{scan_id}] Unexpected error on attempt {scan.attempt_count}")

    if should_retry(classification, scan.attempt_count, scan.max_attempts):
        countdown = backoff_delay(scan.attempt_count)
        new_status = job_service.schedule_retry(db, scan_id, classification.kind, detail, attempt_id)
        if new_status == ScanJobStatus.cancelled:
            return JobRunResult(action="cancelled", scan_id=scan_id, error_kind=classification.kind)

        job_service.dispatch_scan(db, scan, countdown=countdown)
        logger.info(
            f"[{scan_id}] Attempt {scan.attempt_count} failed with {classification.kind.value}; "
            f"retrying in {countdown}s"
        )
        return JobRunResult(
            action="retry", scan_id=scan_id, error_kind=classification.kind, countdown=countdown
        )

    progress = job_service.fail_scan_job(db, scan_id, classification.kind, detail, attempt_id)
    publish_batch_progress(progress)
    return JobRunResult(action="failed", scan_id=scan_id, error_kind=classification.kind)
