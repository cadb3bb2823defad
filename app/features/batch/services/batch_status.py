"""
Batch progress bookkeeping for child scans reaching a terminal state.

Every change is a conditional UPDATE evaluated by the database, so concurrent
workers finishing sibling scans can neither lose an increment nor push the
counters past total_urls.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.platform.schemas import SideEffectResult
from app.features.batch.models.batch_scan import ACTIVE_BATCH_STATUSES, BatchScan, BatchStatus
from app.features.scan.models.scan_job import ScanJob, ScanJobStatus
from app.features.scan.models.scan_result import ScanResult
from app.features.scan.services.cache.status_cache import status_cache

logger = logging.getLogger(__name__)


@dataclass
class BatchProgress:
    batch_id: str
    status: BatchStatus
    completed_count: int
    failed_count: int
    total_urls: int
    counted: bool
    finalized: bool
    email: Optional[str] = None


def _increments(outcome: ScanJobStatus, result: Optional[ScanResult]) -> dict:
    if outcome == ScanJobStatus.completed:
        values = {"completed_count": BatchScan.completed_count + 1}
        if result is not None:
            values.update(
                total_issues=BatchScan.total_issues + result.total_issues,
                critical_count=BatchScan.critical_count + result.critical_count,
                serious_count=BatchScan.serious_count + result.serious_count,
                moderate_count=BatchScan.moderate_count + result.moderate_count,
                minor_count=BatchScan.minor_count + result.minor_count,
                passed_checks=BatchScan.passed_checks + result.passed_checks,
            )
        return values
    if outcome == ScanJobStatus.failed:
        return {"failed_count": BatchScan.failed_count + 1}
    return {}


def record_child_terminal(
    db: Session,
    scan: ScanJob,
    outcome: ScanJobStatus,
    result: Optional[ScanResult] = None,
    now: Optional[datetime] = None,
) -> Optional[BatchProgress]:
    """
    Count a child scan's terminal outcome against its batch.

    Must run inside the same transaction that moved the scan to ``outcome``;
    the caller commits. Returns None for scans outside a batch. Children of
    batches that are no longer active (cancelled, stale) change nothing.
    """
    if scan.batch_id is None:
        return None

    batch_id = scan.batch_id
    now = now or datetime.utcnow()
    values = _increments(outcome, result)

    counted = False
    if values:
        counted = db.execute(
            update(BatchScan)
            .where(
                BatchScan.id == batch_id,
                BatchScan.status.in_(ACTIVE_BATCH_STATUSES),
                BatchScan.completed_count + BatchScan.failed_count < BatchScan.total_urls,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount == 1

    finalized = False
    if counted:
        db.execute(
            update(BatchScan)
            .where(BatchScan.id == batch_id, BatchScan.status == BatchStatus.pending)
            .values(status=BatchStatus.running)
            .execution_options(synchronize_session=False)
        )

        all_done = BatchScan.completed_count + BatchScan.failed_count == BatchScan.total_urls
        finalized = db.execute(
            update(BatchScan)
            .where(
                BatchScan.id == batch_id,
                BatchScan.status.in_(ACTIVE_BATCH_STATUSES),
                all_done,
                BatchScan.completed_count >= 1,
            )
            .values(status=BatchStatus.completed, completed_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount == 1

        if not finalized:
            # Every child failed
            finalized = db.execute(
                update(BatchScan)
                .where(
                    BatchScan.id == batch_id,
                    BatchScan.status.in_(ACTIVE_BATCH_STATUSES),
                    all_done,
                    BatchScan.completed_count == 0,
                )
                .values(status=BatchStatus.failed, completed_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount == 1
    else:
        logger.info(f"[{batch_id}] Scan {scan.id} finished as {outcome.value}; batch not counting it")

    batch = db.execute(
        select(BatchScan)
        .where(BatchScan.id == batch_id)
        .execution_options(populate_existing=True)
    ).scalar_one()

    progress = BatchProgress(
        batch_id=batch_id,
        status=batch.status,
        completed_count=batch.completed_count,
        failed_count=batch.failed_count,
        total_urls=batch.total_urls,
        counted=counted,
        finalized=finalized,
        email=batch.email,
    )

    if finalized:
        logger.info(
            f"[{batch_id}] Batch {progress.status.value}: "
            f"{progress.completed_count} completed, {progress.failed_count} failed of {progress.total_urls}"
        )
    elif counted:
        logger.info(
            f"[{batch_id}] Progress {progress.completed_count + progress.failed_count}/{progress.total_urls}"
        )

    return progress


def publish_batch_progress(progress: Optional[BatchProgress]) -> List[SideEffectResult]:
    """
    Post-commit side effects of a batch update: refresh the status cache and,
    once the batch is finished, queue the completion notification.
    """
    if progress is None or not progress.counted:
        return []

    effects = [
        status_cache.set_batch_status(
            progress.batch_id,
            progress.status.value,
            completed_count=progress.completed_count,
            failed_count=progress.failed_count,
            total_urls=progress.total_urls,
        )
    ]

    if progress.finalized and progress.email:
        from app.features.batch.workers.tasks import notify_batch_complete

        try:
            notify_batch_complete.delay(progress.batch_id)
            effects.append(SideEffectResult.success())
        except Exception as e:
            logger.error(f"[{progress.batch_id}] Failed to queue completion notification: {e}")
            effects.append(SideEffectResult.failure(str(e)))

    return effects
