"""
Stale batch reaper.

Batches that stay PENDING or RUNNING longer than the threshold (lost
messages, dead workers) are moved to STALE so they stop showing as in
progress. The status guard on the UPDATE means a batch that finished between
the scan for candidates and the update keeps its terminal status.
"""
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.platform.config import settings
from app.platform.db.session import get_sync_db
from app.features.batch.models.batch_scan import ACTIVE_BATCH_STATUSES, BatchScan, BatchStatus
from app.features.scan.services.cache.status_cache import status_cache

logger = logging.getLogger(__name__)


@dataclass
class StaleCandidate:
    id: str
    homepage_url: str
    status: BatchStatus
    created_at: datetime


@dataclass
class StaleCheckerStatus:
    running: bool
    in_progress: bool
    interval_seconds: float
    threshold_hours: float
    last_run_at: Optional[datetime]
    last_marked: int
    total_marked: int


def find_stale_candidates(db: Session, cutoff: datetime) -> List[StaleCandidate]:
    rows = db.execute(
        select(BatchScan.id, BatchScan.homepage_url, BatchScan.status, BatchScan.created_at)
        .where(BatchScan.status.in_(ACTIVE_BATCH_STATUSES), BatchScan.created_at < cutoff)
        .order_by(BatchScan.created_at)
    ).all()
    return [StaleCandidate(*row) for row in rows]


def apply_stale_transition(db: Session, batch_ids: List[str], now: datetime) -> List[str]:
    """
    Mark the given batches STALE unless they left PENDING/RUNNING meanwhile.
    Returns the ids that were actually marked.
    """
    if not batch_ids:
        return []
    db.execute(
        update(BatchScan)
        .where(BatchScan.id.in_(batch_ids), BatchScan.status.in_(ACTIVE_BATCH_STATUSES))
        .values(status=BatchStatus.stale, stale_at=now)
        .execution_options(synchronize_session=False)
    )
    marked = db.execute(
        select(BatchScan.id)
        .where(
            BatchScan.id.in_(batch_ids),
            BatchScan.status == BatchStatus.stale,
            BatchScan.stale_at == now,
        )
    ).scalars().all()
    db.commit()
    return list(marked)


def mark_stale_batches(
    db: Session,
    threshold_hours: Optional[float] = None,
    now: Optional[datetime] = None,
) -> int:
    threshold_hours = settings.STALE_THRESHOLD_HOURS if threshold_hours is None else threshold_hours
    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=threshold_hours)

    candidates = find_stale_candidates(db, cutoff)
    if not candidates:
        return 0

    marked_ids = set(apply_stale_transition(db, [c.id for c in candidates], now))
    skipped = len(candidates) - len(marked_ids)
    if skipped:
        logger.info(f"{skipped} stale candidates finished before they could be marked")
    if not marked_ids:
        return 0

    logger.warning(f"Marked {len(marked_ids)} stale batches (threshold {threshold_hours}h)")
    for candidate in candidates:
        if candidate.id not in marked_ids:
            continue
        age_hours = int((now - candidate.created_at.replace(tzinfo=None)).total_seconds() // 3600)
        logger.warning(
            f"[{candidate.id}] {candidate.homepage_url} was {candidate.status.value} for {age_hours}h"
        )
        status_cache.set_batch_status(candidate.id, BatchStatus.stale.value)

    return len(marked_ids)


class StaleBatchChecker:
    """
    Owns the reaper's schedule: one delayed first run, then a fixed interval on
    a daemon thread. ``run_once`` never overlaps itself.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = get_sync_db,
        threshold_hours: Optional[float] = None,
        interval_seconds: Optional[float] = None,
        initial_delay_seconds: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self.threshold_hours = settings.STALE_THRESHOLD_HOURS if threshold_hours is None else threshold_hours
        self.interval_seconds = (
            settings.STALE_CHECK_INTERVAL_MINUTES * 60 if interval_seconds is None else interval_seconds
        )
        self.initial_delay_seconds = (
            settings.STALE_CHECK_INITIAL_DELAY_SECONDS if initial_delay_seconds is None else initial_delay_seconds
        )

        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_run_at: Optional[datetime] = None
        self.last_marked = 0
        self.total_marked = 0

    def run_once(self) -> int:
        if not self._run_lock.acquire(blocking=False):
            logger.info("Stale batch check already running; skipping")
            return 0

        started = time.monotonic()
        try:
            db = self._session_factory()
            try:
                marked = mark_stale_batches(db, self.threshold_hours)
            finally:
                db.close()
        except Exception as e:
            logger.exception(f"Stale batch check failed: {e}")
            return 0
        finally:
            self._run_lock.release()

        self.last_run_at = datetime.utcnow()
        self.last_marked = marked
        self.total_marked += marked
        logger.info(
            f"Stale batch check finished in {int((time.monotonic() - started) * 1000)}ms; {marked} marked"
        )
        return marked

    def _loop(self) -> None:
        if self._stop_event.wait(self.initial_delay_seconds):
            return
        while not self._stop_event.is_set():
            self.run_once()
            if self._stop_event.wait(self.interval_seconds):
                return

    def start(self) -> bool:
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Stale batch checker already started")
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="stale-batch-checker", daemon=True)
        self._thread.start()
        logger.info(
            f"Stale batch checker started (interval {self.interval_seconds / 60:g}min, "
            f"threshold {self.threshold_hours}h)"
        )
        return True

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout)
            logger.info("Stale batch checker stopped")

    def status(self) -> StaleCheckerStatus:
        return StaleCheckerStatus(
            running=self._thread is not None and self._thread.is_alive(),
            in_progress=self._run_lock.locked(),
            interval_seconds=self.interval_seconds,
            threshold_hours=self.threshold_hours,
            last_run_at=self.last_run_at,
            last_marked=self.last_marked,
            total_marked=self.total_marked,
        )


stale_checker = StaleBatchChecker()


def run_stale_checker_job() -> int:
    return stale_checker.run_once()


def start_stale_checker_scheduler() -> bool:
    return stale_checker.start()


def stop_stale_checker_scheduler() -> None:
    stale_checker.stop()
