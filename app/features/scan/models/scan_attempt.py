from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey, Enum
from sqlalchemy.orm import relationship
import enum

from app.platform.db.base import BaseModel


class AttemptOutcome(enum.Enum):
    running = "running"
    succeeded = "succeeded"
    retrying = "retrying"
    failed = "failed"
    released = "released"  # infrastructure error, claim handed back to the queue


class ScanAttempt(BaseModel):
    """
    A single delivery of a ScanJob to a worker.

    Kept for operator inspection; rows of terminally failed scans are only
    removed by an explicit clear.
    """
    __tablename__ = "scan_attempts"

    scan_job_id = Column(String, ForeignKey("scan_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False)
    celery_task_id = Column(String(128), nullable=True)

    outcome = Column(Enum(AttemptOutcome), default=AttemptOutcome.running, nullable=False)
    error_kind = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True)

    scan = relationship("ScanJob", back_populates="attempts", lazy="select")
