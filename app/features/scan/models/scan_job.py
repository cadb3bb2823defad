from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey, Index, Enum
from sqlalchemy.orm import relationship
import enum

from app.platform.db.base import BaseModel


class ScanJobStatus(enum.Enum):
    """Scan job status state machine"""
    pending = "pending"
    running = "running"
    retrying = "retrying"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


CLAIMABLE_STATUSES = (ScanJobStatus.pending, ScanJobStatus.retrying)


class ConformanceLevel(enum.Enum):
    """WCAG conformance levels. Each level includes every rule of the levels below it."""
    A = "A"
    AA = "AA"
    AAA = "AAA"


class ScanJob(BaseModel):
    """
    One page to audit.

    A job keeps its identity across retries; every delivery of the job is
    recorded as a ScanAttempt and attempt_count tracks how many were claimed.
    """
    __tablename__ = "scan_jobs"

    batch_id = Column(String, ForeignKey("batch_scans.id", ondelete="CASCADE"), nullable=True, index=True)
    batch = relationship("BatchScan", back_populates="scans", lazy="select")

    # Target
    url = Column(String(2048), nullable=False)
    final_url = Column(String(2048), nullable=True)
    page_title = Column(String(512), nullable=True)
    conformance_level = Column(Enum(ConformanceLevel), default=ConformanceLevel.AA, nullable=False)
    email = Column(String(255), nullable=True)

    # Job status (state machine)
    status = Column(Enum(ScanJobStatus), default=ScanJobStatus.pending, nullable=False, index=True)

    # Error tracking
    error_kind = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    attempt_count = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)

    celery_task_id = Column(String(128), nullable=True, index=True)

    # Timestamps (created_at and updated_at inherited from BaseModel)
    claimed_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    result = relationship("ScanResult", back_populates="scan", uselist=False, lazy="select")
    attempts = relationship(
        "ScanAttempt",
        back_populates="scan",
        order_by="ScanAttempt.attempt_number",
        lazy="select",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index('idx_scan_jobs_batch_status', 'batch_id', 'status'),
    )
