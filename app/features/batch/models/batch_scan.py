from sqlalchemy import Column, String, Integer, DateTime, Index, CheckConstraint, Enum
from sqlalchemy.orm import relationship
import enum

from app.platform.db.base import BaseModel


class BatchStatus(enum.Enum):
    """Batch status. Everything except pending/running is terminal."""
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"
    stale = "stale"


ACTIVE_BATCH_STATUSES = (BatchStatus.pending, BatchStatus.running)


class BatchScan(BaseModel):
    """
    A group of scans submitted together under one homepage.

    Counters and aggregates are only ever changed with in-database increments
    (``col = col + n``) so that concurrent child completions cannot lose updates.
    """
    __tablename__ = "batch_scans"

    homepage_url = Column(String(2048), nullable=False)
    conformance_level = Column(String(8), nullable=False, default="AA")
    email = Column(String(255), nullable=True)

    status = Column(Enum(BatchStatus), default=BatchStatus.pending, nullable=False, index=True)

    total_urls = Column(Integer, nullable=False)
    completed_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)

    # Aggregates (sum over completed child ScanResults)
    total_issues = Column(Integer, default=0, nullable=False)
    critical_count = Column(Integer, default=0, nullable=False)
    serious_count = Column(Integer, default=0, nullable=False)
    moderate_count = Column(Integer, default=0, nullable=False)
    minor_count = Column(Integer, default=0, nullable=False)
    passed_checks = Column(Integer, default=0, nullable=False)

    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    stale_at = Column(DateTime, nullable=True)

    scans = relationship("ScanJob", back_populates="batch", lazy="select")

    __table_args__ = (
        CheckConstraint(
            'completed_count + failed_count <= total_urls',
            name='check_batch_progress_bounded'
        ),
        Index('idx_batch_scans_status_created', 'status', 'created_at'),
    )
