from sqlalchemy import Column, String, Integer, ForeignKey
from sqlalchemy.orm import relationship

from app.platform.db.base import BaseModel


class ScanResult(BaseModel):
    """
    Summary of a completed scan. Written once, never updated.
    """
    __tablename__ = "scan_results"

    scan_job_id = Column(String, ForeignKey("scan_jobs.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    # Issue counts (denormalized)
    total_issues = Column(Integer, default=0, nullable=False)
    critical_count = Column(Integer, default=0, nullable=False)
    serious_count = Column(Integer, default=0, nullable=False)
    moderate_count = Column(Integer, default=0, nullable=False)
    minor_count = Column(Integer, default=0, nullable=False)

    passed_checks = Column(Integer, default=0, nullable=False)
    inapplicable_checks = Column(Integer, default=0, nullable=False)
    scan_duration_ms = Column(Integer, default=0, nullable=False)

    scan = relationship("ScanJob", back_populates="result", lazy="select")
    issues = relationship("Issue", back_populates="scan_result", lazy="select", cascade="all, delete-orphan")
