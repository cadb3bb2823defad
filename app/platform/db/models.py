"""
Import every model so that SQLAlchemy mappers are configured and
Base.metadata knows all tables (used by alembic and tests).
"""
from app.platform.db.base import Base
from app.features.batch.models.batch_scan import BatchScan
from app.features.scan.models.scan_job import ScanJob
from app.features.scan.models.scan_attempt import ScanAttempt
from app.features.scan.models.scan_result import ScanResult
from app.features.scan.models.scan_issue import Issue

__all__ = ["Base", "BatchScan", "ScanJob", "ScanAttempt", "ScanResult", "Issue"]
