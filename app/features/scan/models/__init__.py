"""
Scan models package.
"""
from app.features.batch.models.batch_scan import BatchScan  # noqa: F401
from app.features.scan.models.scan_job import ScanJob, ScanJobStatus, ConformanceLevel
from app.features.scan.models.scan_attempt import ScanAttempt, AttemptOutcome
from app.features.scan.models.scan_result import ScanResult
from app.features.scan.models.scan_issue import Issue, IssueImpact

__all__ = [
    "ScanJob",
    "ScanJobStatus",
    "ConformanceLevel",
    "ScanAttempt",
    "AttemptOutcome",
    "ScanResult",
    "Issue",
    "IssueImpact",
]
