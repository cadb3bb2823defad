"""
Batch models package.
"""
from app.features.batch.models.batch_scan import BatchScan, BatchStatus, ACTIVE_BATCH_STATUSES

__all__ = ["BatchScan", "BatchStatus", "ACTIVE_BATCH_STATUSES"]
