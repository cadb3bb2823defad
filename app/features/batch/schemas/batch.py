"""
Batch Schemas

Request and response models for the batch API endpoints.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.features.scan.models.scan_job import ConformanceLevel


class BatchCreateRequest(BaseModel):
    """Request to scan a group of pages of one site."""
    urls: List[str] = Field(..., min_length=1)
    conformance_level: ConformanceLevel = ConformanceLevel.AA
    homepage_url: Optional[str] = None
    email: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "urls": ["https://example.com/", "https://example.com/pricing"],
                "conformance_level": "AA",
                "homepage_url": "https://example.com"
            }
        }


class BatchCreateResponse(BaseModel):
    batch_id: str
    status: str
    total_urls: int


class BatchAggregates(BaseModel):
    total_issues: int = 0
    critical_count: int = 0
    serious_count: int = 0
    moderate_count: int = 0
    minor_count: int = 0
    passed_checks: int = 0


class BatchScanItem(BaseModel):
    scan_id: str
    url: str
    status: str
    error_kind: Optional[str] = None
    error_message: Optional[str] = None


class BatchStatusView(BaseModel):
    batch_id: str
    status: str
    homepage_url: str
    conformance_level: str
    total_urls: int
    completed_count: int
    failed_count: int
    pending_count: int
    aggregates: BatchAggregates
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    stale_at: Optional[datetime] = None
    scans: List[BatchScanItem] = []


class BatchCancelResponse(BaseModel):
    batch_id: str
    status: str
    cancelled_scans: int
    completed_scans: int
    cancelled_at: datetime
