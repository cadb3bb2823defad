"""
Scan Schemas

Request and response models for the scan API endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.features.scan.models.scan_job import ConformanceLevel


class ScanCreateRequest(BaseModel):
    """Request to scan a single page."""
    url: str = Field(..., min_length=1, max_length=2048)
    conformance_level: ConformanceLevel = ConformanceLevel.AA
    email: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://example.com/pricing",
                "conformance_level": "AA"
            }
        }


class ScanCreateResponse(BaseModel):
    scan_id: str
    status: str


class IssueResponse(BaseModel):
    id: str
    rule_id: str
    impact: str
    description: str
    help_text: Optional[str] = None
    help_url: Optional[str] = None
    wcag_criteria: List[str] = []
    css_selector: Optional[str] = None
    html_snippet: Optional[str] = None
    nodes: List[Dict[str, Any]] = []


class ScanResultSummary(BaseModel):
    total_issues: int
    critical_count: int
    serious_count: int
    moderate_count: int
    minor_count: int
    passed_checks: int
    inapplicable_checks: int
    scan_duration_ms: int


class ScanStatusResponse(BaseModel):
    """Scan status, with results once the scan has completed."""
    scan_id: str
    url: str
    final_url: Optional[str] = None
    status: str
    conformance_level: str
    batch_id: Optional[str] = None
    attempt_count: int
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[ScanResultSummary] = None
    issues: List[IssueResponse] = []
