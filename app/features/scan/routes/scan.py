from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.platform.db.session import get_db
from app.platform.logger import get_logger
from app.platform.response import api_response
from app.platform.schemas import APIResponse
from app.features.scan.models.scan_issue import Issue
from app.features.scan.models.scan_job import ScanJobStatus
from app.features.scan.schemas.scan import (
    IssueResponse,
    ScanCreateRequest,
    ScanCreateResponse,
    ScanResultSummary,
    ScanStatusResponse,
)
from app.features.scan.services.scan.job_service import ScanServiceError, enqueue_scan, get_scan

logger = get_logger(__name__)

router = APIRouter(prefix="/scans", tags=["scans"])


@router.post("", response_model=APIResponse[ScanCreateResponse], status_code=status.HTTP_202_ACCEPTED)
def create_scan(request: ScanCreateRequest, db: Session = Depends(get_db)):
    try:
        scan_id = enqueue_scan(db, request.url, request.conformance_level, email=request.email)
    except ScanServiceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    scan = get_scan(db, scan_id)
    return api_response(
        data=ScanCreateResponse(scan_id=scan_id, status=scan.status.value),
        message="Scan queued",
        status_code=status.HTTP_202_ACCEPTED,
    )


@router.get("/{scan_id}", response_model=APIResponse[ScanStatusResponse])
def get_scan_status(scan_id: str, db: Session = Depends(get_db)):
    scan = get_scan(db, scan_id)
    if scan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scan not found")

    response = ScanStatusResponse(
        scan_id=scan.id,
        url=scan.url,
        final_url=scan.final_url,
        status=scan.status.value,
        conformance_level=scan.conformance_level.value,
        batch_id=scan.batch_id,
        attempt_count=scan.attempt_count,
        error_kind=scan.error_kind,
        error_message=scan.error_message,
        created_at=scan.created_at,
        completed_at=scan.completed_at,
    )

    if scan.status == ScanJobStatus.completed and scan.result is not None:
        result = scan.result
        response.result = ScanResultSummary(
            total_issues=result.total_issues,
            critical_count=result.critical_count,
            serious_count=result.serious_count,
            moderate_count=result.moderate_count,
            minor_count=result.minor_count,
            passed_checks=result.passed_checks,
            inapplicable_checks=result.inapplicable_checks,
            scan_duration_ms=result.scan_duration_ms,
        )
        issues = db.execute(
            select(Issue).where(Issue.scan_result_id == result.id)
        ).scalars().all()
        issues = sorted(issues, key=lambda i: (-i.impact.priority, i.rule_id))
        response.issues = [
            IssueResponse(
                id=issue.id,
                rule_id=issue.rule_id,
                impact=issue.impact.value,
                description=issue.description,
                help_text=issue.help_text,
                help_url=issue.help_url,
                wcag_criteria=issue.wcag_criteria or [],
                css_selector=issue.css_selector,
                html_snippet=issue.html_snippet,
                nodes=issue.nodes or [],
            )
            for issue in issues
        ]

    return api_response(data=response, message="Scan status retrieved")
