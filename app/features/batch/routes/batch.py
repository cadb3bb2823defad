from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.platform.db.session import get_db
from app.platform.logger import get_logger
from app.platform.response import api_response
from app.platform.schemas import APIResponse
from app.features.batch.schemas.batch import (
    BatchCancelResponse,
    BatchCreateRequest,
    BatchCreateResponse,
    BatchStatusView,
)
from app.features.batch.services.batch_service import (
    BatchServiceError,
    cancel_batch,
    enqueue_batch,
    get_batch_status,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/batches", tags=["batches"])

ERROR_STATUS_CODES = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_STATE": status.HTTP_409_CONFLICT,
}


def _raise_for(error: BatchServiceError):
    status_code = ERROR_STATUS_CODES.get(error.code, status.HTTP_400_BAD_REQUEST)
    detail = error.message
    if error.details:
        detail = f"{error.message}: {'; '.join(error.details)}"
    raise HTTPException(status_code=status_code, detail=detail)


@router.post("", response_model=APIResponse[BatchCreateResponse], status_code=status.HTTP_202_ACCEPTED)
def create_batch(request: BatchCreateRequest, db: Session = Depends(get_db)):
    try:
        batch_id = enqueue_batch(
            db,
            request.urls,
            request.conformance_level,
            homepage_url=request.homepage_url,
            email=request.email,
        )
        view = get_batch_status(db, batch_id)
    except BatchServiceError as e:
        _raise_for(e)

    return api_response(
        data=BatchCreateResponse(batch_id=batch_id, status=view.status, total_urls=view.total_urls),
        message="Batch queued",
        status_code=status.HTTP_202_ACCEPTED,
    )


@router.get("/{batch_id}", response_model=APIResponse[BatchStatusView])
def get_batch(batch_id: str, db: Session = Depends(get_db)):
    try:
        view = get_batch_status(db, batch_id)
    except BatchServiceError as e:
        _raise_for(e)
    return api_response(data=view, message="Batch status retrieved")


@router.post("/{batch_id}/cancel", response_model=APIResponse[BatchCancelResponse])
def cancel(batch_id: str, db: Session = Depends(get_db)):
    try:
        result = cancel_batch(db, batch_id)
    except BatchServiceError as e:
        _raise_for(e)

    if not result.revoke.ok:
        logger.warning(f"[{batch_id}] Queued tasks not revoked: {result.revoke.error}")

    return api_response(
        data=BatchCancelResponse(
            batch_id=result.batch_id,
            status=result.status.value,
            cancelled_scans=result.cancelled_scans,
            completed_scans=result.completed_scans,
            cancelled_at=result.cancelled_at,
        ),
        message="Batch cancelled",
    )
