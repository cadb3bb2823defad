from fastapi import APIRouter, status

from app.platform.config import settings
from app.platform.response import api_response
from app.features.batch.services.stale_checker import stale_checker

router = APIRouter()


@router.get("/health", tags=["health"])
def health_check():
    checker = stale_checker.status()
    return api_response(
        data={
            "status": "ok",
            "service": settings.APP_NAME,
            "stale_checker": {
                "running": checker.running,
                "last_run_at": checker.last_run_at,
                "total_marked": checker.total_marked,
            },
        },
        message="Service is healthy",
        status_code=status.HTTP_200_OK,
    )
