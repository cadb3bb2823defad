import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api_routers.v1 import api_router
from app.platform.config import settings
from app.platform.exceptions import add_exception_handlers
from app.features.batch.services.stale_checker import stale_checker
from app.features.health.routes.health import router as health_router

# Configure logging to show INFO level messages
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Deployments without Celery beat run the stale batch reaper in the API process
    if settings.STALE_CHECKER_IN_API:
        stale_checker.start()
    try:
        yield
    finally:
        if settings.STALE_CHECKER_IN_API:
            stale_checker.stop()


app = FastAPI(
    title="AccessScan API",
    description="Accessibility scans of single pages and page batches",
    version="1.0.0",
    lifespan=lifespan,
)


# Root endpoint for basic info
@app.get("/", tags=["Info"])
def root():
    return {
        "app_name": settings.APP_NAME,
        "description": "Automated WCAG accessibility audits powered by axe-core.",
        "version": "1.0.0",
        "docs_url": "/docs",
        "api_base": "/api/v1",
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)

app.include_router(health_router)
app.include_router(api_router, prefix="/api/v1")
