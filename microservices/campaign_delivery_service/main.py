"""
Campaign Delivery Service Main Application

FastAPI application exposing the delivery worker and its queue.
Port: 8241
"""

import asyncio
import logging
import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.logging_setup import setup_logging

from .factory import DeliveryServiceFactory
from .models import (
    CampaignLogListResponse,
    CampaignQueueItem,
    EnqueueRequest,
    HealthResponse,
    LivenessResponse,
    QueueItemResponse,
    ReadinessResponse,
    WorkerResult,
)
from .protocols import (
    CampaignNotFoundError,
    QueueSetupError,
    RepositoryError,
    SegmentDefinitionError,
)
from .routes_registry import SERVICE_METADATA, get_route_metadata

settings = get_settings()
setup_logging(settings.logging)
logger = logging.getLogger(__name__)

# Service configuration
SERVICE_NAME = SERVICE_METADATA["service_name"]
SERVICE_PORT = settings.service_port
SERVICE_VERSION = SERVICE_METADATA["version"]

# Track startup time for uptime calculation
startup_time = time.time()

# Global factory instance
factory: Optional[DeliveryServiceFactory] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global factory

    logger.info(f"Starting {SERVICE_NAME} on port {SERVICE_PORT}")
    logger.info(f"Routes: {get_route_metadata()['routes']}")

    factory = DeliveryServiceFactory(settings)
    await factory.initialize()

    worker_task = None
    stop_event = asyncio.Event()
    if settings.worker.background_enabled:
        worker_task = asyncio.create_task(factory.worker.run_forever(stop_event=stop_event))
        logger.info("Background delivery worker enabled")

    yield

    # Cleanup
    logger.info(f"Shutting down {SERVICE_NAME}")
    if worker_task:
        stop_event.set()
        await worker_task
    await factory.close()


# Create FastAPI application
app = FastAPI(
    title="Campaign Delivery Service",
    description="Campaign delivery engine: audience resolution, personalization, channel dispatch and queue worker",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


# ====================
# Exception Handlers
# ====================


@app.exception_handler(CampaignNotFoundError)
async def campaign_not_found_handler(request: Request, exc: CampaignNotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(QueueSetupError)
async def queue_setup_handler(request: Request, exc: QueueSetupError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc)},
    )


@app.exception_handler(SegmentDefinitionError)
async def segment_definition_handler(request: Request, exc: SegmentDefinitionError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc), "field": exc.field},
    )


@app.exception_handler(RepositoryError)
async def repository_error_handler(request: Request, exc: RepositoryError):
    logger.error(f"Repository error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage unavailable"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler"""
    error_traceback = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(f"Unhandled exception: {exc}\n{error_traceback}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "type": type(exc).__name__},
    )


# ====================
# Dependencies
# ====================


def get_factory() -> DeliveryServiceFactory:
    """Get initialized factory"""
    if not factory:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return factory


# ====================
# Health Endpoints
# ====================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    dependencies = {}

    if factory:
        try:
            db_healthy = await factory.repository.health_check()
            dependencies["postgres"] = "healthy" if db_healthy else "unhealthy"
        except Exception:
            dependencies["postgres"] = "unhealthy"

        if factory.nats_client:
            dependencies["nats"] = "healthy" if factory.nats_client.is_connected else "unhealthy"
        else:
            dependencies["nats"] = "not_configured"

    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        port=SERVICE_PORT,
        version=SERVICE_VERSION,
        dependencies=dependencies,
    )


@app.get("/health/ready", response_model=ReadinessResponse, tags=["Health"])
async def readiness_check():
    """Readiness check endpoint"""
    checks = {}
    details = {}

    if factory:
        try:
            db_healthy = await factory.repository.health_check()
            checks["database"] = db_healthy
            details["database"] = "Connected" if db_healthy else "Connection failed"
        except Exception as e:
            checks["database"] = False
            details["database"] = str(e)

        if factory.nats_client:
            checks["nats"] = factory.nats_client.is_connected
            details["nats"] = "Connected" if factory.nats_client.is_connected else "Disconnected"
        else:
            checks["nats"] = True
            details["nats"] = "Not configured (optional)"
    else:
        checks["factory"] = False
        details["factory"] = "Factory not initialized"

    ready = all(checks.get(k, False) for k in ["database"])

    return ReadinessResponse(
        ready=ready,
        checks=checks,
        details=details,
    )


@app.get("/health/live", response_model=LivenessResponse, tags=["Health"])
async def liveness_check():
    """Liveness check endpoint"""
    return LivenessResponse(
        alive=True,
        uptime_seconds=time.time() - startup_time,
    )


# ====================
# Worker Endpoints
# ====================


@app.post("/api/v1/campaign-delivery/worker/run", response_model=WorkerResult, tags=["Worker"])
async def run_worker_step():
    """Run one worker step (cron hook)"""
    return await get_factory().worker.run_once()


# ====================
# Queue Endpoints
# ====================


@app.post(
    "/api/v1/campaign-delivery/queue",
    response_model=QueueItemResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Queue"],
)
async def enqueue_campaign(request: EnqueueRequest):
    """Queue a campaign send"""
    repository = get_factory().repository
    campaign = await repository.get_campaign(request.campaign_id)
    if campaign is None:
        raise CampaignNotFoundError(f"Campaign not found: {request.campaign_id}")

    item = CampaignQueueItem(
        campaign_id=campaign.campaign_id,
        store_id=campaign.store_id,
        scheduled_at=request.scheduled_at or datetime.now(timezone.utc),
    )
    item = await repository.enqueue(item)
    logger.info(f"Queued campaign {campaign.campaign_id} as {item.queue_item_id}")
    return QueueItemResponse(queue_item=item, message="Campaign queued")


@app.get(
    "/api/v1/campaign-delivery/queue/{item_id}",
    response_model=QueueItemResponse,
    tags=["Queue"],
)
async def get_queue_item(item_id: str):
    """Get queue item status"""
    item = await get_factory().repository.get_queue_item(item_id)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Queue item not found: {item_id}",
        )
    return QueueItemResponse(queue_item=item)


@app.get(
    "/api/v1/campaign-delivery/campaigns/{campaign_id}/logs",
    response_model=CampaignLogListResponse,
    tags=["Logs"],
)
async def list_campaign_logs(
    campaign_id: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """List per-recipient delivery logs of a campaign"""
    logs, total = await get_factory().repository.list_logs(campaign_id, limit=limit, offset=offset)
    return CampaignLogListResponse(
        logs=logs,
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(logs) < total,
    )


# ====================
# Main Entry Point
# ====================


def main():
    """Run the service"""
    import uvicorn

    uvicorn.run(
        "microservices.campaign_delivery_service.main:app",
        host="0.0.0.0",
        port=SERVICE_PORT,
        log_level=settings.logging.log_level.lower(),
    )


if __name__ == "__main__":
    main()
