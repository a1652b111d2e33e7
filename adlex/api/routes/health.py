"""Health check API endpoints."""

from fastapi import APIRouter, Request

from adlex.config import settings
from adlex.core.database import db_client
from adlex.schemas.checks import HealthCheckResponse, QueueInfo

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthCheckResponse,
    tags=["Health"],
    summary="Health check endpoint",
    description="Report database, queue and cache health",
    operation_id="get_service_health_status",
)
async def health_check(request: Request) -> HealthCheckResponse:
    db_health = await db_client.health_check()

    queue = None
    queue_manager = getattr(request.app.state, "queue_manager", None)
    if queue_manager is not None:
        state = queue_manager.get_status()
        queue = QueueInfo(
            queue_length=state.queue_length,
            processing_count=state.processing_count,
            max_concurrent=state.max_concurrent,
            available_slots=state.available_slots,
            can_start_new_check=state.available_slots > 0,
        )

    cache = getattr(request.app.state, "cache", None)

    return HealthCheckResponse(
        status="healthy" if db_health["status"] == "healthy" else "degraded",
        version=settings.app_version,
        service=settings.app_name,
        database=db_health,
        queue=queue,
        cache=cache.stats() if cache is not None else None,
    )
