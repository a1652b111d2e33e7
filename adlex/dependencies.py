"""Dependency providers for the FastAPI application.

Long-lived pipeline components are built once in the application lifespan
and stored on ``app.state``; request-scoped services are assembled here.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from adlex.config import settings
from adlex.core.cache import CacheService
from adlex.core.database import get_async_session
from adlex.pipeline.check_processor import CheckProcessor
from adlex.pipeline.queue_manager import CheckQueueManager
from adlex.services.check_service import CheckService


def get_cache(request: Request) -> CacheService:
    return request.app.state.cache


def get_queue_manager(request: Request) -> CheckQueueManager:
    return request.app.state.queue_manager


def get_check_processor(request: Request) -> CheckProcessor:
    return request.app.state.check_processor


async def get_check_service(
    db_session: Annotated[AsyncSession, Depends(get_async_session)],
    queue_manager: Annotated[CheckQueueManager, Depends(get_queue_manager)],
    processor: Annotated[CheckProcessor, Depends(get_check_processor)],
    cache: Annotated[CacheService, Depends(get_cache)],
) -> CheckService:
    """Get a check service bound to the request's database session."""
    return CheckService(
        session=db_session,
        queue_manager=queue_manager,
        processor=processor,
        cache=cache,
        pipeline_settings=settings.pipeline,
        cache_settings=settings.cache,
    )
