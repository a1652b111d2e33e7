"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adlex.api.main import api_router
from adlex.api.routes import health
from adlex.config import Settings, settings
from adlex.core.cache import CacheService
from adlex.core.database import async_session_maker, close_database, init_database
from adlex.core.unified_llm import create_llm_client_from_settings
from adlex.pipeline.check_processor import CheckProcessor
from adlex.pipeline.queue_manager import CheckQueueManager
from adlex.services.check_service import CheckService
from adlex.services.detection.violation_detector import ViolationDetector
from adlex.services.embedding.embedding_service import create_embedding_service_from_settings
from adlex.services.ocr.vision_ocr_service import VisionOCRService
from adlex.services.retrieval.similarity_service import SimilarityService
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__, level=settings.log_level)

SHUTDOWN_MESSAGE = "Processing was interrupted by a service shutdown. Please resubmit."


def build_pipeline(app: FastAPI, app_settings: Settings) -> None:
    """Create the long-lived pipeline components and attach them to ``app.state``."""
    cache = CacheService(
        default_ttl=app_settings.cache.default_ttl,
        sweep_interval=app_settings.cache.sweep_interval,
    )
    chat_client = create_llm_client_from_settings(app_settings.llm)

    processor = CheckProcessor(
        session_factory=async_session_maker,
        similarity_service=SimilarityService(
            embedding_service=create_embedding_service_from_settings(app_settings.llm),
            cache=cache,
            session_factory=async_session_maker,
            pipeline_settings=app_settings.pipeline,
            cache_settings=app_settings.cache,
        ),
        violation_detector=ViolationDetector(
            client=chat_client,
            model=app_settings.llm.chat_model,
            max_retries=app_settings.pipeline.detection_max_retries,
            base_delay=app_settings.pipeline.detection_retry_base_delay,
        ),
        ocr_service=VisionOCRService(chat_client, model=app_settings.llm.vision_model),
        pipeline_settings=app_settings.pipeline,
    )
    queue_manager = CheckQueueManager(
        processor.process_check,
        max_concurrent=app_settings.pipeline.max_concurrent_checks,
        on_shutdown_cancel=lambda check_id: processor.cancel(check_id, SHUTDOWN_MESSAGE),
    )

    app.state.cache = cache
    app.state.check_processor = processor
    app.state.queue_manager = queue_manager


async def recover_checks(app: FastAPI) -> None:
    async with async_session_maker() as session:
        service = CheckService(
            session=session,
            queue_manager=app.state.queue_manager,
            processor=app.state.check_processor,
            cache=app.state.cache,
            pipeline_settings=settings.pipeline,
            cache_settings=settings.cache,
        )
        await service.recover_checks()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Startup builds the pipeline, connects the database and resubmits checks
    left pending by a previous run. Shutdown drains in-flight checks, stops
    the cache sweeper and closes the database.
    """
    LOGGER.info(
        "Starting application",
        extra={
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        },
    )

    build_pipeline(app, settings)
    app.state.cache.start()

    try:
        await init_database(auto_migrate=settings.auto_create_tables)
        await recover_checks(app)
    except Exception as e:
        # Keep serving health checks so the outage is visible
        LOGGER.error("Failed to initialize database", exc_info=True, extra={"error": str(e)})

    yield

    LOGGER.info("Shutting down application")
    await app.state.queue_manager.shutdown(grace_seconds=settings.pipeline.shutdown_grace_seconds)
    await app.state.cache.stop()
    try:
        await close_database()
    except Exception as e:
        LOGGER.error("Error closing database", exc_info=True, extra={"error": str(e)})


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Compliance checks for Japanese pharmaceutical advertising copy",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(api_router, prefix=settings.api_v1_prefix)

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "adlex.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
