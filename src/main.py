"""
BloodLink Dispatch Service
Controller/Service/Repository Pattern
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from core.cache import CacheManager
from core.config import ApplicationConfig, get_config, is_production
from core.database import DatabaseManager
from core.errors import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    StoreError,
    ValidationError,
)
from core.logging_config import configure_logging
from domains.pipeline.services.pipeline_service import DispatchPipeline, build_pipeline
from domains.reminders.services.reminder_service import LAST_SWEEP_KEY
from domains.requests.repositories.request_repository import RequestRepository
from domains.users.repositories.user_repository import UserRepository
from providers import MessageSender, create_provider

# Import domain controllers
from domains.requests.controllers.request_controller import router as request_router
from domains.responses.controllers.sms_webhook_controller import router as sms_router
from domains.pipeline.controllers.events_controller import router as events_router
from domains.reminders.controllers.sweep_controller import router as sweep_router

configure_logging()
logger = logging.getLogger(__name__)


class ServiceContext:
    """Centralized service context for dependency injection"""

    def __init__(self, config: Optional[ApplicationConfig] = None):
        self.config = config or get_config()
        self.db_manager = DatabaseManager(self.config.database)
        self.cache: Optional[CacheManager] = None
        self.sender: Optional[MessageSender] = None
        self.pipeline: Optional[DispatchPipeline] = None
        self.sweep_task: Optional[asyncio.Task] = None
        self.start_time = datetime.now(timezone.utc)
        self._initialized = False

    async def initialize(self):
        """Initialize all connections and services"""
        if self._initialized:
            return

        logger.info("Initializing service context...")
        logger.debug(f"Configuration: {self.config.to_dict()}")

        await self.db_manager.initialize()

        # The sweep can run without Redis, guarded by last_reminder_sent_at only
        cache = CacheManager(self.config.redis)
        try:
            await cache.initialize()
            self.cache = cache
        except Exception as e:
            logger.warning(f"Redis unavailable, reminder sweep runs without lock: {e}")

        await self._init_sender()

        user_store = UserRepository(self.db_manager.get_collection("users"))
        request_store = RequestRepository(self.db_manager.get_collection("emergency_requests"))
        self.pipeline = build_pipeline(user_store, request_store, self.sender, cache=self.cache)

        if self.config.matching.sweep_enabled:
            self.sweep_task = asyncio.create_task(self._sweep_loop())

        self._initialized = True
        logger.info("Service context initialized successfully")

    async def _init_sender(self):
        """Initialize the configured SMS provider"""
        provider_name = self.config.messaging.provider_name
        logger.info(f"Initializing SMS provider: {provider_name}")
        self.sender = create_provider(provider_name)
        await self.sender.initialize()

    async def _sweep_loop(self):
        """Run the reminder sweep on a fixed interval"""
        interval = self.config.matching.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            outcome = await self.pipeline.on_scheduled_sweep()
            logger.info(f"Scheduled sweep finished: {outcome.status} {outcome.data}")

    async def health(self):
        database = await self.db_manager.health_check()
        cache = await self.cache.health_check() if self.cache else {"status": "disabled"}
        healthy = database.get("status") == "healthy"
        return {
            "status": "healthy" if healthy else "degraded",
            "version": self.config.app_version,
            "provider": self.sender.get_stats() if self.sender else {"status": "disabled"},
            "database": database,
            "redis": cache,
            "last_sweep": await self.cache.get(LAST_SWEEP_KEY) if self.cache else None,
            "uptime_seconds": (datetime.now(timezone.utc) - self.start_time).total_seconds(),
        }

    async def cleanup(self):
        """Cleanup all connections"""
        logger.info("Cleaning up service context...")

        if self.sweep_task:
            self.sweep_task.cancel()
            try:
                await self.sweep_task
            except asyncio.CancelledError:
                pass

        if self.sender:
            await self.sender.cleanup()

        if self.cache:
            await self.cache.cleanup()

        await self.db_manager.cleanup()

        logger.info("Cleanup complete")


# FastAPI application with lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage service lifecycle"""
    # Startup
    logger.info("Starting BloodLink Dispatch Service...")
    app.state.service = ServiceContext()
    await app.state.service.initialize()
    logger.info("BloodLink Dispatch Service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down BloodLink Dispatch Service...")
    await app.state.service.cleanup()
    logger.info("BloodLink Dispatch Service shutdown complete")


def register_error_handlers(app: FastAPI) -> None:
    """Map service errors onto HTTP status codes"""

    def handler(status_code: int):
        async def handle(request: Request, exc: Exception):
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})
        return handle

    app.add_exception_handler(ValidationError, handler(422))
    app.add_exception_handler(NotFoundError, handler(404))
    app.add_exception_handler(InvalidTransition, handler(409))
    app.add_exception_handler(ConflictError, handler(409))
    app.add_exception_handler(StoreError, handler(503))


def include_routes(app: FastAPI) -> None:
    app.include_router(request_router)
    app.include_router(sms_router)
    app.include_router(events_router)
    app.include_router(sweep_router)

    @app.get("/health")
    async def health_check(request: Request):
        """Basic health check endpoint"""
        return await request.app.state.service.health()

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics"""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Create FastAPI application
app = FastAPI(
    title="BloodLink Dispatch Service",
    version=get_config().app_version,
    description="Emergency blood request matching and donor notification",
    lifespan=lifespan,
    docs_url=None if is_production() else "/docs",
    redoc_url=None if is_production() else "/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)
include_routes(app)


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        loop="uvloop",
        log_level=config.logging.level.lower(),
        access_log=False,
        reload=False
    )
