"""
Main FastAPI application for the TFT Blog aggregator.
"""
from contextlib import asynccontextmanager

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tftblog.api.routes import router, set_database
from tftblog.config import get_settings
from tftblog.models.database import Database
from tftblog.services.persistence import SqlArticleStore
from tftblog.services.pipeline import PipelineService
from tftblog.services.sources import SourceRegistry

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

# Global instances
database: Database = None
scheduler: AsyncIOScheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown."""
    global database, scheduler

    settings = get_settings()

    # Initialize database
    logger.info("Initializing database", url=settings.database_url)
    database = Database(settings.database_url)
    await database.create_tables()
    set_database(database)

    seeded = await SourceRegistry(database).seed_defaults()
    if seeded:
        logger.info("Seeded default sources", count=seeded)

    # Periodic fetch
    if settings.scheduler_enabled:
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            run_scheduled_fetch,
            CronTrigger(hour=settings.fetch_cron_hour, minute=settings.fetch_cron_minute),
            id="scheduled_fetch",
            name="Scheduled Fetch",
            replace_existing=True,
        )
        scheduler.start()
        logger.info(
            "Scheduler started",
            fetch_time=f"{settings.fetch_cron_hour:02d}:{settings.fetch_cron_minute:02d} UTC",
        )

    yield

    # Shutdown
    logger.info("Shutting down")
    if scheduler:
        scheduler.shutdown()
        scheduler = None
    set_database(None)
    await database.dispose()


async def run_scheduled_fetch():
    """Run a full fetch over every platform."""
    pipeline = PipelineService(SourceRegistry(database), SqlArticleStore(database), get_settings())
    try:
        reports = await pipeline.run()
        logger.info("Scheduled fetch completed", reports=[str(r) for r in reports.values()])
    except Exception as e:
        logger.error("Scheduled fetch failed", error=str(e))


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Aggregated TFT videos, articles and guides.",
        version=settings.app_version,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routes
    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "tftblog",
            "version": settings.app_version,
        }

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
            "endpoints": {
                "feeds": "/api/v1/feeds",
                "preview": "/api/v1/feeds/preview",
                "platforms": "/api/v1/platforms",
                "authors": "/api/v1/authors",
                "stats": "/api/v1/aggregation/stats",
                "sources": "/api/v1/sources",
                "fetch": "/api/v1/admin/fetch",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "tftblog.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
