"""
FastAPI Production Application

Main entry point for the E-Commerce Back-Office API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
import structlog

from src.analytics.aggregator import MetricsAggregator
from src.analytics.counters import CounterService
from src.bulk.audit import SqlAuditSink
from src.bulk.executor import BulkExecutor
from src.config import get_settings
from src.config.logging import configure_logging
from src.database.connection import close_database, get_session_factory, init_database
from src.gateway.fallback import RecordStoreGateway
from src.gateway.sheets_source import SheetsMirrorSource
from src.gateway.sql_source import SqlRecordSource
from src.serving.api.main import create_api_app
from src.serving.cache import MetricsCache, close_redis, init_redis

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service graph onto app.state, tear it down on shutdown."""
    configure_logging()
    logger.info("Starting E-Commerce Back-Office API", environment=settings.app_env)

    await init_database(create_tables=not settings.is_production)
    session_factory = get_session_factory()

    secondary = None
    if settings.mirror.enabled:
        secondary = SheetsMirrorSource(settings.mirror.path, settings.mirror.file_format)
        logger.info("Spreadsheet mirror enabled", path=settings.mirror.path)

    gateway = RecordStoreGateway.from_settings(settings, SqlRecordSource(session_factory), secondary)

    redis = await init_redis() if settings.analytics.cache_enabled else None
    cache = MetricsCache(redis, ttl=settings.analytics.cache_ttl_seconds)

    app.state.gateway = gateway
    app.state.aggregator = MetricsAggregator.from_settings(settings, gateway, cache)
    app.state.executor = BulkExecutor.from_settings(
        settings,
        gateway,
        SqlAuditSink(session_factory),
        counters=CounterService(gateway.writer, mode=settings.analytics.counter_mode),
        cache=cache,
    )

    yield

    logger.info("Shutting down...")
    await close_database()
    await close_redis()


app = create_api_app(settings, lifespan=lifespan)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
