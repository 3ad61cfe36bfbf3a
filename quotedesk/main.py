"""QuoteDesk API — FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map QuoteDeskError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Database, fallback queue and retry scheduler built in the lifespan and
      kept on app.state; the scheduler is resumed on startup and stopped
      before the database is disposed

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - resume() at startup re-arms retries left by a previous process
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quotedesk.api.error_handlers import register_error_handlers
from quotedesk.api.routes import health, quotes
from quotedesk.config import get_settings
from quotedesk.infrastructure.database import DatabaseSessionManager
from quotedesk.infrastructure.observability import setup_logging
from quotedesk.services.wiring import build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    db_manager = DatabaseSessionManager(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    services = build_services(settings, db_manager)
    app.state.db_manager = db_manager
    app.state.services = services

    if services.scheduler.resume():
        logger.info("Pending quotes found, retry scheduled")
    logger.info("QuoteDesk API started")
    yield
    logger.info("QuoteDesk API shutting down")
    await services.aclose()
    await db_manager.dispose()


app = FastAPI(
    title="QuoteDesk API", version="1.0.0", lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(health.router)
app.include_router(quotes.router)
