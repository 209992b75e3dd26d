import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text

from clinic_notify.config import get_settings
from clinic_notify.services.reminder_scheduler import ReminderScheduler, tick_id_ctx

settings = get_settings()
logger = logging.getLogger(__name__)


class _TickIdFilter(logging.Filter):
    """Inject the current scheduler tick ID into every log record."""
    def filter(self, record: logging.LogRecord) -> bool:
        record.tick_id = tick_id_ctx.get("-")
        return True


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [tick %(tick_id)s] %(message)s"


def configure_logging(target: logging.Logger | None = None, stream=None) -> logging.Handler:
    """Install a stream handler that stamps every record with the tick ID.

    The filter sits on the handler, so records propagated from child loggers
    are stamped as well.
    """
    target = target or logging.getLogger()
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(_TickIdFilter())
    target.addHandler(handler)
    target.setLevel(settings.LOG_LEVEL)
    return handler


configure_logging()

scheduler: ReminderScheduler | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the reminder scheduler on startup, release resources on shutdown."""
    global scheduler

    if settings.REMINDER_SCHEDULER_ENABLED:
        scheduler = ReminderScheduler()
        scheduler.start()
    else:
        logger.info("reminder_scheduler: disabled by configuration")

    logger.info("Application startup complete")
    yield

    logger.info("Shutting down, stopping background tasks...")

    # 1. Stop the scheduler loop
    if scheduler is not None:
        await scheduler.stop()
        scheduler = None

    # 2. Close shared HTTP client
    try:
        from clinic_notify.utils.http_client import close_http_client
        await close_http_client()
        logger.info("Shared HTTP client closed")
    except Exception as exc:
        logger.warning("Error closing HTTP client: %s", exc)

    # 3. Dispose the database engine to close all pooled connections
    try:
        from clinic_notify.database import engine
        await engine.dispose()
        logger.info("Database connection pool disposed")
    except Exception as exc:
        logger.warning("Error disposing database engine: %s", exc)

    logger.info("Shutdown complete")


app = FastAPI(
    title="Clinic Notifications",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.APP_ENV == "production" else "/docs",
    redoc_url=None,
)


@app.get("/health")
async def health_check():
    """
    Report database connectivity and reminder scheduler state.

    Returns HTTP 503 when the database is unreachable.
    """
    from clinic_notify.database import AsyncSessionLocal

    db_ok = False
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
            db_ok = True
    except Exception as e:
        logger.warning("health_check: database connection failed: %s", e)

    scheduler_state = scheduler.health() if scheduler is not None else {"running": False}

    if not db_ok:
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "database": "unavailable"},
        )

    return {
        "status": "healthy",
        "database": "connected",
        "reminder_scheduler": scheduler_state,
    }
