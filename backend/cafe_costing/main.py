"""FastAPI application for the café costing and tax invoice service."""

import json
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from cafe_costing.api.routes import api_router
from cafe_costing.core.config import settings
from cafe_costing.core.rate_limit import limiter
from cafe_costing.db.base import utcnow
from cafe_costing.db.session import SessionLocal, init_db
from cafe_costing.services.scheduler_service import register_default_tasks, scheduler

import cafe_costing.models  # noqa: F401  (registers tables on Base.metadata)

VERSION = "1.0.0"


class JSONFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        event = getattr(record, "event", None)
        if event:
            payload["event"] = event
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting café costing service")

    init_db()

    if settings.snapshot_scheduler_enabled:
        if settings.snapshot_branch_list:
            register_default_tasks(scheduler)
            scheduler.start()
        else:
            logger.warning("Snapshot scheduler enabled but SNAPSHOT_BRANCH_IDS is empty")

    yield

    scheduler.stop()
    logger.info("Shutting down café costing service")


app = FastAPI(
    title="Café Costing & Tax Invoices",
    description="Recipe COGS, profit reports and ZATCA tax invoice chain",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    """Basic liveness check endpoint."""
    return {"status": "healthy", "version": VERSION}


@app.get("/health/ready")
def readiness_check():
    """Readiness probe with a database round trip."""
    db = None
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        database = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database = "unhealthy"
    finally:
        if db:
            db.close()

    return {
        "status": "ready" if database == "healthy" else "degraded",
        "version": VERSION,
        "timestamp": utcnow().isoformat(),
        "checks": {"database": database, "scheduler": scheduler.get_status()},
    }
