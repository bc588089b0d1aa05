import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi.middleware import SlowAPIMiddleware

from tourbook.api import bookings, reviews, tours, users
from tourbook.core.errors import register_exception_handlers
from tourbook.core.rate_limit import limiter
from tourbook.core.settings import get_settings
from tourbook.db.session import db_manager
from tourbook.middleware.logging import RequestLoggingMiddleware

VERSION = "1.0.0"
REDACTED = "REDACTED"

_SENSITIVE_KEY = re.compile(r"password|token|jwt|secret", re.IGNORECASE)
_SENSITIVE_TEXT = (
    (re.compile(r"(Bearer\s+)[A-Za-z0-9\-_.]+"), r"\1" + REDACTED),
    (re.compile(r"(jwt=)[^;\s&]+"), r"\1" + REDACTED),
    (re.compile(r"(resetPassword/)[0-9a-fA-F]+"), r"\1" + REDACTED),
)


# Redaction processor to scrub credentials from the event dict before rendering
def redact_sensitive(logger, method_name, event_dict):
    def scrub(v):
        if isinstance(v, str):
            for pattern, replacement in _SENSITIVE_TEXT:
                v = pattern.sub(replacement, v)
            return v
        if isinstance(v, list):
            return [scrub(x) for x in v]
        if isinstance(v, dict):
            return {k: REDACTED if _SENSITIVE_KEY.search(str(k)) else scrub(vv) for k, vv in v.items()}
        return v

    for k, v in list(event_dict.items()):
        if k != "event" and _SENSITIVE_KEY.search(k):
            event_dict[k] = REDACTED
        else:
            event_dict[k] = scrub(v)
    return event_dict


def configure_logging() -> None:
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_sensitive,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # structlog handles formatting; stdlib logging writes to console and file
    handlers = [logging.StreamHandler()]
    if settings.LOG_FILE:
        handlers.append(logging.FileHandler(settings.LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(message)s',
        handlers=handlers,
    )


configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("application_starting", environment=get_settings().ENVIRONMENT)
    try:
        await db_manager.initialize()
        if get_settings().DB_AUTO_CREATE:
            await db_manager.init_db()
    except Exception:
        logger.exception("database_initialization_failed")
        raise

    yield

    # Shutdown
    logger.info("application_stopping")
    await db_manager.close()


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Tour Booking API",
        description="Tours, reviews, users and bookings",
        version=VERSION,
        lifespan=lifespan
    )

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    @app.get("/")
    async def root():
        return {"status": "API active", "version": VERSION}

    @app.get("/health")
    async def health_check_detailed():
        """Detailed health check endpoint"""
        database = await db_manager.health_check()
        healthy = database.get("status") == "healthy"
        return {
            "status": "healthy" if healthy else "degraded",
            "version": VERSION,
            "components": {
                "database": database.get("status"),
                "api": "healthy"
            },
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    prefix = "/api/v1"

    app.include_router(tours.router, prefix=prefix)
    app.include_router(reviews.tour_reviews_router, prefix=prefix)
    app.include_router(reviews.router, prefix=prefix)
    app.include_router(users.router, prefix=prefix)
    app.include_router(bookings.router, prefix=prefix)

    return app


app = create_app()
