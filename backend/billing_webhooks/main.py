"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from billing_webhooks.core import otel
from billing_webhooks.core.config import settings
from billing_webhooks.core.logging import setup_logging
from billing_webhooks.db.session import engine, init_db
from billing_webhooks.db.redis import get_redis_client
from billing_webhooks.services.event_router import HANDLED_EVENT_TYPES
from billing_webhooks.services.price_registry import StripeRegistry

from billing_webhooks.api import webhooks

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    otel_initialized = otel.initialize_otel()

    if otel_initialized:
        if otel.setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
        otel.instrument_sqlalchemy(engine)
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    if settings.WEBHOOK_LOCK_ENABLED:
        logger.info("Testing Redis connection...")
        try:
            get_redis_client().ping()
            logger.info("Redis connection successful")
        except redis.exceptions.RedisError as e:
            # Locks are advisory, webhooks are still processed without them
            logger.warning(f"Redis connection failed, webhooks will be processed without locks: {e}")

    mapped = StripeRegistry.load_from_settings()
    if settings.STRIPE_SECRET_KEY:
        mapped += StripeRegistry.sync()
    logger.info(f"Stripe price registry ready ({mapped} prices)")
    logger.info(f"Handling Stripe event types: {', '.join(sorted(HANDLED_EVENT_TYPES))}")

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Billing Webhooks",
    description="Stripe webhook ingestion with an idempotent event ledger",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.ENVIRONMENT == "production" else "/docs",
    redoc_url=None
)

# Instrument FastAPI with OpenTelemetry
otel.instrument_fastapi(app)

# Include routers
app.include_router(webhooks.router)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    last_sync = StripeRegistry.last_sync()
    return {
        "status": "healthy",
        "price_registry": {
            "configured": StripeRegistry.is_configured(),
            "last_sync": last_sync.isoformat() if last_sync else None
        }
    }


if __name__ == "__main__":
    import uvicorn

    # Reload needs the import string rather than the app object
    if settings.ENVIRONMENT == "development":
        uvicorn.run("billing_webhooks.main:app", host="0.0.0.0", port=8000, reload=True)
    else:
        uvicorn.run(app, host="0.0.0.0", port=8000, timeout_graceful_shutdown=30)
