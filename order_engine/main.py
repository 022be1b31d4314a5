"""
FastAPI Application

Entry point for the storefront order engine: webhook intake, order and
purchase-alert queries, health and metrics.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import structlog

from order_engine.config import get_settings
from order_engine.config.logging import configure_logging
from order_engine.database.connection import init_database, close_database
from order_engine.serving.cache import init_redis, close_redis
from order_engine.serving.api.middleware import (
    RequestLoggingMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from order_engine.serving.api.routes import (
    alerts_router,
    health_router,
    metrics_router,
    orders_router,
    webhooks_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()
    settings = get_settings()
    logger.info("Starting order engine", environment=settings.app_env, version=settings.version)

    # the webhook path cannot run without the database
    await init_database()
    await init_redis()

    yield

    logger.info("Shutting down...")
    await close_database()
    await close_redis()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    settings = get_settings()
    app = FastAPI(
        title="Storefront Order Engine",
        description="Order webhook intake, fulfillment routing, stock ledger and revenue posting",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.security.rate_limit_requests,
        window_seconds=settings.security.rate_limit_window_seconds,
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(webhooks_router, prefix="/api/v1/webhooks", tags=["Webhooks"])
    app.include_router(orders_router, prefix="/api/v1/orders", tags=["Orders"])
    app.include_router(alerts_router, prefix="/api/v1/alerts", tags=["Purchase Alerts"])
    app.include_router(metrics_router, tags=["Monitoring"])

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": "Storefront Order Engine",
            "version": settings.version,
            "environment": settings.app_env,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
