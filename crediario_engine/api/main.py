"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from crediario_engine.api.middleware import RequestIDMiddleware, MetricsMiddleware
from crediario_engine.api.v1 import cron, invoices, profiles, sales, settings as settings_routes, webhooks
from crediario_engine.infrastructure.observability.logging import setup_logging
from crediario_engine.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Crediário Engine",
        description="Payment reconciliation and installment engine for store credit sales",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])
    app.include_router(sales.router, prefix="/v1", tags=["sales"])
    app.include_router(invoices.router, prefix="/v1", tags=["invoices"])
    app.include_router(cron.router, prefix="/v1", tags=["cron"])
    app.include_router(profiles.router, prefix="/v1", tags=["profiles"])
    app.include_router(settings_routes.router, prefix="/v1", tags=["settings"])

    return app


app = create_app()
