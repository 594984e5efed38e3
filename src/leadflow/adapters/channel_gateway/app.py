"""FastAPI application factory for the channel gateway service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from leadflow.core.errors import CoreError
from leadflow.core.logging import configure_logging
from leadflow.core.middleware import RequestContextMiddleware, metrics_response
from leadflow.core.telemetry import init_tracing, instrument_fastapi_app

from .dependencies import close_notifier, get_settings
from .routers import webhooks

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create and configure the channel gateway FastAPI app."""

    settings = get_settings()
    configure_logging(service="channel_gateway")
    if not init_tracing("channel_gateway", settings.telemetry):
        logger.warning(
            "tracing disabled; operating without OTLP exporter",
            extra={"service_name": "channel_gateway"},
        )

    app = FastAPI(title="LeadFlow Channel Gateway", version=settings.gateway.app_version)
    instrument_fastapi_app(app)
    app.add_middleware(RequestContextMiddleware, service_name="channel_gateway")

    app.include_router(webhooks.router)

    @app.exception_handler(CoreError)
    async def core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("gateway.error", extra={"code": exc.code, "path": request.url.path})
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        return metrics_response()

    @app.on_event("shutdown")
    async def shutdown() -> None:
        close_notifier()

    return app
