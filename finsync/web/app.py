"""FastAPI application for finsync sync and classification."""

from __future__ import annotations

from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.middleware.base import BaseHTTPMiddleware

from finsync.core.logging import configure_logging
from finsync.db.connection import close_db
from finsync.errors import ConfigurationError, ExternalAPIError, FinsyncError
from finsync.web.dependencies import close_services
from finsync.web.routes import health, invoices, sync

# Initialize structured logging
configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_services()
    await close_db()


app = FastAPI(
    title="finsync",
    description="Qonto sync, invoice classification and project assignment",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Request Logging Middleware
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        structlog.contextvars.clear_contextvars()

        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            logger.info(
                "request_completed",
                status_code=response.status_code,
            )
            return response

        except Exception as exc:
            logger.error("request_failed", error=str(exc))
            raise


app.add_middleware(RequestLoggingMiddleware)

# Prometheus Metrics
Instrumentator().instrument(app).expose(app)


# Exception Handlers
@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    """Missing credentials are an operator problem, not a client one."""
    logger.error("configuration_error", error=str(exc))
    return JSONResponse(status_code=503, content={"detail": str(exc), "type": "configuration"})


@app.exception_handler(ExternalAPIError)
async def external_api_error_handler(request: Request, exc: ExternalAPIError):
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "type": "external_api", "upstream_status": exc.status_code},
    )


@app.exception_handler(FinsyncError)
async def finsync_error_handler(request: Request, exc: FinsyncError):
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# Include Routers
app.include_router(health.router)
app.include_router(sync.router)
app.include_router(invoices.router)
