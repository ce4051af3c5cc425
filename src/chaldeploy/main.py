"""chaldeploy FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Callable

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from chaldeploy import __version__
from chaldeploy.api.dependencies import close_runtime, init_runtime
from chaldeploy.api.errors import AgentError, InternalError
from chaldeploy.api.v1 import health_router, instances_router
from chaldeploy.config import get_config
from chaldeploy.logging import setup_logging
from chaldeploy.logging_schema import LogEvent

# Import metrics to ensure they are registered
import chaldeploy.metrics  # noqa: F401

_config = get_config()
setup_logging(_config.logging)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(
        "Starting chaldeploy",
        extra={
            "event": LogEvent.APP_STARTED,
            "version": __version__,
            "challenge": _config.challenge.name,
        },
    )

    # Fails startup if no cluster credentials resolve
    init_runtime()

    yield
    logger.info("Shutting down chaldeploy", extra={"event": LogEvent.APP_STOPPED})
    close_runtime()


app = FastAPI(
    title="chaldeploy",
    description="Per-team challenge instance deployer",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_config.server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AgentError)
async def agent_error_handler(request: Request, exc: AgentError) -> JSONResponse:
    """Handle AgentError exceptions."""
    logger.warning(
        "Request failed",
        extra={
            "event": LogEvent.AGENT_ERROR,
            "error_code": exc.code.value,
            "error_message": exc.message,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions with logging."""
    logger.exception(
        "Unhandled exception",
        extra={
            "event": LogEvent.UNHANDLED_EXCEPTION,
            "path": request.url.path,
            "method": request.method,
        },
    )
    error = InternalError()
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_response().model_dump(),
    )


@app.middleware("http")
async def api_key_middleware(
    request: Request, call_next: Callable[[Request], Response]
) -> Response:
    """Validate API key for non-health endpoints."""
    config = get_config()

    if request.url.path in ("/health", "/metrics"):
        return await call_next(request)

    if config.server.api_key:
        auth_header = request.headers.get("Authorization", "")
        if auth_header != f"Bearer {config.server.api_key}":
            return Response(
                content='{"detail": "Invalid API key"}',
                status_code=401,
                media_type="application/json",
            )

    return await call_next(request)


app.include_router(health_router)


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


app.include_router(instances_router, prefix="/api/v1")


def main() -> None:
    """Run the deployer server."""
    config = get_config()
    uvicorn.run(
        "chaldeploy.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
