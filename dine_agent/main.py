"""FastAPI application for the restaurant operations assistant."""

import signal
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dine_agent.infra.database import dispose_engine
from dine_agent.infra.error_handler import StorageUnavailableError, UpstreamUnavailableError
from dine_agent.infra.logging import app_logger
from dine_agent.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, setup_cors
from dine_agent.infra.timeout import REQUEST_TIMEOUT, TimeoutMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    app_logger.info("Application starting up")

    yield

    app_logger.info("Application shutting down")
    dispose_engine()


app = FastAPI(
    title="Dine Agent API",
    description="""
    Dine Agent answers restaurant staff questions in plain language and carries
    out day-to-day operations: tables, orders, menu, sales and customers.

    ## Features

    - **Agent Queries**: Ask questions or give instructions; the assistant picks the
      matching action, checks permission, executes it and replies in one short answer
    - **Knowledge**: Re-index a restaurant's menu, tables and policies for retrieval
    - **Usage**: Daily token usage and ceilings per model

    ## Identity

    Requests carry `X-Tenant-ID` and `X-User-ID` headers set by the gateway
    after authentication. Query bodies may carry the ids instead.
    """,
    version="1.0.0",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Agent",
            "description": "Ask the assistant and inspect token usage",
        },
        {
            "name": "Knowledge",
            "description": "Manage the retrieval knowledge of a restaurant (owners and managers)",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TimeoutMiddleware, timeout=REQUEST_TIMEOUT)
setup_cors(app)

from dine_agent.api.routers import agent, health  # noqa: E402

app.include_router(agent.router)
app.include_router(health.router)

MAX_REQUEST_SIZE = 1024 * 1024  # 1MB


@app.middleware("http")
async def request_size_limit_middleware(request: Request, call_next):
    """Enforce request size limits."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_SIZE:
        return JSONResponse(
            status_code=413,
            content={"detail": f"Request too large. Maximum size: {MAX_REQUEST_SIZE} bytes"},
        )
    return await call_next(request)


# Error handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors(), "body": exc.body},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(StorageUnavailableError)
@app.exception_handler(UpstreamUnavailableError)
async def unavailable_exception_handler(request: Request, exc: Exception):
    """Storage or model provider failures outside the query pipeline (indexing, usage)."""
    app_logger.error(f"Dependency unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "A required service is temporarily unavailable. Please try again."},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error. Error ID: {error_id}"},
    )


if __name__ == "__main__":
    import uvicorn

    def signal_handler(sig, frame):
        app_logger.info("Shutting down gracefully...")

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
