"""Health check API router."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dine_agent.api.dependencies import get_store
from dine_agent.infra.document_store import DocumentStore
from dine_agent.infra.error_handler import StorageUnavailableError
from dine_agent.infra.metrics import get_metrics_response

router = APIRouter()


@router.get("/health", tags=["Health"])
async def health_check():
    """Combined health check endpoint."""
    return {
        "status": "ok",
        "service": "dine-agent",
        "version": "1.0.0",
    }


@router.get("/health/live", tags=["Health"])
async def liveness_probe():
    """Liveness probe - indicates if the process is running."""
    return {"status": "alive"}


@router.get("/health/ready", tags=["Health"])
async def readiness_probe(store: DocumentStore = Depends(get_store)):
    """Readiness probe - checks that the document store answers."""
    try:
        await store.get("health", "ping")
    except StorageUnavailableError:
        return JSONResponse(status_code=503, content={"status": "not_ready"})
    return {"status": "ready"}


@router.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()
