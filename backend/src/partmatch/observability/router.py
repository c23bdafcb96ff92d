"""Observability API endpoints.

Provides Prometheus metrics and a health check for monitoring.
"""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from .health import (
    HealthStatus,
    check_database_health,
    check_embedding_provider_health,
    get_overall_health,
)

router = APIRouter(tags=["Observability"])


@router.get(
    "/metrics",
    summary="Prometheus metrics endpoint",
    include_in_schema=False,
)
def metrics():
    """Expose Prometheus metrics in text exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get(
    "/health",
    summary="Health check endpoint",
    description="Returns health status of the database and embedding provider",
)
def health_check(db: Session = Depends(get_db)):
    """Check health of system components.

    Returns 200 OK unless a required component is unhealthy, then 503. A
    missing embedding provider only degrades the service.

    Args:
        db: Database session

    Returns:
        JSONResponse: Overall status plus per-component details
    """
    components = {
        "database": check_database_health(db),
        "embedding_provider": check_embedding_provider_health(
            bool(get_settings().OPENAI_API_KEY)
        ),
    }

    overall_status = get_overall_health(components)

    response_data = {
        "status": overall_status.value,
        "components": {
            name: {
                "status": comp.status.value,
                "message": comp.message,
                "latency_ms": comp.latency_ms,
            }
            for name, comp in components.items()
        },
    }

    status_code = 200 if overall_status != HealthStatus.UNHEALTHY else 503
    return JSONResponse(content=response_data, status_code=status_code)
