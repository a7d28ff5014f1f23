"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from appointment_router.config import settings
from appointment_router.core.redis_client import check_redis_connection
from appointment_router.database import check_database_connection
from appointment_router.dependencies import AppContainer

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(BaseModel):
    """Detailed health check response model."""

    status: str
    version: str
    environment: str
    database: str
    country_databases: dict[str, str]
    redis: str


def _label(healthy: bool) -> str:
    return "healthy" if healthy else "unhealthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns:
        Basic health status
    """
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check(container: AppContainer) -> DetailedHealthResponse:
    """
    Detailed health check with database, country databases and Redis status.

    Returns:
        Detailed health status including dependencies
    """
    db_healthy = await check_database_connection(container.engine)
    country_health = {
        country.value: await check_database_connection(engine)
        for country, engine in container.country_engines.items()
    }
    redis_healthy = await check_redis_connection(container.redis)

    all_healthy = db_healthy and redis_healthy and all(country_health.values())
    return DetailedHealthResponse(
        status="healthy" if all_healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database=_label(db_healthy),
        country_databases={country: _label(ok) for country, ok in country_health.items()},
        redis=_label(redis_healthy),
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """
    Simple ping endpoint.

    Returns:
        Pong response
    """
    return {"message": "pong"}
