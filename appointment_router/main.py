"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from appointment_router.api.v1.router import api_router
from appointment_router.config import settings
from appointment_router.container import Container, build_container
from appointment_router.core.exceptions import AppException
from appointment_router.core.redis_client import check_redis_connection
from appointment_router.database import check_database_connection
from appointment_router.middleware.error_handler import (
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from appointment_router.middleware.logging import LoggingMiddleware, configure_logging

# Configure logging
configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Builds the container unless one was injected, and closes what it built.
    """
    logger.info("application_startup", environment=settings.environment)

    owned = getattr(app.state, "container", None) is None
    if owned:
        app.state.container = build_container(settings)
    container: Container = app.state.container

    if await check_database_connection(container.engine):
        logger.info("database_connected")
    else:
        logger.error("database_connection_failed")

    if await check_redis_connection(container.redis):
        logger.info("redis_connected")
    else:
        logger.error("redis_connection_failed")

    yield

    logger.info("application_shutdown")
    if owned:
        await container.close()
        app.state.container = None
        logger.info("connections_closed")


def create_app(container: Container | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        container: Pre-built dependencies; built in the lifespan when omitted

    Returns:
        Configured application
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Appointment scheduling API with per-country processing pipelines",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add logging middleware
    app.add_middleware(LoggingMiddleware)

    # Add exception handlers
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]

    # Include API router
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    # Setup Prometheus instrumentation
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/docs", "/redoc", "/openapi.json"],
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """
        Root endpoint.

        Returns:
            Welcome message
        """
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "appointment_router.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
