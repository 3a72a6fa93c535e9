"""IPO readiness engine service entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ipo_readiness import __version__
from ipo_readiness.api.router import router, template_router
from ipo_readiness.api.schemas import ErrorResponse
from ipo_readiness.container import ServiceContainer, build_sql_container
from ipo_readiness.database import init_database
from ipo_readiness.errors import AssessmentError
from ipo_readiness.observability import configure_logging
from ipo_readiness.settings import Settings

logger = structlog.get_logger(__name__)


async def assessment_error_handler(request: Request, exc: AssessmentError) -> JSONResponse:
    """Map engine errors to ``{error, code, context, requires_confirmation}``."""
    logger.info(
        "Request rejected",
        path=request.url.path,
        error_code=exc.error_code.value,
        status_code=exc.status_code,
    )
    body = ErrorResponse(
        error=exc.message,
        code=exc.error_code.value,
        context=exc.context,
        requires_confirmation=exc.requires_confirmation,
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Service settings; read from the environment when omitted.
        container: Pre-built services. When omitted the lifespan opens the
            configured database and builds SQL-backed services.

    Returns:
        The configured FastAPI application.
    """
    settings = settings or Settings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        engine = None
        if container is None:
            engine, session_factory = await init_database(
                settings.database_url, echo=settings.database_echo
            )
            app.state.container = build_sql_container(settings, session_factory)
        else:
            app.state.container = container
        logger.info("Service started", service_name=settings.service_name, version=__version__)
        yield
        await app.state.container.lifecycle.wait_for_notifications()
        if engine is not None:
            await engine.dispose()
        logger.info("Service stopped", service_name=settings.service_name)

    app = FastAPI(title=settings.service_name, version=__version__, lifespan=lifespan)
    if container is not None:
        app.state.container = container
    app.add_exception_handler(AssessmentError, assessment_error_handler)  # type: ignore[arg-type]
    app.include_router(router, prefix="/api/v1")
    app.include_router(template_router, prefix="/api/v1")
    return app
