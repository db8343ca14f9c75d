"""
FastAPI application entry point.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from outreach.calls.router import router as calls_router
from outreach.config import get_settings
from outreach.dialogue.state import get_call_state_store
from outreach.shared.database import db_manager
from outreach.shared.exceptions import AppError, InternalError, InvalidRequestError
from outreach.shared.logging import correlation_id_var, get_logger, setup_logging
from outreach.telephony.factory import get_telephony_provider
from outreach.telephony.webhooks.dedup import get_event_registry
from outreach.telephony.webhooks.router import router as call_events_router

logger = get_logger(__name__)

PROBLEM_JSON = "application/problem+json"
CORRELATION_HEADER = "X-Correlation-ID"


def run_maintenance_once() -> tuple[int, int]:
    """Sweep stale call state and prune the event registry.

    Returns:
        (call states removed, event IDs pruned)
    """
    settings = get_settings()
    swept = get_call_state_store().sweep(timedelta(seconds=settings.call_state_max_age_seconds))
    pruned = get_event_registry().prune()
    return swept, pruned


async def _maintenance_loop() -> None:
    """Periodically reclaim in-memory state for calls that never ended cleanly."""
    settings = get_settings()
    interval = settings.maintenance_interval_seconds

    logger.info("Maintenance loop starting", extra={"interval_seconds": interval})

    while True:
        try:
            await asyncio.sleep(interval)
            swept, pruned = run_maintenance_once()
            if swept or pruned:
                logger.info(
                    "Maintenance tick",
                    extra={"call_states_swept": swept, "events_pruned": pruned},
                )
        except asyncio.CancelledError:
            logger.info("Maintenance loop cancelled; stopping")
            raise
        except Exception:
            logger.exception("Maintenance tick failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()

    logger.info("Application starting", extra={"env": settings.app_env})

    if settings.database_create_tables:
        await db_manager.create_all()
        logger.info("Database tables ensured")

    maintenance_task: asyncio.Task[None] | None = None
    if settings.maintenance_enabled:
        maintenance_task = asyncio.create_task(_maintenance_loop())
        app.state.maintenance_task = maintenance_task

    yield

    logger.info("Shutting down application")

    if maintenance_task is not None:
        maintenance_task.cancel()
        try:
            await maintenance_task
        except asyncio.CancelledError:
            pass
        logger.info("Maintenance task stopped")

    if get_telephony_provider.cache_info().currsize:
        await get_telephony_provider().aclose()
    await db_manager.close()
    logger.info("Application shutdown complete")


def _problem_response(exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details(),
        media_type=PROBLEM_JSON,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Member Outreach Agent API",
        description="Automated outbound member outreach calls with a DTMF questionnaire",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "Request failed",
                extra={"path": request.url.path, "code": exc.code},
            )
        else:
            logger.info(
                "Request rejected",
                extra={"path": request.url.path, "code": exc.code, "detail": exc.message},
            )
        return _problem_response(exc)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error",
            extra={"path": request.url.path},
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        return _problem_response(InternalError())

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        problem = InvalidRequestError("Request validation failed")
        content = problem.problem_details()
        content["errors"] = errors
        return JSONResponse(
            status_code=problem.status_code,
            content=content,
            media_type=PROBLEM_JSON,
        )

    @app.middleware("http")
    async def _correlation_id(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(calls_router)
    app.include_router(call_events_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
