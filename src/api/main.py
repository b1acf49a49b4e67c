from __future__ import annotations

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from src.api.routes import register_routes
from src.core.config import get_settings
from src.core.logging import setup_logging
from src.domain.errors import StepNotCompletedError
from src.infrastructure.db.session import dispose_engine
from starlette.responses import Response
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars

logger = structlog.get_logger()


async def _step_invariant_handler(request: Request, exc: StepNotCompletedError) -> JSONResponse:
    """A step result was read before completion; always a server bug."""
    request_id = get_contextvars().get("request_id")
    await logger.aerror("step_invariant_violated", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "detail": {"code": "internal_error", "message": "Internal server error"},
            "request_id": request_id,
        },
    )


def create_app() -> FastAPI:
    """Application factory for the assessment API."""
    setup_logging()
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "service_startup",
            service=settings.app_name,
            environment=settings.environment,
            version=settings.version,
            questions_per_step=settings.questions_per_step,
            step_count=settings.step_count,
        )
        yield
        await dispose_engine()
        logger.info("service_shutdown", service=settings.app_name)

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

    cors_origins = list(settings.cors_origins)
    if settings.environment in ("local", "development"):
        cors_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        # Browsers reject credentials with a wildcard origin
        allow_credentials="*" not in cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StepNotCompletedError, _step_invariant_handler)

    register_routes(app)

    @app.middleware("http")
    async def request_context_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid4()))
        bind_contextvars(
            request_id=request_id,
            path=str(request.url.path),
            method=request.method,
        )
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
            return response
        finally:
            clear_contextvars()

    return app


app = create_app()
