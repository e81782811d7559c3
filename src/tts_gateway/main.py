"""
FastAPI Application Entry Point.

Usage:
    uvicorn tts_gateway.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tts_gateway.api.routes import router
from tts_gateway.core.errors import ErrorCode
from tts_gateway.core.logging import configure_logging, get_logger, info
from tts_gateway.services.orchestrator import close_orchestrator

_LOG = get_logger("tts-gateway.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    info(_LOG, "startup")
    yield
    await close_orchestrator()
    info(_LOG, "shutdown")


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "ok": False,
            "error": ErrorCode.INVALID_INPUT,
            "message": "Invalid request body",
            "details": {"errors": [str(err.get("msg", "")) for err in exc.errors()]},
        },
    )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    The orchestrator is built lazily on the first request, so the app
    can start (and report "unhealthy") even before credentials are set.
    """
    configure_logging()

    app = FastAPI(title="tts-gateway", lifespan=lifespan)
    app.include_router(router)
    app.add_exception_handler(RequestValidationError, _validation_error)
    return app


app = create_app()
