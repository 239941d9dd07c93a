"""
FastAPI application entrypoint for the FreeAgent integration.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from freeagent_sync.api.routes import http_error_for, router as api_router
from freeagent_sync.core.config import get_settings
from freeagent_sync.core.exceptions import FreeAgentError
from freeagent_sync.core.logging import configure_logging


async def _freeagent_error_handler(request: Request, exc: FreeAgentError) -> JSONResponse:
    error = http_error_for(exc)
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="FreeAgent Sync",
        version="0.1.0",
        description="Cached, scoped access to FreeAgent invoices, contacts and projects.",
    )
    app.add_exception_handler(FreeAgentError, _freeagent_error_handler)
    app.include_router(api_router, prefix="/freeagent")
    return app


app = create_app()

__all__ = ["app", "create_app"]
