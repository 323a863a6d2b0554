"""
FastAPI Application Entry Point.

Serves the diagnostics API of the resilience layer.

Usage:
    # Run with uvicorn
    uvicorn tts_hub.main:app --host 127.0.0.1 --port 8000

    # Or through the CLI
    tts-hub serve --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from tts_hub import __version__
from tts_hub.api.routes import router
from tts_hub.core.logging import configure_logging, get_logger, info
from tts_hub.resilience.facade import ResilienceFacade

_LOG = get_logger("tts-hub.main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Close the served facade on shutdown."""
    yield
    facade = getattr(app.state, "facade", None)
    if facade is not None:
        facade.close()
        info(_LOG, "app_shutdown")


def create_app(facade: Optional[ResilienceFacade] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        facade: Facade to serve. When omitted, one is built from the
            settings file on the first request.

    Returns:
        FastAPI: Configured application instance.
    """
    configure_logging()

    app = FastAPI(title="tts-hub", version=__version__, lifespan=lifespan)
    app.state.facade = facade
    app.include_router(router)
    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()
