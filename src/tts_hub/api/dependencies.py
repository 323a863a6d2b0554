"""
FastAPI Dependency Injection Providers.

Architecture:
    1. get_settings() - Loads and caches the settings file
    2. get_facade()   - Returns the ResilienceFacade owned by the application

The facade lives on ``app.state.facade``. create_app(facade) installs one
up front (tests pass their own); otherwise the first request builds it from
the settings file and the shutdown handler closes it.

Usage in Route Handlers:
    @router.get("/v1/pools")
    def pools(facade: ResilienceFacade = Depends(get_facade)):
        return facade.pools.stats()
"""
from __future__ import annotations

import os
import threading
from functools import lru_cache

from fastapi import Request

from tts_hub.core.config import Settings, load_settings
from tts_hub.resilience.facade import ResilienceFacade

_facade_lock = threading.Lock()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path comes from TTS_HUB_SETTINGS (default config/settings.yaml).
    """
    return load_settings(os.getenv("TTS_HUB_SETTINGS", "config/settings.yaml"))


def get_facade(request: Request) -> ResilienceFacade:
    """The application's facade, built from settings on first use."""
    state = request.app.state
    facade = getattr(state, "facade", None)
    if facade is None:
        with _facade_lock:
            facade = getattr(state, "facade", None)
            if facade is None:
                facade = ResilienceFacade.from_settings(get_settings())
                state.facade = facade
    return facade
