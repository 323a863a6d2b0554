"""
FastAPI Diagnostics API for tts-hub.

This package defines the read-only HTTP surface:
    - routes.py: /health, /metrics, /v1/report, /v1/pools, /v1/caches
    - schemas.py: Response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""
