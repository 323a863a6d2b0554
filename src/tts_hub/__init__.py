"""
tts-hub: Resilience Layer for Cloud Text-to-Speech Providers.

Sits between an application (desktop front end, bulk processor) and the
speech providers it calls (Azure Speech, ElevenLabs, ...), and makes every
provider call bounded, cached, retried and measured.

Components:
    - Connection pools: per-provider reusable httpx clients with age-based expiry
    - Cache regions: TTL stores for audio, metadata and configuration
    - Concurrency limiter: global bound on in-flight provider calls
    - Retry invoker: exponential backoff driven by a per-provider classifier
    - Metrics collector: timings, error/hit rates, advisory recommendations

Example Usage:
    >>> from tts_hub.core.config import load_settings
    >>> from tts_hub.resilience import OperationContext, ResilienceFacade
    >>>
    >>> facade = ResilienceFacade.from_settings(load_settings("config/settings.yaml"))
    >>> result = facade.execute_tracked(
    ...     lambda conn: conn.client.get("/voices/list").json(),
    ...     OperationContext(provider="azure", operation="list_voices"),
    ... )
    >>> print(result.success, result.execution_time_ms)
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
