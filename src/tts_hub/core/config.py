"""
Configuration Management for tts-hub.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration objects
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (TTS_HUB_MAX_CONCURRENT, TTS_HUB_LOG_LEVEL, ...)
    2. YAML config file (config/settings.yaml)
    3. Defaults class values

Example settings.yaml:
    providers:
      azure:
        min_pool_size: 2
        max_pool_size: 10
        base_url: https://westeurope.tts.speech.microsoft.com
      elevenlabs:
        max_pool_size: 4

    concurrency:
      max_concurrent: 5

    cache:
      audio:
        ttl_seconds: 86400
        max_entries: 100

    retry:
      max_retries: 3
      base_delay_ms: 1000
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import os
import yaml


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is thrown when a configuration value is outside
    acceptable bounds or of the wrong type.
    """
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Pool: per-provider connection pool sizing and lifetime
        - Cache: the three TTL regions (audio, metadata, configuration)
        - Concurrency: process-wide in-flight call limit
        - Retry: exponential backoff parameters
        - Logging: log level
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Connection Pool
    # ─────────────────────────────────────────────────────────────────────────
    POOL_MIN_SIZE = 2                   # Connections pre-created per provider
    POOL_MAX_SIZE = 10                  # Hard cap per provider
    POOL_MAX_AGE_SECONDS = 30 * 60      # Connections older than this are recycled
    POOL_ACQUIRE_TIMEOUT_S = 30.0       # Bounded wait when a pool is exhausted
    PROVIDER_HTTP_TIMEOUT_S = 30.0      # httpx client timeout per connection

    # ─────────────────────────────────────────────────────────────────────────
    # Cache Regions
    # ─────────────────────────────────────────────────────────────────────────
    CACHE_AUDIO_TTL_SECONDS = 24 * 3600     # Synthesized audio (hours-scale)
    CACHE_AUDIO_MAX_ENTRIES = 100           # Only the audio region is bounded
    CACHE_METADATA_TTL_SECONDS = 30 * 60    # Voice lists, provider capabilities
    CACHE_CONFIGURATION_TTL_SECONDS = 10 * 60
    CACHE_EVICTION_BATCH = 10               # Entries removed per eviction sweep
    CACHE_EVICTION_POLICY = "write_time"    # or "access_time"

    # ─────────────────────────────────────────────────────────────────────────
    # Concurrency Control
    # ─────────────────────────────────────────────────────────────────────────
    CONCURRENCY_MAX_CONCURRENT = 5      # Max simultaneous provider calls
    CONCURRENCY_MAX_QUEUE = 0           # Max waiters before rejection (0 = unbounded)
    CONCURRENCY_TIMEOUT_S = 60.0        # Timeout for acquiring a slot

    # ─────────────────────────────────────────────────────────────────────────
    # Retry
    # ─────────────────────────────────────────────────────────────────────────
    RETRY_MAX_RETRIES = 3               # Retries after the initial attempt
    RETRY_BASE_DELAY_MS = 1000          # Delay before the first retry

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG

    EVICTION_POLICIES = ("write_time", "access_time")


@dataclass
class PoolConfig:
    """Pool behaviour shared by every provider."""
    max_age_seconds: float = Defaults.POOL_MAX_AGE_SECONDS
    acquire_timeout_s: float = Defaults.POOL_ACQUIRE_TIMEOUT_S


@dataclass
class ProviderConfig:
    """
    Per-provider pool sizing and HTTP client settings.

    base_url is optional: when set, each pooled connection's httpx client
    is bound to it.
    """
    name: str
    min_pool_size: int = Defaults.POOL_MIN_SIZE
    max_pool_size: int = Defaults.POOL_MAX_SIZE
    base_url: Optional[str] = None
    timeout_s: float = Defaults.PROVIDER_HTTP_TIMEOUT_S


@dataclass
class CacheRegionConfig:
    """
    One cache region.

    max_entries=None leaves the region unbounded (only TTL applies).
    """
    ttl_seconds: float
    max_entries: Optional[int] = None
    eviction_batch: int = Defaults.CACHE_EVICTION_BATCH
    eviction_policy: str = Defaults.CACHE_EVICTION_POLICY


@dataclass
class CacheConfig:
    """The three cache regions owned by the facade."""
    audio: CacheRegionConfig = field(default_factory=lambda: CacheRegionConfig(
        ttl_seconds=Defaults.CACHE_AUDIO_TTL_SECONDS,
        max_entries=Defaults.CACHE_AUDIO_MAX_ENTRIES,
    ))
    metadata: CacheRegionConfig = field(default_factory=lambda: CacheRegionConfig(
        ttl_seconds=Defaults.CACHE_METADATA_TTL_SECONDS,
    ))
    configuration: CacheRegionConfig = field(default_factory=lambda: CacheRegionConfig(
        ttl_seconds=Defaults.CACHE_CONFIGURATION_TTL_SECONDS,
    ))


@dataclass
class ConcurrencyConfig:
    """
    Concurrency control configuration.

    Bounds the number of provider calls in flight across the whole process.
    """
    max_concurrent: int = Defaults.CONCURRENCY_MAX_CONCURRENT
    max_queue: int = Defaults.CONCURRENCY_MAX_QUEUE
    timeout_s: float = Defaults.CONCURRENCY_TIMEOUT_S


@dataclass
class RetryConfig:
    """Exponential backoff defaults (per call overridable)."""
    max_retries: int = Defaults.RETRY_MAX_RETRIES
    base_delay_ms: int = Defaults.RETRY_BASE_DELAY_MS

    @property
    def base_delay(self) -> float:
        """Base delay in seconds."""
        return self.base_delay_ms / 1000.0


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, critical errors only
        2 = NORMAL: Operation lifecycle, cache status (default)
        3 = VERBOSE: Pool and retry detail
        4 = DEBUG: Internal state, full tracing
    """
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class HubConfig:
    """
    Validated configuration for ResilienceFacade.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = HubConfig.from_settings(settings)
        print(config.providers["azure"].max_pool_size)
    """
    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    pool: PoolConfig = field(default_factory=PoolConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "HubConfig":
        """
        Create HubConfig from Settings with validation.

        Args:
            settings: Raw Settings object loaded from YAML.

        Returns:
            Validated HubConfig instance.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Providers
        # ─────────────────────────────────────────────────────────────────────
        providers: Dict[str, ProviderConfig] = {}
        for name, provider_raw in (raw.get("providers") or {}).items():
            provider_raw = provider_raw or {}
            max_pool_size = int(provider_raw.get("max_pool_size", Defaults.POOL_MAX_SIZE))
            # an unset min never exceeds the configured max
            default_min = min(Defaults.POOL_MIN_SIZE, max_pool_size)
            provider = ProviderConfig(
                name=str(name),
                min_pool_size=int(provider_raw.get("min_pool_size", default_min)),
                max_pool_size=max_pool_size,
                base_url=provider_raw.get("base_url"),
                timeout_s=float(provider_raw.get("timeout_s", Defaults.PROVIDER_HTTP_TIMEOUT_S)),
            )
            cls._validate_non_negative(f"providers.{name}.min_pool_size", provider.min_pool_size)
            cls._validate_positive(f"providers.{name}.max_pool_size", provider.max_pool_size)
            if provider.min_pool_size > provider.max_pool_size:
                raise ConfigValidationError(
                    f"providers.{name}.min_pool_size ({provider.min_pool_size}) "
                    f"exceeds max_pool_size ({provider.max_pool_size})"
                )
            cls._validate_positive(f"providers.{name}.timeout_s", provider.timeout_s)
            providers[provider.name] = provider

        # ─────────────────────────────────────────────────────────────────────
        # Pool behaviour
        # ─────────────────────────────────────────────────────────────────────
        pool_raw = raw.get("pool", {}) or {}
        pool = PoolConfig(
            max_age_seconds=float(pool_raw.get("max_age_seconds", Defaults.POOL_MAX_AGE_SECONDS)),
            acquire_timeout_s=float(pool_raw.get("acquire_timeout_s", Defaults.POOL_ACQUIRE_TIMEOUT_S)),
        )
        cls._validate_positive("pool.max_age_seconds", pool.max_age_seconds)
        cls._validate_positive("pool.acquire_timeout_s", pool.acquire_timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Cache regions
        # ─────────────────────────────────────────────────────────────────────
        cache_raw = raw.get("cache", {}) or {}
        defaults = CacheConfig()
        cache = CacheConfig(
            audio=cls._region_from_raw("audio", cache_raw.get("audio"), defaults.audio),
            metadata=cls._region_from_raw("metadata", cache_raw.get("metadata"), defaults.metadata),
            configuration=cls._region_from_raw(
                "configuration", cache_raw.get("configuration"), defaults.configuration
            ),
        )

        # ─────────────────────────────────────────────────────────────────────
        # Concurrency (with environment override)
        # ─────────────────────────────────────────────────────────────────────
        concurrency_raw = raw.get("concurrency", {}) or {}
        max_concurrent_env = os.getenv("TTS_HUB_MAX_CONCURRENT")
        concurrency = ConcurrencyConfig(
            max_concurrent=int(max_concurrent_env) if max_concurrent_env
                else int(concurrency_raw.get("max_concurrent", Defaults.CONCURRENCY_MAX_CONCURRENT)),
            max_queue=int(concurrency_raw.get("max_queue", Defaults.CONCURRENCY_MAX_QUEUE)),
            timeout_s=float(concurrency_raw.get("timeout_s", Defaults.CONCURRENCY_TIMEOUT_S)),
        )
        cls._validate_positive("concurrency.max_concurrent", concurrency.max_concurrent)
        cls._validate_non_negative("concurrency.max_queue", concurrency.max_queue)
        cls._validate_positive("concurrency.timeout_s", concurrency.timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Retry
        # ─────────────────────────────────────────────────────────────────────
        retry_raw = raw.get("retry", {}) or {}
        retry = RetryConfig(
            max_retries=int(retry_raw.get("max_retries", Defaults.RETRY_MAX_RETRIES)),
            base_delay_ms=int(retry_raw.get("base_delay_ms", Defaults.RETRY_BASE_DELAY_MS)),
        )
        cls._validate_non_negative("retry.max_retries", retry.max_retries)
        cls._validate_non_negative("retry.base_delay_ms", retry.base_delay_ms)

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)

        # Handle string log levels (e.g., "INFO", "DEBUG")
        if isinstance(log_level_raw, str):
            level_map = {
                "MINIMAL": 1, "1": 1,
                "NORMAL": 2, "INFO": 2, "2": 2,
                "VERBOSE": 3, "3": 3,
                "DEBUG": 4, "TRACE": 4, "4": 4,
            }
            log_level = level_map.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(level=log_level)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            providers=providers,
            pool=pool,
            cache=cache,
            concurrency=concurrency,
            retry=retry,
            logging=logging_cfg,
        )

    @classmethod
    def _region_from_raw(
        cls,
        name: str,
        region_raw: Optional[Dict[str, Any]],
        default: CacheRegionConfig,
    ) -> CacheRegionConfig:
        """Build one cache region, falling back to the region's defaults."""
        region_raw = region_raw or {}
        max_entries = region_raw.get("max_entries", default.max_entries)
        region = CacheRegionConfig(
            ttl_seconds=float(region_raw.get("ttl_seconds", default.ttl_seconds)),
            max_entries=int(max_entries) if max_entries is not None else None,
            eviction_batch=int(region_raw.get("eviction_batch", default.eviction_batch)),
            eviction_policy=str(region_raw.get("eviction_policy", default.eviction_policy)).lower(),
        )
        cls._validate_non_negative(f"cache.{name}.ttl_seconds", region.ttl_seconds)
        if region.max_entries is not None:
            cls._validate_positive(f"cache.{name}.max_entries", region.max_entries)
        cls._validate_positive(f"cache.{name}.eviction_batch", region.eviction_batch)
        if region.eviction_policy not in Defaults.EVICTION_POLICIES:
            raise ConfigValidationError(
                f"cache.{name}.eviction_policy must be one of "
                f"{', '.join(Defaults.EVICTION_POLICIES)}, got {region.eviction_policy}"
            )
        return region

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_hub_config() to get a validated HubConfig.

    Attributes:
        raw: Dictionary of raw configuration values.
    """
    raw: Dict[str, Any]

    @property
    def provider_names(self) -> list[str]:
        """Names of the configured providers, in file order."""
        return [str(name) for name in (self.raw.get("providers") or {})]

    @property
    def max_concurrent(self) -> int:
        """Configured global concurrency limit (before env overrides)."""
        return int((self.raw.get("concurrency") or {}).get(
            "max_concurrent", Defaults.CONCURRENCY_MAX_CONCURRENT
        ))

    def get_hub_config(self) -> HubConfig:
        """
        Get validated HubConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return HubConfig.from_settings(self)


def load_settings(path: str = "config/settings.yaml") -> Settings:
    """
    Load settings from a YAML configuration file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Settings object with loaded configuration.

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    with p.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    return Settings(raw=raw)
