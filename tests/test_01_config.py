"""
Tests for configuration validation and defaults.

Tests cover:
- HubConfig.from_settings() - all sections
- Defaults class values
- ConfigValidationError on invalid values
- String log level coercion ("DEBUG" -> 4)
- Missing sections use defaults
- TTS_HUB_MAX_CONCURRENT override
- load_settings() from YAML
"""

from pathlib import Path

import pytest

from tts_hub.core.config import (
    CacheRegionConfig,
    ConfigValidationError,
    Defaults,
    HubConfig,
    ProviderConfig,
    RetryConfig,
    Settings,
    load_settings,
)

SETTINGS_PATH = Path(__file__).resolve().parent.parent / "config" / "settings.yaml"


class TestDefaults:
    """Tests for Defaults class values."""

    def test_pool_defaults(self):
        """Pools default to 2..10 connections retired after 30 minutes."""
        assert Defaults.POOL_MIN_SIZE == 2
        assert Defaults.POOL_MAX_SIZE == 10
        assert Defaults.POOL_MAX_AGE_SECONDS == 1800

    def test_cache_defaults(self):
        """Audio keeps 100 entries for 24h, eviction removes 10."""
        assert Defaults.CACHE_AUDIO_TTL_SECONDS == 86400
        assert Defaults.CACHE_AUDIO_MAX_ENTRIES == 100
        assert Defaults.CACHE_EVICTION_BATCH == 10
        assert Defaults.CACHE_EVICTION_POLICY == "write_time"

    def test_concurrency_defaults(self):
        """Five provider calls in flight by default."""
        assert Defaults.CONCURRENCY_MAX_CONCURRENT == 5
        assert Defaults.CONCURRENCY_MAX_QUEUE == 0

    def test_retry_defaults(self):
        """Three retries starting at one second."""
        assert Defaults.RETRY_MAX_RETRIES == 3
        assert Defaults.RETRY_BASE_DELAY_MS == 1000
        assert RetryConfig().base_delay == 1.0


class TestHubConfigFromSettings:
    """Tests for HubConfig.from_settings()."""

    def test_empty_settings_use_defaults(self):
        """Missing sections fall back to defaults."""
        config = HubConfig.from_settings(Settings(raw={}))

        assert config.providers == {}
        assert config.cache.audio.max_entries == 100
        assert config.cache.metadata.max_entries is None
        assert config.cache.configuration.ttl_seconds == 600
        assert config.concurrency.max_concurrent == 5
        assert config.logging.level == 2

    def test_providers_parsed(self):
        """Each provider gets its own pool sizing."""
        settings = Settings(raw={
            "providers": {
                "azure": {"min_pool_size": 1, "max_pool_size": 4, "base_url": "https://azure.test"},
                "elevenlabs": None,
            }
        })
        config = HubConfig.from_settings(settings)

        azure = config.providers["azure"]
        assert isinstance(azure, ProviderConfig)
        assert (azure.min_pool_size, azure.max_pool_size) == (1, 4)
        assert azure.base_url == "https://azure.test"
        assert config.providers["elevenlabs"].max_pool_size == Defaults.POOL_MAX_SIZE

    def test_min_above_max_rejected(self):
        """min_pool_size larger than max_pool_size is invalid."""
        settings = Settings(raw={"providers": {"azure": {"min_pool_size": 5, "max_pool_size": 2}}})
        with pytest.raises(ConfigValidationError, match="min_pool_size"):
            HubConfig.from_settings(settings)

    def test_min_defaults_to_small_max(self):
        """An unset min_pool_size is clamped to a smaller max_pool_size."""
        settings = Settings(raw={"providers": {"polly": {"max_pool_size": 1}}})
        polly = HubConfig.from_settings(settings).providers["polly"]
        assert (polly.min_pool_size, polly.max_pool_size) == (1, 1)

    def test_zero_max_pool_rejected(self):
        settings = Settings(raw={"providers": {"azure": {"min_pool_size": 0, "max_pool_size": 0}}})
        with pytest.raises(ConfigValidationError, match="max_pool_size"):
            HubConfig.from_settings(settings)

    def test_cache_region_override(self):
        """Region values override only what they name."""
        settings = Settings(raw={"cache": {"audio": {"max_entries": 20, "eviction_policy": "ACCESS_TIME"}}})
        config = HubConfig.from_settings(settings)

        audio = config.cache.audio
        assert isinstance(audio, CacheRegionConfig)
        assert audio.max_entries == 20
        assert audio.ttl_seconds == 86400
        assert audio.eviction_policy == "access_time"

    def test_unknown_eviction_policy_rejected(self):
        settings = Settings(raw={"cache": {"audio": {"eviction_policy": "lfu"}}})
        with pytest.raises(ConfigValidationError, match="eviction_policy"):
            HubConfig.from_settings(settings)

    def test_negative_ttl_rejected(self):
        settings = Settings(raw={"cache": {"metadata": {"ttl_seconds": -1}}})
        with pytest.raises(ConfigValidationError, match="ttl_seconds"):
            HubConfig.from_settings(settings)

    def test_negative_retries_rejected(self):
        with pytest.raises(ConfigValidationError, match="max_retries"):
            HubConfig.from_settings(Settings(raw={"retry": {"max_retries": -1}}))

    def test_zero_concurrency_rejected(self):
        with pytest.raises(ConfigValidationError, match="max_concurrent"):
            HubConfig.from_settings(Settings(raw={"concurrency": {"max_concurrent": 0}}))

    def test_env_overrides_max_concurrent(self, monkeypatch):
        """TTS_HUB_MAX_CONCURRENT wins over the file."""
        monkeypatch.setenv("TTS_HUB_MAX_CONCURRENT", "9")
        config = HubConfig.from_settings(Settings(raw={"concurrency": {"max_concurrent": 2}}))
        assert config.concurrency.max_concurrent == 9

    def test_string_log_level(self):
        """Level names are coerced to numbers."""
        config = HubConfig.from_settings(Settings(raw={"logging": {"level": "DEBUG"}}))
        assert config.logging.level == 4

    def test_log_level_out_of_range(self):
        with pytest.raises(ConfigValidationError, match="logging.level"):
            HubConfig.from_settings(Settings(raw={"logging": {"level": 7}}))


class TestSettings:
    """Tests for the raw Settings container."""

    def test_provider_names(self):
        settings = Settings(raw={"providers": {"azure": {}, "elevenlabs": {}}})
        assert settings.provider_names == ["azure", "elevenlabs"]

    def test_max_concurrent_property(self):
        assert Settings(raw={}).max_concurrent == 5
        assert Settings(raw={"concurrency": {"max_concurrent": 3}}).max_concurrent == 3

    def test_get_hub_config(self):
        config = Settings(raw={"retry": {"base_delay_ms": 250}}).get_hub_config()
        assert config.retry.base_delay == 0.25


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_load_yaml(self, tmp_path):
        """Settings are read from YAML."""
        path = tmp_path / "settings.yaml"
        path.write_text(
            "providers:\n"
            "  azure:\n"
            "    min_pool_size: 2\n"
            "    max_pool_size: 4\n"
            "concurrency:\n"
            "  max_concurrent: 3\n",
            encoding="utf-8",
        )
        settings = load_settings(str(path))

        assert settings.provider_names == ["azure"]
        assert settings.get_hub_config().concurrency.max_concurrent == 3

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "nope.yaml"))

    def test_shipped_settings_valid(self):
        """config/settings.yaml validates."""
        config = load_settings(str(SETTINGS_PATH)).get_hub_config()
        assert set(config.providers) == {"azure", "elevenlabs"}
