"""
Tests for configuration validation and defaults.

Tests cover:
- Defaults class values
- GatewayConfig.from_settings() - all sections
- ConfigValidationError on invalid values
- Fallback provider list validation
- String log level coercion ("DEBUG" -> 4)
- load_settings() file handling and environment overrides
"""
import pytest

from tts_gateway.core.config import (
    ConfigValidationError,
    Defaults,
    GatewayConfig,
    Settings,
    load_settings,
)
from tts_gateway.core.errors import ConfigurationError


class TestDefaults:
    """Tests for Defaults class values."""

    def test_transport_defaults(self):
        assert Defaults.TRANSPORT_MAX_RETRY_ATTEMPTS == 2
        assert Defaults.TRANSPORT_REQUEST_TIMEOUT_S == 30.0

    def test_cache_defaults(self):
        assert Defaults.CACHE_ENABLED is True
        assert Defaults.CACHE_MAX_SIZE_BYTES == 100 * 1024 * 1024
        assert Defaults.CACHE_TTL_SECONDS == 86400

    def test_rate_limit_defaults(self):
        assert Defaults.RATE_LIMIT_MAX_REQUESTS_PER_MINUTE == 100
        assert Defaults.RATE_LIMIT_MAX_CHARACTERS_PER_MINUTE == 50_000

    def test_quota_and_fallback_defaults(self):
        assert Defaults.QUOTA_REFRESH_INTERVAL_S == 300.0
        assert Defaults.FALLBACK_MAX_FAILURES == 3
        assert Defaults.FALLBACK_COOLDOWN_S == 300.0

    def test_streaming_and_logging_defaults(self):
        assert Defaults.STREAMING_CHUNK_SIZE == 4096
        assert Defaults.LOGGING_LEVEL == 2


class TestGatewayConfigFromSettings:
    """Tests for GatewayConfig.from_settings()."""

    def test_empty_settings_use_defaults(self):
        config = GatewayConfig.from_settings(Settings(raw={}))

        assert config.provider.base_url == Defaults.PROVIDER_BASE_URL
        assert config.provider.default_profile == "default"
        assert config.transport.max_retry_attempts == 2
        assert config.cache.enabled is True
        assert config.rate_limit.max_requests_per_minute == 100
        assert config.streaming.chunk_size == 4096
        assert config.fallback.providers == [{"type": "silent"}]
        assert config.logging.level == 2

    def test_sections_are_read(self):
        settings = Settings(raw={
            "provider": {"api_key": "k", "voice_id": "v", "base_url": "http://localhost:9000/"},
            "transport": {"max_retry_attempts": 0, "request_timeout_s": 2.5},
            "cache": {"enabled": "false", "max_size_bytes": 100, "ttl_seconds": 10},
            "rate_limit": {"max_requests_per_minute": 5},
            "streaming": {"enabled": False, "chunk_size": 16},
            "fallback": {"max_failures": 1, "providers": [{"type": "openai", "base_url": "http://x"}]},
        })
        config = GatewayConfig.from_settings(settings)

        assert config.provider.api_key == "k"
        assert config.provider.base_url == "http://localhost:9000"
        assert config.transport.max_retry_attempts == 0
        assert config.transport.request_timeout_s == 2.5
        assert config.cache.enabled is False
        assert config.cache.max_size_bytes == 100
        assert config.rate_limit.max_requests_per_minute == 5
        assert config.streaming.enabled is False
        assert config.fallback.max_failures == 1
        assert config.fallback.providers[0]["type"] == "openai"

    def test_default_profile_mapping_is_kept(self):
        settings = Settings(raw={"provider": {"default_profile": {"stability": 0.5}}})
        config = GatewayConfig.from_settings(settings)
        assert config.provider.default_profile == {"stability": 0.5}

    def test_string_log_level(self):
        config = GatewayConfig.from_settings(Settings(raw={"logging": {"level": "DEBUG"}}))
        assert config.logging.level == 4


class TestConfigValidation:
    """Tests for ConfigValidationError on invalid values."""

    def test_validation_error_is_configuration_error(self):
        assert issubclass(ConfigValidationError, ConfigurationError)

    def test_negative_retries_rejected(self):
        with pytest.raises(ConfigValidationError, match="max_retry_attempts"):
            GatewayConfig.from_settings(Settings(raw={"transport": {"max_retry_attempts": -1}}))

    def test_zero_cache_budget_rejected(self):
        with pytest.raises(ConfigValidationError, match="cache.max_size_bytes"):
            GatewayConfig.from_settings(Settings(raw={"cache": {"max_size_bytes": 0}}))

    def test_zero_rate_limit_rejected(self):
        with pytest.raises(ConfigValidationError):
            GatewayConfig.from_settings(Settings(raw={"rate_limit": {"max_requests_per_minute": 0}}))

    def test_warn_percent_out_of_range(self):
        with pytest.raises(ConfigValidationError, match="warn_percent"):
            GatewayConfig.from_settings(Settings(raw={"quota": {"warn_percent": 150}}))

    def test_log_level_out_of_range(self):
        with pytest.raises(ConfigValidationError, match="logging.level"):
            GatewayConfig.from_settings(Settings(raw={"logging": {"level": 7}}))

    def test_non_http_base_url_rejected(self):
        with pytest.raises(ConfigValidationError, match="base_url"):
            GatewayConfig.from_settings(Settings(raw={"provider": {"base_url": "ftp://x"}}))

    def test_fallback_providers_must_be_list_of_mappings(self):
        with pytest.raises(ConfigValidationError):
            GatewayConfig.from_settings(Settings(raw={"fallback": {"providers": "silent"}}))

    def test_fallback_provider_needs_type(self):
        with pytest.raises(ConfigValidationError, match="type"):
            GatewayConfig.from_settings(Settings(raw={"fallback": {"providers": [{"base_url": "http://x"}]}}))


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "nope.yaml"))

    def test_missing_file_allowed(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TTS_GATEWAY_API_KEY", raising=False)
        settings = load_settings(str(tmp_path / "nope.yaml"), allow_missing=True)
        assert settings.api_key == ""

    def test_yaml_is_loaded(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TTS_GATEWAY_VOICE_ID", raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text("provider:\n  voice_id: abc\ncache:\n  ttl_seconds: 5\n", encoding="utf-8")

        settings = load_settings(str(path))

        assert settings.voice_id == "abc"
        assert settings.get_gateway_config().cache.ttl_seconds == 5

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("provider:\n  api_key: from-file\n", encoding="utf-8")
        monkeypatch.setenv("TTS_GATEWAY_API_KEY", "from-env")
        monkeypatch.setenv("TTS_GATEWAY_BASE_URL", "http://localhost:1234")

        settings = load_settings(str(path))

        assert settings.api_key == "from-env"
        assert settings.base_url == "http://localhost:1234"

    def test_settings_path_from_env(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TTS_GATEWAY_VOICE_ID", raising=False)
        path = tmp_path / "custom.yaml"
        path.write_text("provider:\n  voice_id: from-env-path\n", encoding="utf-8")
        monkeypatch.setenv("TTS_GATEWAY_SETTINGS", str(path))

        assert load_settings().voice_id == "from-env-path"

    def test_settings_is_immutable(self):
        settings = Settings(raw={})
        with pytest.raises(AttributeError):
            settings.raw = {"x": 1}
