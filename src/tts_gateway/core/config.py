"""
Configuration Management for tts-gateway.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration sections
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (TTS_GATEWAY_API_KEY, TTS_GATEWAY_VOICE_ID, ...)
    2. YAML config file (config/settings.yaml)
    3. Defaults class values

Example settings.yaml:
    provider:
      voice_id: 21m00Tcm4TlvDq8ikWAM
      default_profile: default

    cache:
      max_size_bytes: 104857600
      ttl_seconds: 86400

    rate_limit:
      max_requests_per_minute: 100
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from tts_gateway.core.errors import ConfigurationError


class ConfigValidationError(ConfigurationError):
    """Raised when a configuration value is out of bounds or malformed."""

    def __init__(self, message: str):
        super().__init__(message)


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Provider: Remote synthesis endpoint and voice
        - Transport: Retry and timeout policy
        - Cache: Audio cache budget
        - Rate limit: Local per-credential request budget
        - Quota: Account quota refresh
        - Streaming: Chunked delivery
        - Fallback: Fallback chain behaviour
        - Logging: Log level and formatting
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Provider
    # ─────────────────────────────────────────────────────────────────────────
    PROVIDER_BASE_URL = "https://api.elevenlabs.io"
    PROVIDER_MODEL_ID = "eleven_multilingual_v2"
    PROVIDER_OUTPUT_FORMAT = "mp3_44100_128"
    PROVIDER_DEFAULT_PROFILE = "default"

    # ─────────────────────────────────────────────────────────────────────────
    # Transport
    # ─────────────────────────────────────────────────────────────────────────
    TRANSPORT_MAX_RETRY_ATTEMPTS = 2    # Retries after the first attempt
    TRANSPORT_REQUEST_TIMEOUT_S = 30.0  # Per-call timeout
    TRANSPORT_MAX_BACKOFF_S = 60.0      # Upper bound for any single backoff sleep

    # ─────────────────────────────────────────────────────────────────────────
    # Cache
    # ─────────────────────────────────────────────────────────────────────────
    CACHE_ENABLED = True
    CACHE_MAX_SIZE_BYTES = 100 * 1024 * 1024   # 100 MB
    CACHE_TTL_SECONDS = 24 * 3600              # 24 hours

    # ─────────────────────────────────────────────────────────────────────────
    # Rate limiting
    # ─────────────────────────────────────────────────────────────────────────
    RATE_LIMIT_ENABLED = True
    RATE_LIMIT_MAX_REQUESTS_PER_MINUTE = 100
    RATE_LIMIT_MAX_CHARACTERS_PER_MINUTE = 50_000

    # ─────────────────────────────────────────────────────────────────────────
    # Quota
    # ─────────────────────────────────────────────────────────────────────────
    QUOTA_ENABLED = True
    QUOTA_REFRESH_INTERVAL_S = 300.0
    QUOTA_WARN_PERCENT = 90.0
    QUOTA_REQUEST_TIMEOUT_S = 5.0

    # ─────────────────────────────────────────────────────────────────────────
    # Streaming
    # ─────────────────────────────────────────────────────────────────────────
    STREAMING_ENABLED = True
    STREAMING_CHUNK_SIZE = 4096

    # ─────────────────────────────────────────────────────────────────────────
    # Fallback
    # ─────────────────────────────────────────────────────────────────────────
    FALLBACK_ENABLED = True
    FALLBACK_MAX_FAILURES = 3        # Consecutive failures before cooldown
    FALLBACK_COOLDOWN_S = 300.0      # Provider skipped for this long

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 80
    LOGGING_LEVEL = 2


@dataclass
class ProviderConfig:
    """
    Primary synthesis provider settings.

    ``default_profile`` is a preset name ("default", "calm", ...) or a
    mapping of VoiceProfile fields.
    """
    api_key: str = ""
    voice_id: str = ""
    base_url: str = Defaults.PROVIDER_BASE_URL
    model_id: str = Defaults.PROVIDER_MODEL_ID
    output_format: str = Defaults.PROVIDER_OUTPUT_FORMAT
    default_profile: Union[str, Dict[str, float]] = Defaults.PROVIDER_DEFAULT_PROFILE


@dataclass
class TransportConfig:
    max_retry_attempts: int = Defaults.TRANSPORT_MAX_RETRY_ATTEMPTS
    request_timeout_s: float = Defaults.TRANSPORT_REQUEST_TIMEOUT_S
    max_backoff_s: float = Defaults.TRANSPORT_MAX_BACKOFF_S


@dataclass
class CacheConfig:
    """Audio cache: total byte budget and per-entry lifetime."""
    enabled: bool = Defaults.CACHE_ENABLED
    max_size_bytes: int = Defaults.CACHE_MAX_SIZE_BYTES
    ttl_seconds: int = Defaults.CACHE_TTL_SECONDS


@dataclass
class RateLimitConfig:
    enabled: bool = Defaults.RATE_LIMIT_ENABLED
    max_requests_per_minute: int = Defaults.RATE_LIMIT_MAX_REQUESTS_PER_MINUTE
    max_characters_per_minute: int = Defaults.RATE_LIMIT_MAX_CHARACTERS_PER_MINUTE


@dataclass
class QuotaConfig:
    enabled: bool = Defaults.QUOTA_ENABLED
    refresh_interval_s: float = Defaults.QUOTA_REFRESH_INTERVAL_S
    warn_percent: float = Defaults.QUOTA_WARN_PERCENT


@dataclass
class StreamingConfig:
    """
    Streaming delivery.

    When disabled, streaming requests are served by synthesizing the
    whole clip and slicing it into ``chunk_size`` pieces.
    """
    enabled: bool = Defaults.STREAMING_ENABLED
    chunk_size: int = Defaults.STREAMING_CHUNK_SIZE


@dataclass
class FallbackConfig:
    """
    Fallback chain settings.

    ``providers`` is an ordered list of provider specs, e.g.
    ``[{"type": "openai", "base_url": "http://localhost:8000"}, {"type": "silent"}]``.
    """
    enabled: bool = Defaults.FALLBACK_ENABLED
    max_failures: int = Defaults.FALLBACK_MAX_FAILURES
    cooldown_s: float = Defaults.FALLBACK_COOLDOWN_S
    providers: List[Dict[str, Any]] = field(default_factory=lambda: [{"type": "silent"}])


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL, 2 = NORMAL (default), 3 = VERBOSE, 4 = DEBUG
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


_LEVEL_NAMES_TO_INT = {
    "MINIMAL": 1, "1": 1,
    "NORMAL": 2, "INFO": 2, "2": 2,
    "VERBOSE": 3, "3": 3,
    "DEBUG": 4, "TRACE": 4, "4": 4,
}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("0", "false", "no", "off", "")
    return bool(value)


@dataclass
class GatewayConfig:
    """
    Validated configuration for the synthesis orchestrator.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = GatewayConfig.from_settings(settings)
        print(config.cache.max_size_bytes)
    """
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "GatewayConfig":
        """
        Create GatewayConfig from Settings with validation.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Provider
        # ─────────────────────────────────────────────────────────────────────
        provider_raw = raw.get("provider", {}) or {}
        default_profile = provider_raw.get("default_profile", Defaults.PROVIDER_DEFAULT_PROFILE)
        if not isinstance(default_profile, (str, Mapping)):
            raise ConfigValidationError(
                f"provider.default_profile must be a preset name or mapping, got {default_profile!r}"
            )
        provider = ProviderConfig(
            api_key=str(provider_raw.get("api_key", "") or ""),
            voice_id=str(provider_raw.get("voice_id", "") or ""),
            base_url=str(provider_raw.get("base_url", Defaults.PROVIDER_BASE_URL)).rstrip("/"),
            model_id=str(provider_raw.get("model_id", Defaults.PROVIDER_MODEL_ID)),
            output_format=str(provider_raw.get("output_format", Defaults.PROVIDER_OUTPUT_FORMAT)),
            default_profile=default_profile if isinstance(default_profile, str) else dict(default_profile),
        )
        if not provider.base_url.startswith(("http://", "https://")):
            raise ConfigValidationError(f"provider.base_url must be an http(s) URL, got {provider.base_url}")

        # ─────────────────────────────────────────────────────────────────────
        # Transport
        # ─────────────────────────────────────────────────────────────────────
        transport_raw = raw.get("transport", {}) or {}
        transport = TransportConfig(
            max_retry_attempts=int(transport_raw.get("max_retry_attempts", Defaults.TRANSPORT_MAX_RETRY_ATTEMPTS)),
            request_timeout_s=float(transport_raw.get("request_timeout_s", Defaults.TRANSPORT_REQUEST_TIMEOUT_S)),
            max_backoff_s=float(transport_raw.get("max_backoff_s", Defaults.TRANSPORT_MAX_BACKOFF_S)),
        )
        cls._validate_non_negative("transport.max_retry_attempts", transport.max_retry_attempts)
        cls._validate_positive("transport.request_timeout_s", transport.request_timeout_s)
        cls._validate_non_negative("transport.max_backoff_s", transport.max_backoff_s)

        # ─────────────────────────────────────────────────────────────────────
        # Cache
        # ─────────────────────────────────────────────────────────────────────
        cache_raw = raw.get("cache", {}) or {}
        cache = CacheConfig(
            enabled=_as_bool(cache_raw.get("enabled", Defaults.CACHE_ENABLED)),
            max_size_bytes=int(cache_raw.get("max_size_bytes", Defaults.CACHE_MAX_SIZE_BYTES)),
            ttl_seconds=int(cache_raw.get("ttl_seconds", Defaults.CACHE_TTL_SECONDS)),
        )
        cls._validate_positive("cache.max_size_bytes", cache.max_size_bytes)
        cls._validate_positive("cache.ttl_seconds", cache.ttl_seconds)

        # ─────────────────────────────────────────────────────────────────────
        # Rate limiting
        # ─────────────────────────────────────────────────────────────────────
        rl_raw = raw.get("rate_limit", {}) or {}
        rate_limit = RateLimitConfig(
            enabled=_as_bool(rl_raw.get("enabled", Defaults.RATE_LIMIT_ENABLED)),
            max_requests_per_minute=int(
                rl_raw.get("max_requests_per_minute", Defaults.RATE_LIMIT_MAX_REQUESTS_PER_MINUTE)
            ),
            max_characters_per_minute=int(
                rl_raw.get("max_characters_per_minute", Defaults.RATE_LIMIT_MAX_CHARACTERS_PER_MINUTE)
            ),
        )
        cls._validate_positive("rate_limit.max_requests_per_minute", rate_limit.max_requests_per_minute)
        cls._validate_positive("rate_limit.max_characters_per_minute", rate_limit.max_characters_per_minute)

        # ─────────────────────────────────────────────────────────────────────
        # Quota
        # ─────────────────────────────────────────────────────────────────────
        quota_raw = raw.get("quota", {}) or {}
        quota = QuotaConfig(
            enabled=_as_bool(quota_raw.get("enabled", Defaults.QUOTA_ENABLED)),
            refresh_interval_s=float(quota_raw.get("refresh_interval_s", Defaults.QUOTA_REFRESH_INTERVAL_S)),
            warn_percent=float(quota_raw.get("warn_percent", Defaults.QUOTA_WARN_PERCENT)),
        )
        cls._validate_positive("quota.refresh_interval_s", quota.refresh_interval_s)
        cls._validate_range("quota.warn_percent", quota.warn_percent, 0, 100)

        # ─────────────────────────────────────────────────────────────────────
        # Streaming
        # ─────────────────────────────────────────────────────────────────────
        streaming_raw = raw.get("streaming", {}) or {}
        streaming = StreamingConfig(
            enabled=_as_bool(streaming_raw.get("enabled", Defaults.STREAMING_ENABLED)),
            chunk_size=int(streaming_raw.get("chunk_size", Defaults.STREAMING_CHUNK_SIZE)),
        )
        cls._validate_positive("streaming.chunk_size", streaming.chunk_size)

        # ─────────────────────────────────────────────────────────────────────
        # Fallback
        # ─────────────────────────────────────────────────────────────────────
        fallback_raw = raw.get("fallback", {}) or {}
        providers_raw = fallback_raw.get("providers")
        if providers_raw is None:
            providers = [{"type": "silent"}]
        elif isinstance(providers_raw, list) and all(isinstance(p, Mapping) for p in providers_raw):
            providers = [dict(p) for p in providers_raw]
        else:
            raise ConfigValidationError("fallback.providers must be a list of mappings")
        for idx, spec in enumerate(providers):
            if not spec.get("type"):
                raise ConfigValidationError(f"fallback.providers[{idx}] is missing 'type'")
        fallback = FallbackConfig(
            enabled=_as_bool(fallback_raw.get("enabled", Defaults.FALLBACK_ENABLED)),
            max_failures=int(fallback_raw.get("max_failures", Defaults.FALLBACK_MAX_FAILURES)),
            cooldown_s=float(fallback_raw.get("cooldown_s", Defaults.FALLBACK_COOLDOWN_S)),
            providers=providers,
        )
        cls._validate_positive("fallback.max_failures", fallback.max_failures)
        cls._validate_non_negative("fallback.cooldown_s", fallback.cooldown_s)

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)
        if isinstance(log_level_raw, str):
            log_level = _LEVEL_NAMES_TO_INT.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)
        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            provider=provider,
            transport=transport,
            cache=cache,
            rate_limit=rate_limit,
            quota=quota,
            streaming=streaming,
            fallback=fallback,
            logging=logging_cfg,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_gateway_config() to get a validated GatewayConfig.
    """
    raw: Dict[str, Any]

    @property
    def api_key(self) -> str:
        return str((self.raw.get("provider") or {}).get("api_key", "") or "")

    @property
    def voice_id(self) -> str:
        return str((self.raw.get("provider") or {}).get("voice_id", "") or "")

    @property
    def base_url(self) -> str:
        return str((self.raw.get("provider") or {}).get("base_url", Defaults.PROVIDER_BASE_URL))

    def get_gateway_config(self) -> GatewayConfig:
        """
        Get validated GatewayConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return GatewayConfig.from_settings(self)


_ENV_OVERRIDES = {
    "TTS_GATEWAY_API_KEY": ("provider", "api_key"),
    "TTS_GATEWAY_VOICE_ID": ("provider", "voice_id"),
    "TTS_GATEWAY_BASE_URL": ("provider", "base_url"),
}


def _apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            section_raw = raw.get(section)
            if not isinstance(section_raw, dict):
                section_raw = {}
                raw[section] = section_raw
            section_raw[key] = value
    return raw


def load_settings(path: Optional[str] = None, allow_missing: bool = False) -> Settings:
    """
    Load settings from a YAML configuration file.

    The path defaults to $TTS_GATEWAY_SETTINGS, then config/settings.yaml.

    Environment variable overrides:
        - TTS_GATEWAY_API_KEY: provider.api_key
        - TTS_GATEWAY_VOICE_ID: provider.voice_id
        - TTS_GATEWAY_BASE_URL: provider.base_url

    Args:
        path: Path to the YAML configuration file.
        allow_missing: Return defaults (plus env overrides) instead of
            raising when the file does not exist.

    Raises:
        FileNotFoundError: If the settings file doesn't exist and
            allow_missing is False.
    """
    p = Path(path or os.getenv("TTS_GATEWAY_SETTINGS", "config/settings.yaml"))
    if not p.exists():
        if not allow_missing:
            raise FileNotFoundError(f"settings file not found: {p.resolve()}")
        return Settings(raw=_apply_env_overrides({}))

    with p.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    return Settings(raw=_apply_env_overrides(raw))
