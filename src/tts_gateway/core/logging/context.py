"""
Request Context and Configuration State for Logging.

The request_id context variable correlates every log line emitted while
serving one synthesis request, across awaits and retries. Module-level
state holds the resolved logging configuration.

Environment Variables:
    - TTS_GATEWAY_LOG_LEVEL: Override log level (1-4 or name)
    - TTS_GATEWAY_LOG_DIR: Directory for JSONL log files
    - TTS_GATEWAY_JSONL_FILE: JSONL filename
    - TTS_GATEWAY_LOG_ROTATE_BYTES: Max log file size
    - TTS_GATEWAY_LOG_ROTATE_BACKUP: Number of rotated files kept
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

import yaml

from .levels import LEVEL_NAMES, LogLevel

_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Current request ID, or "-" outside a request."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """Set request ID for log correlation in the current context."""
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(_current_level, "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def read_logging_config() -> Dict[str, Any]:
    """
    Read logging configuration from the settings file and environment.

    Priority (highest first): TTS_GATEWAY_* environment variables, the
    ``logging`` section of the settings YAML, built-in defaults.

    The settings file is read directly with PyYAML rather than through
    ``load_settings`` so that configuring logging never triggers a
    settings validation error.
    """
    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("TTS_GATEWAY_SETTINGS", "config/settings.yaml")
    try:
        with open(settings_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if isinstance(raw, dict):
            cfg.update(raw.get("logging", {}) or {})
    except (OSError, yaml.YAMLError):
        pass

    if os.getenv("TTS_GATEWAY_LOG_LEVEL"):
        cfg["level"] = os.environ["TTS_GATEWAY_LOG_LEVEL"]
    if os.getenv("TTS_GATEWAY_LOG_DIR"):
        cfg["log_dir"] = os.environ["TTS_GATEWAY_LOG_DIR"]
    if os.getenv("TTS_GATEWAY_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["TTS_GATEWAY_JSONL_FILE"]

    rotate_bytes = _env_int("TTS_GATEWAY_LOG_ROTATE_BYTES")
    if rotate_bytes is not None:
        cfg["rotate_max_bytes"] = rotate_bytes
    rotate_backup = _env_int("TTS_GATEWAY_LOG_ROTATE_BACKUP")
    if rotate_backup is not None:
        cfg["rotate_backup_count"] = rotate_backup

    return cfg
