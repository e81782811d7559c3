"""
Log Formatters for JSON and Console Output.

    JsonlFormatter: one JSON object per line, for files and log shippers.
    ColoredConsoleFormatter: human-readable colored line for terminals.

Output Examples:
    JSONL (file):
        {"ts":"2026-01-15T14:30:05+03:00","level":2,"tag":"INFO","message":"cache_hit","request_id":"abc123","extra":{"key":"5a2b..."}}

    Console (colored):
        14:30:05 [ INFO  ] (abc123) cache_hit key=5a2b... 0.001s

Field coloring on the console:
    - seconds: green < 0.1s, yellow < 1.0s, red otherwise
    - quota_percent: cyan < 75, yellow < 90, red otherwise
    - attempt: yellow once a retry is in progress
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict

from . import colors
from .colors import Colors, get_tag_color


class JsonlFormatter(logging.Formatter):
    """
    Format log records as JSON Lines.

    Output Format:
        {
            "ts": "2026-01-15T14:30:05+03:00",
            "level": 2,
            "tag": "INFO",
            "message": "fallback_used",
            "request_id": "abc123",
            "event": "fallback",
            "seconds": 0.5,
            "extra": {"provider": "silent"}
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).astimezone().isoformat()

        payload: Dict[str, Any] = {
            "ts": ts,
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }

        event = getattr(record, "event", None)
        if event:
            payload["event"] = event

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Format log records with ANSI colors for console output.

    Output Format:
        HH:MM:SS [ TAG   ] (rid) message key=value 0.123s
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        rid = getattr(record, "request_id", "-")

        parts = [
            colors.colorize(ts, Colors.DIM),
            colors.colorize(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if rid != "-":
            parts.append(colors.colorize(f"({rid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(colors.colorize(f"event={event}", Colors.BLUE))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            if seconds < 0.1:
                time_color = Colors.GREEN
            elif seconds < 1.0:
                time_color = Colors.YELLOW
            else:
                time_color = Colors.RED
            parts.append(colors.colorize(f"{seconds:.3f}s", time_color))

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for k, v in extra_data.items():
                parts.append(colors.colorize(f"{k}={v}", self._field_color(k, v)))

        return " ".join(parts)

    def _field_color(self, key: str, value: Any) -> str:
        if key == "quota_percent" and isinstance(value, (int, float)):
            if value < 75:
                return Colors.CYAN
            if value < 90:
                return Colors.YELLOW
            return Colors.RED

        if key == "attempt" and isinstance(value, int) and value > 1:
            return Colors.YELLOW

        if key in ("error", "reason"):
            return Colors.MAGENTA

        return Colors.DIM
