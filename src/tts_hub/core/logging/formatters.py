"""
Log Formatters and Terminal Colors.

JsonlFormatter writes one JSON object per line for the log file;
ColoredConsoleFormatter writes a compact human-readable line:

    14:30:05 [ INFO  ] (a1b2c3d4e5f6) op_success provider=azure 0.412s
    14:30:07 [ WARN  ] (a1b2c3d4e5f6) retry provider=azure attempt=1 error_code=RATE_LIMITED

Colors are disabled when stdout is not a TTY, when NO_COLOR is set, or when
TTS_HUB_NO_COLOR=1.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict


class Colors:
    """ANSI escape codes."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    GRAY = "\033[90m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_CYAN = "\033[96m"


_TAG_COLORS = {
    "SUCCESS": Colors.BRIGHT_GREEN,
    "FAIL": Colors.BRIGHT_RED,
    "ERROR": Colors.BRIGHT_RED,
    "WARN": Colors.BRIGHT_YELLOW,
    "WARNING": Colors.BRIGHT_YELLOW,
    "INFO": Colors.BRIGHT_CYAN,
    "DEBUG": Colors.GRAY,
    "TRACE": Colors.DIM,
}


def supports_color() -> bool:
    """Whether ANSI colors should be written to stdout."""
    if os.getenv("TTS_HUB_NO_COLOR", "0") == "1":
        return False
    if os.getenv("NO_COLOR"):
        return False
    if not hasattr(sys.stdout, "isatty") or not sys.stdout.isatty():
        return False

    if sys.platform == "win32":
        # Desktop builds run in the Windows console; enable VT processing.
        try:
            import ctypes
            kernel32 = ctypes.windll.kernel32
            kernel32.SetConsoleMode(kernel32.GetStdHandle(-11), 7)
            return True
        except (AttributeError, OSError):
            return False

    return True


USE_COLORS = supports_color()


def colorize(text: str, color: str) -> str:
    """Wrap text in a color when colors are enabled."""
    if not USE_COLORS:
        return text
    return f"{color}{text}{Colors.RESET}"


def get_tag_color(tag: str) -> str:
    return _TAG_COLORS.get(tag.upper(), Colors.WHITE)


class JsonlFormatter(logging.Formatter):
    """
    Format log records as JSON Lines.

    Output Format:
        {"ts": "...", "level": 2, "tag": "INFO", "message": "cache_hit",
         "operation_id": "a1b2c3d4e5f6", "seconds": 0.001,
         "extra": {"region": "audio", "key": "5a2b9c1d"}}
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).astimezone().isoformat()

        payload: Dict[str, Any] = {
            "ts": ts,
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "operation_id": getattr(record, "operation_id", "-"),
        }

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Format log records with ANSI colors for the console.

    Field colors:
        - seconds: green < 0.5s, yellow < 2s, red otherwise
        - attempt: yellow once a call is being retried
        - error_code: red
        - utilization / hit_rate percentages: red / yellow / green bands
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        op_id = getattr(record, "operation_id", "-")

        parts = [
            colorize(ts, Colors.DIM),
            colorize(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if op_id != "-":
            parts.append(colorize(f"({op_id})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for k, v in extra_data.items():
                parts.append(colorize(f"{k}={v}", self._field_color(k, v)))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            if seconds < 0.5:
                time_color = Colors.GREEN
            elif seconds < 2.0:
                time_color = Colors.YELLOW
            else:
                time_color = Colors.RED
            parts.append(colorize(f"{seconds:.3f}s", time_color))

        return " ".join(parts)

    @staticmethod
    def _field_color(key: str, value: Any) -> str:
        if key == "provider":
            return Colors.BLUE
        if key == "error_code":
            return Colors.RED
        if key == "attempt" and isinstance(value, int):
            return Colors.YELLOW if value > 1 else Colors.DIM
        if key in ("utilization", "pool_utilization") and isinstance(value, (int, float)):
            if value > 80:
                return Colors.RED
            return Colors.YELLOW if value > 50 else Colors.GREEN
        if key in ("hit_rate", "cache_hit_rate") and isinstance(value, (int, float)):
            if value < 50:
                return Colors.YELLOW
            return Colors.GREEN
        return Colors.DIM
