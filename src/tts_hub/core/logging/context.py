"""
Operation Context and Logging State.

The operation id lives in a ContextVar so every log line emitted while a
tracked operation runs (in a worker thread or an asyncio task) carries the
same id. Module-level variables hold the process-wide logging settings.

Environment Variables:
    - TTS_HUB_LOG_LEVEL: Log level (1-4 or name)
    - TTS_HUB_LOG_DIR: Directory for the JSONL log file
    - TTS_HUB_JSONL_FILE: JSONL log filename
    - TTS_HUB_LOG_ROTATE_BYTES: Max file size before rotation
    - TTS_HUB_LOG_ROTATE_BACKUP: Number of rotated files kept
    - TTS_HUB_SETTINGS: Settings file read for the logging section
"""
from __future__ import annotations

import os
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator

from .levels import LEVEL_NAMES, LogLevel

# "-" outside of a tracked operation
_operation_id: ContextVar[str] = ContextVar("operation_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_operation_id() -> str:
    """Operation id of the current context, or "-"."""
    return _operation_id.get()


def set_operation_id(op_id: str) -> None:
    """Bind an operation id to the current context."""
    _operation_id.set(op_id)


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


def read_logging_config() -> Dict[str, Any]:
    """
    Resolve the logging configuration.

    Priority (highest first): environment variables, the ``logging``
    section of the settings file, defaults.
    """
    cfg: Dict[str, Any] = {}

    settings_path = os.getenv("TTS_HUB_SETTINGS", "config/settings.yaml")
    if os.path.exists(settings_path):
        from tts_hub.core.config import load_settings
        settings = load_settings(settings_path)
        cfg.update(settings.raw.get("logging", {}) or {})

    if os.getenv("TTS_HUB_LOG_LEVEL"):
        cfg["level"] = os.environ["TTS_HUB_LOG_LEVEL"]
    if os.getenv("TTS_HUB_LOG_DIR"):
        cfg["log_dir"] = os.environ["TTS_HUB_LOG_DIR"]
    if os.getenv("TTS_HUB_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["TTS_HUB_JSONL_FILE"]
    if os.getenv("TTS_HUB_LOG_ROTATE_BYTES"):
        try:
            cfg["rotate_max_bytes"] = int(os.environ["TTS_HUB_LOG_ROTATE_BYTES"])
        except ValueError:
            pass  # keep the default
    if os.getenv("TTS_HUB_LOG_ROTATE_BACKUP"):
        try:
            cfg["rotate_backup_count"] = int(os.environ["TTS_HUB_LOG_ROTATE_BACKUP"])
        except ValueError:
            pass

    return cfg


@contextmanager
def operation_scope(op_id: str) -> Iterator[str]:
    """Bind ``op_id`` for the duration of a block, restoring the previous id."""
    token = _operation_id.set(op_id)
    try:
        yield op_id
    finally:
        _operation_id.reset(token)
