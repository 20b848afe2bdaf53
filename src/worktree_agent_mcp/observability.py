"""Logging for the worktree agent server.

One named logger per process, set up lazily on first use. Records go to a
rotating session log file and, at WARNING and above, to stderr. Settings
come from the ``[logging]`` table of the project config (see
``configure_logging``); the WORKTREE_AGENT_LOG_* environment variables
take precedence over it.
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER_NAME = "worktree_agent_mcp"

# Environment variables for configuration
ENV_LOG_DIR = "WORKTREE_AGENT_LOG_DIR"
ENV_LOG_LEVEL = "WORKTREE_AGENT_LOG_LEVEL"
ENV_LOG_DISABLE_FILE = "WORKTREE_AGENT_LOG_DISABLE_FILE"

# Defaults
DEFAULT_LOG_DIR = Path.home() / ".worktree-agent" / "logs"
DEFAULT_LOG_LEVEL = "INFO"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5

_TRUTHY = ("1", "true", "yes")

_logger_initialized = False
_session_start: Optional[str] = None
# Values from the [logging] config table
_configured: Dict[str, Any] = {}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def configure_logging(
    *,
    level: Optional[str] = None,
    log_dir: Optional[str] = None,
    disable_file: Optional[bool] = None,
) -> None:
    """Apply logging settings from the project config.

    The logger is rebuilt on its next use. Environment variables still win
    over anything set here.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        log_dir: Directory for session log files
        disable_file: Log to stderr only
    """
    global _logger_initialized
    _configured.clear()
    if level:
        _configured["level"] = level
    if log_dir:
        _configured["log_dir"] = log_dir
    if disable_file is not None:
        _configured["disable_file"] = disable_file
    _logger_initialized = False


def _get_log_level() -> int:
    """Log level from the environment, then the config, defaulting to INFO."""
    level_name = (os.getenv(ENV_LOG_LEVEL) or _configured.get("level") or DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def _file_logging_disabled() -> bool:
    env_value = os.getenv(ENV_LOG_DISABLE_FILE)
    if env_value:
        return env_value.lower() in _TRUTHY
    return bool(_configured.get("disable_file", False))


def _get_log_file_path() -> Optional[Path]:
    """Get the log file path, creating directories if needed.

    Returns None if file logging is disabled.
    """
    global _session_start
    if _file_logging_disabled():
        return None

    log_dir = Path(os.getenv(ENV_LOG_DIR) or _configured.get("log_dir") or DEFAULT_LOG_DIR).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    if _session_start is None:
        _session_start = _utcnow().strftime("%Y-%m-%d_%H%M%S")
    # Session-based filename: worktree_agent_2024-01-15_143022.log
    return log_dir / f"worktree_agent_{_session_start}.log"


def _get_logger() -> logging.Logger:
    """Get or initialize the worktree agent logger.

    By default, logs to ~/.worktree-agent/logs/worktree_agent_<session>.log,
    rotating at 10MB with 5 backups.
    """
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)

    if not _logger_initialized:
        _logger_initialized = True
        logger.handlers.clear()

        log_level = _get_log_level()
        logger.setLevel(log_level)

        formatter = logging.Formatter(
            "[%(levelname)s %(asctime)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S"
        )

        try:
            log_file = _get_log_file_path()
        except OSError:
            log_file = None
        if log_file:
            file_handler = RotatingFileHandler(
                str(log_file),
                maxBytes=LOG_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(log_level)
            logger.addHandler(file_handler)

        # stderr only carries warnings and above; stdout belongs to the stdio transport
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(max(log_level, logging.WARNING))
        logger.addHandler(stream_handler)

    return logger


def _with_fields(message: str, fields: Dict[str, Any]) -> str:
    if not fields:
        return message
    return f"{message} {json.dumps(fields, separators=(',', ':'), sort_keys=True, default=str)}"


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    tool_name: Optional[str] = None,
    input_chars: Optional[int] = None,
    output_chars: Optional[int] = None,
    **fields: Any,
) -> None:
    """Emit a structured log line for an action.

    Fields are serialized to JSON for safety. Keep schema lightweight.

    Args:
        action: Name of the action being logged
        outcome: Result status ("ok", "error", or a sync status tag)
        duration_ms: How long the action took in milliseconds
        tool_name: MCP tool name (for per-tool metrics)
        input_chars: Size of input in characters
        output_chars: Size of output in characters
        **fields: Additional fields to include
    """
    payload: Dict[str, Any] = {
        "ts": _utcnow().isoformat().replace("+00:00", "Z"),
        "action": action,
        "outcome": outcome,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    if tool_name is not None:
        payload["tool"] = tool_name
    if input_chars is not None:
        payload["in_chars"] = input_chars
    if output_chars is not None:
        payload["out_chars"] = output_chars
    if fields:
        payload.update(fields)

    _get_logger().info(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))


def log_debug(message: str, **fields: Any) -> None:
    """Log a debug message with optional structured fields.

    Only emitted when log level is DEBUG.
    """
    logger = _get_logger()
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(_with_fields(message, fields))


def log_warning(message: str, **fields: Any) -> None:
    """Log a warning message with optional structured fields."""
    _get_logger().warning(_with_fields(message, fields))


def log_error(message: str, **fields: Any) -> None:
    """Log an error message with optional structured fields."""
    _get_logger().error(_with_fields(message, fields))


@contextmanager
def timeit(
    action: str,
    *,
    tool_name: Optional[str] = None,
    input_chars: Optional[int] = None,
    **fields: Any,
):
    """Time a block and emit a structured log on exit.

    On exception, logs outcome="error" and re-raises.

    Yields:
        A dict that can be updated with output_chars or outcome after the operation
    """
    start = time.perf_counter()
    result_info: Dict[str, Any] = {}
    try:
        yield result_info
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(
            action,
            outcome=result_info.get("outcome", "ok"),
            duration_ms=duration_ms,
            tool_name=tool_name,
            input_chars=input_chars,
            output_chars=result_info.get("output_chars"),
            **fields,
        )
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000.0
        log_action(
            action,
            outcome="error",
            duration_ms=duration_ms,
            tool_name=tool_name,
            input_chars=input_chars,
            **fields,
        )
        raise
