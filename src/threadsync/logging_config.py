"""
Logging configuration for threadsync.

Sets up console and rotating file handlers for the API server and the CLI.
"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from threadsync.config import Settings, settings as default_settings

STANDARD_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured_context: Optional[str] = None


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class _MaxLevelFilter(logging.Filter):
    """Only pass records strictly below a level (stdout gets INFO/DEBUG)."""

    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


class _ContextFilter(logging.Filter):
    def __init__(self, context: str):
        super().__init__()
        self.context = context

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = self.context
        return True


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter()
    return logging.Formatter(STANDARD_FORMAT)


def setup_logging(
    context: str = "api",
    config: Optional[Settings] = None,
    force: bool = False,
) -> logging.Logger:
    """
    Configure the root logger for a process.

    Safe to call more than once; subsequent calls are no-ops unless ``force``
    is set.

    Args:
        context: Process context ("api" or "cli"), used for the log file name
        config: Settings to use (defaults to the global settings)
        force: Reconfigure even if logging was already set up

    Returns:
        The configured root logger

    Raises:
        PermissionError: If the log directory cannot be created
    """
    global _configured_context

    root = logging.getLogger()
    if _configured_context is not None and not force:
        return root

    config = config or default_settings
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    formatter = _build_formatter(config.log_format)
    context_filter = _ContextFilter(context)

    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(level)

    if config.log_console_enabled:
        if config.log_to_stdout:
            stdout_handler = logging.StreamHandler(sys.stdout)
            stdout_handler.setLevel(level)
            stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
            stdout_handler.addFilter(context_filter)
            stdout_handler.setFormatter(formatter)
            root.addHandler(stdout_handler)
        if config.log_to_stderr:
            stderr_handler = logging.StreamHandler(sys.stderr)
            stderr_handler.setLevel(max(level, logging.WARNING))
            stderr_handler.addFilter(context_filter)
            stderr_handler.setFormatter(formatter)
            root.addHandler(stderr_handler)

    if config.log_file_enabled:
        log_dir = config.log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / f"{context}.log",
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.addFilter(context_filter)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Quiet noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    _configured_context = context
    root.debug(f"Logging configured for context={context} level={config.log_level}")
    return root
