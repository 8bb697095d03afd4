"""
Structured logging for the MCP server using structlog.

- One JSON object per line (or a readable console layout when
  enable_pretty_print is set)
- Events are keyword-only: logger.info(event="tool_registered", key=...)
- Credentials never reach a log line; the redaction processor masks them
- stdout belongs to the stdio transport, so console logs go to stderr
"""

import logging
import logging.handlers
import sys
import time
from typing import Any, Dict, List, Optional, TextIO

import structlog

from common.config import Config

REDACTED = "***"
SECRET_KEYS = ("password", "authorization", "api_key", "apikey", "x-api-key", "token", "secret")


def _is_secret(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SECRET_KEYS)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: REDACTED if _is_secret(str(k)) else _redact(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def redact_secrets(_, __, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask credential-looking fields, including inside nested header/params dicts."""
    return {
        key: REDACTED if key != "event" and _is_secret(key) else _redact(value)
        for key, value in event_dict.items()
    }


def _processors(config: Config) -> List[Any]:
    renderer: Any
    if config.enable_pretty_print:
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    else:
        renderer = structlog.processors.JSONRenderer()

    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_secrets,
        renderer,
    ]


def setup_logging(config: Config, stream: Optional[TextIO] = None) -> None:
    """
    Configure structlog on top of the stdlib logging module.

    Args:
        config: Application configuration
        stream: Console stream, stderr unless given
    """
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=_processors(config),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = logging.Formatter("%(message)s")
    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [console_handler]

    if config.save_to_file:
        file_handler = logging.handlers.RotatingFileHandler(
            filename=config.log_file_path,
            maxBytes=config.max_log_file_size,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # force=True: uvicorn or a test run may have installed handlers already
    logging.basicConfig(level=log_level, handlers=handlers, format="%(message)s", force=True)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)


class TimedLogger:
    """
    Context manager that logs an event with its elapsed_ms on exit.

    The measured time stays available as `elapsed_ms` after the block.
    """

    def __init__(self, logger: structlog.BoundLogger, event: str, **context: Any):
        self.logger = logger
        self.event = event
        self.context = context
        self.start_time: Optional[float] = None
        self.elapsed_ms: Optional[float] = None

    def __enter__(self) -> "TimedLogger":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.start_time is None:
            return
        self.elapsed_ms = round((time.perf_counter() - self.start_time) * 1000, 2)
        self.logger.debug(
            self.event,
            elapsed_ms=self.elapsed_ms,
            failed=exc_type is not None,
            **self.context,
        )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a configured structlog logger."""
    return structlog.get_logger(name)


def log_startup_message(event: str, **kwargs: Any) -> None:
    """Startup events share one logger so they are easy to filter."""
    get_logger("startup").info(event, **kwargs)
