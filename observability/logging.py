from __future__ import annotations
import logging
import sys
import json
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from pathlib import Path

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("aiohttp.access", "urllib3", "trafilatura", "htmldate", "sentence_transformers")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service_name: str = "docscope"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # ctx_* extras become a nested context object
        context = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES:
                continue
            if key.startswith("ctx_"):
                context[key[4:]] = value
            else:
                log_entry[key] = value
        if context:
            log_entry["context"] = context

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors."""
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        message = f"{timestamp} | {record.levelname:8} | {record.name} | {record.getMessage()}"

        context = {k[4:]: v for k, v in record.__dict__.items() if k.startswith("ctx_")}
        if context:
            message += " | " + " ".join(f"{k}={v}" for k, v in context.items())

        if self.use_colors and record.levelname in self.COLORS:
            message = f"{self.COLORS[record.levelname]}{message}{self.RESET}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging(
    level: str = "INFO",
    service_name: str = "docscope",
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> None:
    """Setup logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Name of the service for structured logging
        log_file: Optional file path for file logging, always written as JSON
        use_json: Whether to use JSON formatting on the console
        use_colors: Whether to use colored output for console
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(JSONFormatter(service_name) if use_json else ColoredFormatter(use_colors))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(JSONFormatter(service_name))
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class StructuredLogger:
    """Wrapper for structured logging with additional context."""

    def __init__(self, name: str, **default_context):
        self.logger = logging.getLogger(name)
        self.default_context = default_context

    def bind(self, **context) -> "StructuredLogger":
        """Return a logger with extra default context."""
        return StructuredLogger(self.logger.name, **{**self.default_context, **context})

    def _extra(self, context: Dict[str, Any]) -> Dict[str, Any]:
        return {f"ctx_{k}": v for k, v in {**self.default_context, **context}.items()}

    def _log(self, level: int, message: str, **context) -> None:
        self.logger.log(level, message, extra=self._extra(context))

    def debug(self, message: str, **context) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context) -> None:
        self._log(logging.WARNING, message, **context)

    def error(self, message: str, **context) -> None:
        self._log(logging.ERROR, message, **context)

    def exception(self, message: str, **context) -> None:
        """Log exception with context."""
        self.logger.exception(message, extra=self._extra(context))


def get_structured_logger(name: str, **default_context) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, **default_context)
