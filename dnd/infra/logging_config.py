# dnd/infra/logging_config.py
import logging
import socket
import sys
import json
import time
from datetime import datetime, timezone
from pathlib import Path

_CONTEXT_FIELDS = ("entry", "dst_host", "state")


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for log shippers"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        return json.dumps(log_data)


class ConsoleFormatter(logging.Formatter):
    """Human-readable format for foreground runs"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset = self.COLORS["RESET"]

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        # Build context string
        context_parts = []
        if hasattr(record, "entry"):
            context_parts.append(f"entry={record.entry}")
        if hasattr(record, "dst_host"):
            context_parts.append(f"host={record.dst_host}")
        if hasattr(record, "state"):
            context_parts.append(f"state={record.state}")

        context = f" [{' '.join(context_parts)}]" if context_parts else ""

        message = (
            f"{color}[{timestamp}] {record.levelname:8}{reset} "
            f"{record.name}{context} - {record.getMessage()}"
        )
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class SpoolFileFormatter(logging.Formatter):
    """
    Plain line format of the daemon log file:

        2013-05-28 14:21:34 [ node-a ] => INFO File "..." parsed and executed locally
    """

    def __init__(self, hostname: str | None = None):
        super().__init__()
        self.hostname = hostname or socket.gethostname()

    def format(self, record: logging.LogRecord) -> str:
        ts = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(record.created))
        line = f"{ts} [ {self.hostname} ] => {record.levelname} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
        level: str = "INFO",
        use_json: bool = False,
        log_file: str | Path | None = None,
        console: bool = True,
        hostname: str | None = None,
) -> None:
    """
    Configure daemon logging

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: If True, use JSON format on the console
        log_file: Append plain timestamped lines here (created if missing)
        console: Attach a stderr handler (off once the daemon has detached)
        hostname: Name shown in file log lines
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    # Remove existing handlers
    close_logging()

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level.upper())
        if use_json:
            console_handler.setFormatter(JSONFormatter())
        else:
            console_handler.setFormatter(ConsoleFormatter())
        root_logger.addHandler(console_handler)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setLevel(level.upper())
        file_handler.setFormatter(SpoolFileFormatter(hostname))
        root_logger.addHandler(file_handler)

    # Reduce noise from the watch library
    logging.getLogger("watchdog").setLevel(logging.WARNING)

    logging.debug(f"Logging configured: level={level}, json={use_json}, file={log_file}")


def close_logging() -> None:
    """Flush, close and detach every root handler (before fork, at exit)."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        finally:
            root_logger.removeHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


# Context-aware logging helpers
class LogContext:
    """Add spool entry context to log records"""

    def __init__(
            self,
            logger: logging.Logger,
            entry: str | None = None,
            dst_host: str | None = None,
            state: str | None = None,
    ):
        self.logger = logger
        self.context = {
            k: v for k, v in {
                "entry": entry,
                "dst_host": dst_host,
                "state": state,
            }.items() if v is not None
        }

    def bind(self, **context) -> "LogContext":
        """Return a copy with additional context fields."""
        merged = {**self.context, **{k: v for k, v in context.items() if v is not None}}
        return LogContext(self.logger, **merged)

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = kwargs.pop("extra", {})
        extra.update(self.context)
        self.logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._log(logging.CRITICAL, msg, *args, **kwargs)
