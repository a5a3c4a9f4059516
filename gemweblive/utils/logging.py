"""Logging configuration and utilities."""

import sys
import logging
import logging.handlers
import structlog
from pathlib import Path
from datetime import datetime, timezone
import json
from typing import Optional, Union


logger = structlog.get_logger()


# LogRecord attributes that are not caller-supplied extras
_RECORD_FIELDS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "taskName", "message",
}


def _use_console_renderer(log_format: str) -> bool:
    return log_format == "dev" or (sys.stderr.isatty() and log_format != "json")


def setup_logging(
    debug: bool = False,
    log_file: bool = True,
    log_level: str = "INFO",
    log_format: str = "json",
    log_dir: Optional[Union[str, Path]] = None,
    file_rotation_mb: int = 10,
    file_backup_count: int = 7,
) -> Optional[Path]:
    """
    Route structlog through stdlib logging: console output in the chosen
    format, plus a rotating JSON file under log_dir when log_file is set.

    Returns the path of the log file, or None without file logging.
    """
    if debug:
        log_level = "DEBUG"

    log_path = None
    if log_file:
        log_dir = Path(log_dir or "./logs")
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        log_path = log_dir / f"live_{timestamp}.log"

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if _use_console_renderer(log_format):
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, log_level))
    if _use_console_renderer(log_format):
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
    else:
        console_handler.setFormatter(JsonFormatter())
    root_logger.addHandler(console_handler)

    if log_path is not None:
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=file_rotation_mb * 1024 * 1024,
            backupCount=file_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(getattr(logging, log_level))
        # File logs are always JSON
        file_handler.setFormatter(JsonFormatter())
        root_logger.addHandler(file_handler)

    root_logger.setLevel(getattr(logging, log_level))

    if log_path is not None:
        logger.info(
            "Logging configured",
            log_file=str(log_path),
            log_level=log_level,
            log_format=log_format,
        )
    return log_path


class JsonFormatter(logging.Formatter):
    """JSON formatter for stdlib log records."""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": record.threadName,
        }

        if record.exc_info:
            log_dict["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        if self.include_extra:
            extra = {
                key: value
                for key, value in record.__dict__.items()
                if key not in _RECORD_FIELDS and not key.startswith("_")
            }
            if extra:
                log_dict["attributes"] = extra

        return json.dumps(log_dict, ensure_ascii=False, default=str, separators=(",", ":"))


def open_frame_log(
    session_id: str, log_dir: Optional[Union[str, Path]] = None
) -> logging.Logger:
    """
    Open a per-session log that records every frame sent and received.

    The logger does not propagate, so frames never reach the console.
    """
    log_dir = Path(log_dir or "./logs/frames")
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_path = log_dir / f"frames_{session_id}_{timestamp}.log"

    frame_logger = logging.getLogger(f"gemweblive.frames.{session_id}")
    frame_logger.setLevel(logging.DEBUG)
    frame_logger.propagate = False
    for handler in frame_logger.handlers[:]:
        frame_logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
    frame_logger.addHandler(handler)
    frame_logger.debug("--- New session frame log: %s ---", session_id)
    return frame_logger


def close_frame_log(frame_logger: logging.Logger) -> None:
    """Flush and detach the handlers of a frame log."""
    for handler in frame_logger.handlers[:]:
        frame_logger.removeHandler(handler)
        handler.close()


def cleanup_old_logs(
    log_dir: Optional[Union[str, Path]] = None, keep_days: int = 7
) -> int:
    """Remove log files older than ``keep_days``. Returns the number removed."""
    log_dir = Path(log_dir or "./logs")
    if not log_dir.exists():
        return 0

    cutoff_time = datetime.now().timestamp() - (keep_days * 24 * 60 * 60)
    removed = 0
    for log_file in log_dir.rglob("*.log*"):
        try:
            if log_file.stat().st_mtime < cutoff_time:
                log_file.unlink()
                removed += 1
        except OSError as e:
            logger.warning(
                "Failed to remove old log file", file=str(log_file), error=str(e)
            )
    if removed:
        logger.info("Removed old log files", count=removed)
    return removed
