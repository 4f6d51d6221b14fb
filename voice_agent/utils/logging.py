"""Logging configuration and utilities."""

import sys
import logging
import logging.handlers
import structlog
from pathlib import Path
from datetime import datetime, timezone
import json
from typing import Optional, Union


DEFAULT_LOG_DIR = Path.home() / ".voice-agent" / "logs"

# LogRecord attributes that are not user supplied
_RECORD_FIELDS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"}


def setup_logging(
    debug: bool = False,
    log_file: bool = True,
    log_level: str = "INFO",
    log_format: str = "console",
    log_dir: Optional[Union[str, Path]] = None,
    session_id: Optional[str] = None,
    file_rotation_mb: int = 10,
    file_backup_count: int = 7,
) -> Optional[Path]:
    """
    Configure structured logging for the application.

    Args:
        debug: Enable debug logging (overrides log_level)
        log_file: Whether to log to file in addition to console
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Console log format (console, json)
        log_dir: Directory for log files
        session_id: Optional session ID for session-specific logs
        file_rotation_mb: File rotation size in MB
        file_backup_count: Number of backup files to keep

    Returns:
        Path of the log file, if file logging is enabled
    """
    if debug:
        log_level = "DEBUG"
    level = getattr(logging, log_level.upper(), logging.INFO)

    log_path = None
    if log_file:
        log_dir = Path(log_dir or DEFAULT_LOG_DIR).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        if session_id:
            log_filename = f"{session_id}_{timestamp}.log"
        else:
            log_filename = f"voice_agent_{timestamp}.log"
        log_path = log_dir / log_filename

    use_console_renderer = log_format == "console" and sys.stderr.isatty()

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
    if use_console_renderer:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Clear any existing handlers
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    if use_console_renderer:
        console_handler.setFormatter(logging.Formatter("%(message)s"))
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
        file_handler.setLevel(level)
        # File logs are always JSON
        file_handler.setFormatter(JsonFormatter())
        root_logger.addHandler(file_handler)

    root_logger.setLevel(level)

    # Third-party HTTP clients are chatty at DEBUG
    for noisy in ("httpx", "httpcore", "urllib3"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    if log_path is not None:
        structlog.get_logger().info(
            "Logging configured",
            log_file=str(log_path),
            log_level=log_level,
            log_format=log_format,
        )
    return log_path


class JsonFormatter(logging.Formatter):
    """JSON formatter for stdlib records, including structlog-rendered events."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        log_dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
        }

        # structlog already rendered the event as JSON
        try:
            event = json.loads(message)
        except ValueError:
            event = None
        if isinstance(event, dict):
            log_dict.update(event)
        else:
            log_dict["event"] = message

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_FIELDS and not key.startswith("_")
        }
        if extra:
            log_dict["attributes"] = extra

        return json.dumps(log_dict, ensure_ascii=False, default=str, separators=(",", ":"))


def cleanup_old_logs(
    log_dir: Optional[Union[str, Path]] = None, keep_days: int = 7
) -> int:
    """Remove log files older than keep_days. Returns how many were removed."""
    log_dir = Path(log_dir or DEFAULT_LOG_DIR).expanduser()
    if not log_dir.exists():
        return 0

    logger = structlog.get_logger()
    cutoff_time = datetime.now().timestamp() - (keep_days * 24 * 60 * 60)
    removed = 0

    for log_file in log_dir.glob("*.log*"):
        try:
            if log_file.stat().st_mtime < cutoff_time:
                log_file.unlink()
                removed += 1
                logger.debug("Removed old log file", file=str(log_file))
        except OSError as e:
            logger.warning(
                "Failed to remove old log file", file=str(log_file), error=str(e)
            )
    return removed
