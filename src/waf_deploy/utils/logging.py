"""Logging setup: coloured console output plus JSON-lines log files."""

import logging
import json
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


# Record attributes copied into the JSON output when present
STRUCTURED_FIELDS = ('resource_id', 'resource_type', 'operation', 'attempt', 'duration')

DEFAULT_LOG_DIR = Path('.waf-deploy/logs')

NOISY_LOGGERS = ('boto3', 'botocore', 'urllib3')


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for the log files under .waf-deploy/logs."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': _record_time(record).isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        entry.update({
            name: getattr(record, name)
            for name in STRUCTURED_FIELDS
            if getattr(record, name, None) is not None
        })
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Short coloured lines: time, level, ``[resource]`` and the message."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        message = record.getMessage()
        resource_id = getattr(record, 'resource_id', None)
        if resource_id:
            message = f"[{resource_id}] {message}"

        return f"{_record_time(record):%H:%M:%S} {level} {message}"


def setup_logging(log_level: str = 'info', log_dir: Optional[Path] = None) -> Path:
    """Send logs to the console at ``log_level`` and to a daily JSON file at DEBUG.

    Args:
        log_level: Console level (debug, info, warning, error)
        log_dir: Directory for JSON log files (defaults to .waf-deploy/logs)

    Returns:
        Path of the JSON log file
    """
    level = getattr(logging, log_level.upper())

    log_dir = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"waf-deploy-{datetime.now(timezone.utc):%Y%m%d}.jsonl"

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ConsoleFormatter(use_color=sys.stdout.isatty()))

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_file


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


_local = threading.local()
_factory_lock = threading.Lock()
_factory_installed = False


def _install_record_factory() -> None:
    global _factory_installed
    with _factory_lock:
        if _factory_installed:
            return
        base_factory = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = base_factory(*args, **kwargs)
            for key, value in getattr(_local, 'fields', {}).items():
                setattr(record, key, value)
            return record

        logging.setLogRecordFactory(record_factory)
        _factory_installed = True


class LogContext:
    """Stamp structured fields onto every record created inside the block.

    Fields are kept per thread, so concurrent deploys only see their own.
    They must not also be passed through ``extra=`` by code running inside
    the block; logging refuses to overwrite them.
    """

    def __init__(self, logger: logging.Logger, **fields: Any):
        self.logger = logger
        self.fields = fields
        self.previous: Optional[Dict[str, Any]] = None

    def __enter__(self):
        _install_record_factory()
        self.previous = getattr(_local, 'fields', {})
        _local.fields = {**self.previous, **self.fields}
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _local.fields = self.previous
