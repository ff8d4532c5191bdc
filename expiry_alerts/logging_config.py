"""
Centralized Logging Configuration
Plain text in development, JSON lines in production
"""
import json
import logging
import sys
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from expiry_alerts.config import Settings, settings as default_settings

LOGGER_NAME = "expiry_alerts"

_RESERVED = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'pathname', 'process',
    'processName', 'relativeCreated', 'stack_info', 'exc_info', 'exc_text',
    'thread', 'threadName', 'message', 'taskName',
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation"""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith('_'):
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(config: Optional[Settings] = None) -> logging.Logger:
    """Configure the package logger; safe to call more than once"""
    config = config or default_settings

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
    logger.handlers.clear()
    logger.propagate = False

    if config.ENVIRONMENT == "production":
        console_formatter = file_formatter = JSONFormatter()
    else:
        console_formatter = logging.Formatter("%(levelname)-8s | %(name)s | %(message)s")
        file_formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if config.LOG_FILE:
        log_file = Path(config.LOG_FILE)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger
