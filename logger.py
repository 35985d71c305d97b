from __future__ import annotations

import os
import logging
import logging.handlers
import traceback
import json
import datetime as _dt
from typing import Any, Dict, Optional


def _service_root() -> str:
    """Returns the service directory root."""
    return os.path.dirname(os.path.abspath(__file__))


def get_log_dir() -> str:
    """Returns the logs directory, creating it when missing."""
    logs = os.getenv('LISTING_LOG_DIR') or os.path.join(_service_root(), 'logs')
    try:
        os.makedirs(logs, exist_ok=True)
    except OSError:
        pass
    return logs


def get_logger(name: str = 'listing', level: Optional[int] = None) -> logging.Logger:
    """Get a logger writing to logs/listing.log (rotated at 5 MB, 3 backups).

    Args:
        name: Logger name (default: 'listing', the pipeline event log)
        level: Log level override (default: DEBUG if the DEBUG env var is set, else INFO)

    Returns:
        Configured logger; handlers are attached once per name
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    if level is None:
        level = logging.DEBUG if os.getenv('DEBUG') else logging.INFO
    logger.setLevel(level)

    if name == 'listing':
        # The SDK's HTTP client logs every request at INFO
        logging.getLogger('httpx').setLevel(logging.WARNING)

    formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%SZ'
    )

    try:
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(get_log_dir(), 'listing.log'),
            maxBytes=5*1024*1024,
            backupCount=3,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError:
        # Read-only filesystems (serverless) still get console output below
        logger.addHandler(logging.NullHandler())

    if os.getenv('DEBUG'):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def _utc_stamp() -> str:
    return _dt.datetime.now(_dt.timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def log_event(event: str, message: str, level: int = logging.INFO) -> None:
    """Log a one-line `[EVENT] message` record.

    Args:
        event: Event identifier (e.g., 'REPAIR_TARGETED', 'PAGE_FETCH')
        message: Log message
        level: Log level (default: INFO)
    """
    try:
        get_logger().log(level, f"[{event}] {message}")
    except Exception:
        # Logging must never break a request
        pass


def log_exception(event: str, exc: Exception, level: int = logging.ERROR) -> None:
    """Log an exception with the active traceback.

    Args:
        event: Event identifier (e.g., 'BACKEND_TIMEOUT', 'REPAIR_ABANDONED')
        exc: The exception being handled
        level: Log level (default: ERROR)
    """
    try:
        tb = traceback.format_exc()
        get_logger().log(level, f"[{event}] Exception: {exc}\n{tb}")
    except Exception:
        pass


def log_json(event: str, message: str, **kwargs: Any) -> None:
    """Log one structured JSON line.

    Args:
        event: Event identifier (e.g., 'GENERATE_DONE')
        message: Log message
        **kwargs: Extra fields merged into the record (profile, valid, passes, ...)
    """
    try:
        data = {
            "timestamp": _utc_stamp(),
            "event": event,
            "message": message,
            **kwargs
        }
        get_logger().info(json.dumps(data, ensure_ascii=False, default=str))
    except Exception:
        pass


def log_metrics(event: str, metrics: Dict[str, Any]) -> None:
    """Log metrics in a structured format.

    Args:
        event: Event identifier (e.g., 'BACKEND_USAGE')
        metrics: Token usage, durations or violation counts
    """
    try:
        data = {
            "timestamp": _utc_stamp(),
            "event": event,
            "type": "metrics",
            "metrics": metrics
        }
        get_logger().info(json.dumps(data, default=str))
    except Exception:
        pass


def log_performance(event: str, duration_ms: float, **context: Any) -> None:
    """Log stage timing data.

    Args:
        event: Event identifier (e.g., 'STAGE_REPAIR_FULL')
        duration_ms: Duration in milliseconds
        **context: Additional context (kind, variant, violations_before)
    """
    try:
        data = {
            "timestamp": _utc_stamp(),
            "event": event,
            "type": "performance",
            "duration_ms": round(duration_ms, 2),
            **context
        }
        get_logger().info(json.dumps(data, default=str))
    except Exception:
        pass
