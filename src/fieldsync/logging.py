"""Structured JSON logging for the sync engine.

Provides audit-friendly logging with contextual fields for uploads, status
event delivery, and connectivity changes. Credentials and artifact bytes are
never logged.

Usage:
    from fieldsync.logging import setup_logging, state_logger

    setup_logging("INFO", device_id="3f2a...")
    log = state_logger()
    log.info("Sync started", extra={"trigger": "manual"})
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pythonjsonlogger import jsonlogger

from fieldsync import __version__

_device_id: str | None = None


class FieldSyncJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds engine context to all log records."""

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        """Add standard fields to every log record."""
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["version"] = __version__
        if _device_id:
            log_record["device_id"] = _device_id

        if "message" not in log_record and record.getMessage():
            log_record["message"] = record.getMessage()

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        """Format time as ISO 8601."""
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return dt.isoformat()


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    device_id: str | None = None,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> None:
    """Configure root logger with JSON formatting.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path for rotating file handler
        device_id: Stable identifier of this device
        max_bytes: Max size per log file for rotation
        backup_count: Number of backup files to keep
    """
    if device_id:
        set_device_id(device_id)

    formatter = FieldSyncJsonFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_device_id(device_id: str) -> None:
    """Set the device identifier for log context."""
    global _device_id
    _device_id = device_id


def state_logger() -> logging.Logger:
    """Get logger for connectivity and cycle state changes."""
    return logging.getLogger("fieldsync.state")


# --- Audit Event Functions ---


def log_upload_success(
    logger: logging.Logger,
    recording_id: str,
    remote_key: str,
    elapsed_ms: float,
) -> None:
    """Log a successful artifact upload."""
    logger.info(
        "Upload successful",
        extra={
            "event": "upload_success",
            "recording_id": recording_id,
            "remote_key": remote_key,
            "elapsed_ms": elapsed_ms,
        },
    )


def log_upload_failed(
    logger: logging.Logger,
    recording_id: str,
    error: str,
) -> None:
    """Log a failed upload attempt.

    Args:
        logger: Logger instance
        recording_id: Local recording identifier
        error: Error message (must not contain credentials)
    """
    logger.warning(
        "Upload failed",
        extra={
            "event": "upload_failed",
            "recording_id": recording_id,
            "error": error,
        },
    )


def log_event_dropped(
    logger: logging.Logger,
    event_id: str,
    appointment_id: str,
    event_type: str,
    status_code: int | None,
    error_code: str | None,
) -> None:
    """Log a status event abandoned because the remote reported a permanent failure.

    This is the only path on which a queued event is completed without
    success, so it is always logged at WARNING for audit.
    """
    logger.warning(
        "Status event dropped after permanent failure",
        extra={
            "event": "status_event_dropped",
            "event_id": event_id,
            "appointment_id": appointment_id,
            "event_type": event_type,
            "status_code": status_code,
            "error_code": error_code,
        },
    )


def log_state_change(
    logger: logging.Logger,
    old_state: str,
    new_state: str,
    trigger: str | None = None,
) -> None:
    """Log a state transition."""
    extra = {
        "event": "state_change",
        "old_state": old_state,
        "new_state": new_state,
    }
    if trigger:
        extra["trigger"] = trigger
    logger.info("State changed", extra=extra)
