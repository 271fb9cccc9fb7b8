"""Tests for structured logging."""

import json
import logging

import pytest

from fieldsync import __version__
from fieldsync import logging as fs_logging
from fieldsync.logging import (
    FieldSyncJsonFormatter,
    log_event_dropped,
    log_state_change,
    log_upload_failed,
    setup_logging,
)


@pytest.fixture(autouse=True)
def reset_device_id(monkeypatch):
    monkeypatch.setattr(fs_logging, "_device_id", None)


def _format(record: logging.LogRecord) -> dict:
    return json.loads(FieldSyncJsonFormatter().format(record))


def _record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("fieldsync.test", level, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatter:
    """JSON output fields."""

    def test_standard_fields(self):
        data = _format(_record())

        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["logger"] == "fieldsync.test"
        assert data["version"] == __version__
        assert "device_id" not in data
        assert "+00:00" in data["timestamp"]

    def test_device_id_added_once_set(self):
        fs_logging.set_device_id("device-1")

        assert _format(_record())["device_id"] == "device-1"

    def test_extra_fields_included(self):
        data = _format(_record(recording_id="r1"))

        assert data["recording_id"] == "r1"


class TestAuditHelpers:
    """Audit events carry their context as structured fields."""

    def test_event_dropped_is_warning(self, caplog):
        logger = logging.getLogger("fieldsync.test.audit")
        with caplog.at_level(logging.INFO, logger="fieldsync.test.audit"):
            log_event_dropped(logger, "e1", "WO-9", "START", 404, "NOT_FOUND")

        record = caplog.records[0]
        assert record.levelno == logging.WARNING
        assert record.event == "status_event_dropped"
        assert record.appointment_id == "WO-9"
        assert record.error_code == "NOT_FOUND"

    def test_upload_failed(self, caplog):
        logger = logging.getLogger("fieldsync.test.audit")
        with caplog.at_level(logging.INFO, logger="fieldsync.test.audit"):
            log_upload_failed(logger, "r1", "boom")

        record = caplog.records[0]
        assert record.event == "upload_failed"
        assert record.error == "boom"

    def test_state_change_trigger_optional(self, caplog):
        logger = logging.getLogger("fieldsync.test.audit")
        with caplog.at_level(logging.INFO, logger="fieldsync.test.audit"):
            log_state_change(logger, "offline", "online")
            log_state_change(logger, "online", "offline", trigger="connectivity")

        assert not hasattr(caplog.records[0], "trigger")
        assert caplog.records[1].trigger == "connectivity"


class TestSetupLogging:
    """Root logger configuration."""

    def test_writes_json_lines_to_file(self, tmp_path):
        root = logging.getLogger()
        saved_handlers = root.handlers[:]
        saved_level = root.level
        log_file = tmp_path / "logs" / "fieldsync.log"
        try:
            setup_logging("debug", log_file=log_file, device_id="device-7")
            logging.getLogger("fieldsync.test.setup").info("started", extra={"trigger": "manual"})
            for handler in root.handlers:
                handler.flush()

            line = log_file.read_text().strip().splitlines()[-1]
            data = json.loads(line)
            assert data["message"] == "started"
            assert data["device_id"] == "device-7"
            assert data["trigger"] == "manual"
            assert root.level == logging.DEBUG
        finally:
            for handler in root.handlers[:]:
                root.removeHandler(handler)
                handler.close()
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)
