"""Structured logging tests."""

import json
import logging
import sys

import pytest

from perf_telemetry import logging_config
from perf_telemetry.logging_config import StructuredJSONFormatter, get_logger, setup_logging


def _record(message, **extra):
    record = logging.LogRecord(
        name="perf_telemetry.engine",
        level=logging.WARNING,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
        func="tick",
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_logging():
    yield
    setup_logging(log_to_console=False, log_to_file=False)


class TestFormatter:
    """One JSON object per record."""

    def test_core_fields(self):
        data = json.loads(StructuredJSONFormatter(component="engine").format(_record("Tick failed")))
        assert data["level"] == "WARNING"
        assert data["component"] == "engine"
        assert data["function"] == "tick"
        assert data["message"] == "Tick failed"
        assert data["line"] == 10

    def test_extra_fields_serialized(self):
        record = _record("Alert", severity="critical", changed=("a", "b"), error=ValueError("bad"))
        data = json.loads(StructuredJSONFormatter().format(record))
        assert data["severity"] == "critical"
        assert data["changed"] == ["a", "b"]
        assert data["error"] == "bad"
        assert data["component"] == "perf_telemetry.engine"

    def test_exception_info(self):
        try:
            raise RuntimeError("probe gone")
        except RuntimeError:
            record = _record("Sampling tick failed")
            record.exc_info = sys.exc_info()
        data = json.loads(StructuredJSONFormatter().format(record))
        assert data["exception"]["type"] == "RuntimeError"
        assert "probe gone" in data["exception"]["traceback"]

    def test_pretty(self):
        output = StructuredJSONFormatter(pretty=True).format(_record("x"))
        assert output.startswith("{\n  ")


class TestStructuredLogger:
    """Keyword fields and reconfiguration."""

    def test_fields_reach_record(self, caplog):
        logger = get_logger("perf_telemetry.tests.fields")
        with caplog.at_level(logging.INFO):
            logger.info("Sampling started", interval_s=1.0)
        record = caplog.records[-1]
        assert record.getMessage() == "Sampling started"
        assert record.interval_s == 1.0

    def test_get_logger_cached(self):
        assert get_logger("perf_telemetry.tests.cached") is get_logger("perf_telemetry.tests.cached")

    def test_file_output(self, tmp_path, restore_logging):
        logger = get_logger("perf_telemetry.tests.file")
        setup_logging(log_level="DEBUG", log_dir=str(tmp_path), log_to_console=False, log_to_file=True)
        logger.debug("written", value=3)
        for handler in logger.logger.handlers:
            handler.flush()

        line = (tmp_path / "perf_telemetry.tests.file.log").read_text().strip().splitlines()[-1]
        data = json.loads(line)
        assert data["message"] == "written"
        assert data["value"] == 3

    def test_setup_reconfigures_existing_loggers(self, restore_logging):
        logger = get_logger("perf_telemetry.tests.level")
        setup_logging(log_level="ERROR", log_to_console=False)
        assert logger.logger.level == logging.ERROR
        assert logger.logger.handlers == []

    def test_env_level(self, restore_logging, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        config = setup_logging(log_to_console=False)
        assert config["log_level"] == "DEBUG"
        assert logging_config._config is config

    def test_measure_time_logs_failure(self, caplog):
        logger = get_logger("perf_telemetry.tests.measure")
        with caplog.at_level(logging.ERROR):
            with pytest.raises(KeyError):
                with logger.measure_time("export_report"):
                    raise KeyError("x")
        assert "export_report failed" in caplog.text
