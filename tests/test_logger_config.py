"""
tests/test_logger_config.py: structlog set-up and operation logging.
"""

import json
import logging

import pytest
import structlog

from pledgeflow.monitoring.logger_config import OperationLogger, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def read_events(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


class TestSetupLogging:

    def test_stdlib_and_structlog_records_share_json_output(self, tmp_path, restore_logging):
        log_file = tmp_path / "logs" / "pledgeflow.log"
        setup_logging(log_level="INFO", log_format="json", log_file=str(log_file))

        structlog.contextvars.bind_contextvars(job_id=11)
        logging.getLogger("pledgeflow.test").info("stdlib message")

        events = read_events(log_file)
        assert events[0]["event"] == "Logging initialized"
        assert events[-1]["event"] == "stdlib message"
        assert events[-1]["job_id"] == 11
        assert events[-1]["service"] == "pledgeflow"
        assert events[-1]["level"] == "info"

    def test_operation_logger_records_failure(self, tmp_path, restore_logging):
        log_file = tmp_path / "ops.log"
        setup_logging(log_level="INFO", log_format="json", log_file=str(log_file))

        with pytest.raises(RuntimeError):
            with OperationLogger("process_chunk", chunk_id=3):
                raise RuntimeError("boom")

        failure = read_events(log_file)[-1]
        assert failure["event"] == "Operation failed: process_chunk"
        assert failure["chunk_id"] == 3
        assert failure["error_type"] == "RuntimeError"
        assert failure["level"] == "error"
