"""
Logging switches: debug gating, file logging, error logging
"""

import logging
import pytest

import utils.logger as logger


@pytest.fixture(autouse=True)
def restore_logging(monkeypatch, tmp_path):
    monkeypatch.setattr(logger, "DEBUG_MODE", True)
    monkeypatch.setattr(logger, "ENABLE_FILE_LOGGING", False)
    monkeypatch.setattr(logger, "ENABLE_CONSOLE_LOGGING", True)
    monkeypatch.setattr(logger, "LOG_DIR", str(tmp_path / "logs"))
    yield
    logger.setup_logger()


class TestLogger:

    def test_debug_mode_gates_log(self, caplog):
        caplog.set_level(logging.INFO, logger=logger.LOGGER_NAME)
        logger.set_debug_mode(False)
        assert not logger.is_debug_mode()
        logger.log("[TEST] hidden")
        logger.log_error("[TEST] always shown")
        messages = [r.getMessage() for r in caplog.records]
        assert "[TEST] hidden" not in messages
        assert "[TEST] always shown" in messages

    def test_file_logging_writes_run_file(self, tmp_path):
        logger.configure_logging(enable_file_logging=True, enable_console_logging=False,
                                 log_dir=str(tmp_path / "runs"))
        logger.log("[TEST] to file")
        path = logger.current_log_file()
        assert path is not None and path.startswith(str(tmp_path / "runs"))
        logger.configure_logging(enable_file_logging=False)
        with open(path, encoding="utf-8") as f:
            assert "[TEST] to file" in f.read()
        assert logger.current_log_file() is None

    def test_unset_switches_keep_current_values(self):
        logger.configure_logging(debug_mode=False)
        logger.configure_logging(enable_console_logging=True)
        assert not logger.is_debug_mode()
