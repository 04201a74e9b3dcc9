"""
test_logging_config.py - Unit tests for package logging setup
"""

import logging
import pytest
from savetoken import setup_logging, get_logger


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger("savetoken")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


class TestSetupLogging:

    def test_console_only(self):
        logger = setup_logging("debug")
        assert logger.name == "savetoken"
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert not logger.propagate

    def test_repeated_setup_does_not_duplicate_handlers(self):
        setup_logging()
        logger = setup_logging()
        assert len(logger.handlers) == 1

    def test_file_handler_creates_directory(self, tmp_path):
        log_file = tmp_path / "logs" / "savetoken.log"
        logger = setup_logging("INFO", log_file=str(log_file), log_format="%(levelname)s %(message)s")

        get_logger("vaults").info("provisioned vault %d", 0)
        for handler in logger.handlers:
            handler.flush()

        assert log_file.read_text().strip() == "INFO provisioned vault 0"

    def test_module_loggers_inherit_level(self):
        setup_logging("WARNING")
        assert not logging.getLogger("savetoken.ledger").isEnabledFor(logging.INFO)
        assert logging.getLogger("savetoken.ledger").isEnabledFor(logging.WARNING)

    def test_unknown_level(self):
        with pytest.raises(ValueError, match="unknown log level"):
            setup_logging("LOUD")


class TestGetLogger:

    @pytest.mark.parametrize("name, expected", [
        (None, "savetoken"),
        ("savetoken", "savetoken"),
        ("savetoken.ledger", "savetoken.ledger"),
        ("demo", "savetoken.demo"),
    ])
    def test_names(self, name, expected):
        assert get_logger(name).name == expected
