"""
Unit tests for logging setup.
"""

import logging
import logging.handlers

import pytest

# Import module under test
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import log


@pytest.fixture
def log_file(tmp_path):
    """Log file path; handlers are closed after the test."""
    yield tmp_path / 'nexstar.log'
    driver_logger = logging.getLogger(log.LOGGER_NAME)
    for handler in driver_logger.handlers[:]:
        handler.close()
        driver_logger.removeHandler(handler)


class TestInitLogging:
    """Test logger creation from configuration."""

    @pytest.mark.unit
    def test_defaults_without_config(self, log_file):
        """Without config, log INFO to a rotating file only."""
        logger = log.init_logging(log_file=log_file)

        assert logger.name == 'nexstar'
        assert logger.level == logging.INFO
        assert not logger.propagate
        assert log.logger is logger
        assert len(logger.handlers) == 1

        handler = logger.handlers[0]
        assert isinstance(handler, logging.handlers.RotatingFileHandler)
        assert handler.maxBytes == 5000000
        assert handler.backupCount == 10

    @pytest.mark.unit
    def test_config_values_applied(self, log_file, mock_config):
        """Level, sizes and stdout output come from the config."""
        mock_config.log_to_stdout = True
        mock_config.max_size_mb = 2
        mock_config.num_keep_logs = 3

        logger = log.init_logging(mock_config, log_file=log_file)

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2
        file_handler = logger.handlers[0]
        assert file_handler.maxBytes == 2000000
        assert file_handler.backupCount == 3
        assert isinstance(logger.handlers[1], logging.StreamHandler)

    @pytest.mark.unit
    def test_verbose_forces_debug_to_stdout(self, log_file):
        logger = log.init_logging(log_file=log_file, verbose=True)
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2

    @pytest.mark.unit
    def test_reinit_does_not_stack_handlers(self, log_file):
        """Calling init twice replaces the handlers."""
        log.init_logging(log_file=log_file)
        logger = log.init_logging(log_file=log_file)
        assert len(logger.handlers) == 1

    @pytest.mark.unit
    def test_messages_written_with_utc_stamp(self, log_file):
        """Messages reach the file with millisecond time stamps."""
        logger = log.init_logging(log_file=log_file)
        logger.info('mount connected')
        for handler in logger.handlers:
            handler.flush()

        line = log_file.read_text().strip()
        assert line.endswith('INFO MainThread mount connected')
        assert line[19] == '.'
