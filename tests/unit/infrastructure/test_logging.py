"""Unit tests for logging setup."""

import json
import logging
import sys
from unittest.mock import MagicMock

import structlog

from herbsync.infrastructure.logging.setup import (
    NOISY_LOGGERS,
    bind_run_context,
    clear_run_context,
    configure_logging,
    get_logger,
)

# === configure_logging() Tests ===


def test_configure_logging_defaults():
    """Test configure_logging with default parameters."""
    # Arrange & Act
    configure_logging()

    # Assert
    root_logger = logging.getLogger()
    assert root_logger.level == logging.INFO
    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0], logging.StreamHandler)


def test_configure_logging_debug_level():
    """Test configure_logging with DEBUG level."""
    # Arrange & Act
    configure_logging(level="DEBUG")

    # Assert
    assert logging.getLogger().level == logging.DEBUG


def test_configure_logging_uses_processor_formatter():
    """Both renderers sit behind structlog's ProcessorFormatter."""
    for json_format in (True, False):
        # Act
        configure_logging(level="INFO", json_format=json_format)

        # Assert
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)


def test_configure_logging_clears_existing_handlers():
    """Test configure_logging removes existing handlers."""
    # Arrange
    root_logger = logging.getLogger()
    mock_handler = MagicMock(spec=logging.Handler)
    root_logger.addHandler(mock_handler)

    # Act
    configure_logging()

    # Assert
    assert len(root_logger.handlers) == 1
    assert mock_handler not in root_logger.handlers


def test_configure_logging_suppresses_noisy_loggers():
    """HTTP and database driver chatter is held at WARNING."""
    # Arrange & Act
    configure_logging(level="DEBUG")

    # Assert
    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING
    assert "httpx" in NOISY_LOGGERS
    assert "aiosqlite" in NOISY_LOGGERS


def test_configure_logging_handler_outputs_to_stdout():
    """Test configure_logging handler writes to stdout."""
    # Arrange & Act
    configure_logging()

    # Assert
    handler = logging.getLogger().handlers[0]
    assert handler.stream is sys.stdout


# === get_logger() Tests ===


def test_get_logger_returns_logger():
    """Test get_logger returns a usable logger."""
    # Arrange
    configure_logging()

    # Act
    logger = get_logger("herbsync.test")

    # Assert
    assert hasattr(logger, "info")
    assert hasattr(logger, "warning")
    assert hasattr(logger, "exception")


# === Output Tests ===


def test_logging_json_output_is_parseable(capsys):
    """JSON mode emits one JSON object per event with key-value context."""
    # Arrange
    configure_logging(level="INFO", json_format=True)
    logger = get_logger("herbsync.test")

    # Act
    logger.info("import_page_committed", provider="trefle", page=3, created=15)

    # Assert
    line = capsys.readouterr().out.strip().splitlines()[-1]
    payload = json.loads(line)
    assert payload["event"] == "import_page_committed"
    assert payload["provider"] == "trefle"
    assert payload["page"] == 3
    assert payload["level"] == "info"
    assert "timestamp" in payload


def test_logging_console_output_format(capsys):
    """Test console format produces readable logs."""
    # Arrange
    configure_logging(level="INFO", json_format=False)
    logger = get_logger("herbsync.test")

    # Act
    logger.info("circuit_breaker_transition", service="perenual", to_state="OPEN")

    # Assert
    captured = capsys.readouterr()
    assert "circuit_breaker_transition" in captured.out
    assert "perenual" in captured.out


def test_logging_exception_handling(capsys):
    """Test logging captures exception information."""
    # Arrange
    configure_logging(level="ERROR", json_format=False)
    logger = get_logger("herbsync.test")

    # Act
    try:
        raise ValueError("Test error")
    except ValueError:
        logger.exception("alert_check_failed", provider="trefle")

    # Assert
    captured = capsys.readouterr()
    assert "alert_check_failed" in captured.out
    assert "ValueError" in captured.out
    assert "Test error" in captured.out


def test_logging_level_filtering(capsys):
    """Test log level filtering works correctly."""
    # Arrange
    configure_logging(level="WARNING", json_format=False)
    logger = get_logger("herbsync.test")

    # Act
    logger.info("should_not_appear")
    logger.warning("should_appear")

    # Assert
    captured = capsys.readouterr()
    assert "should_not_appear" not in captured.out
    assert "should_appear" in captured.out


# === Run Context Tests ===


def test_run_context_is_attached_to_events(capsys):
    """Bound run context shows up on every event until cleared."""
    # Arrange
    configure_logging(level="INFO", json_format=True)
    logger = get_logger("herbsync.test")

    # Act
    bind_run_context("perenual", "import")
    try:
        logger.info("import_started", page=1)
    finally:
        clear_run_context()
    logger.info("after_run")

    # Assert
    lines = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]
    started = next(p for p in lines if p["event"] == "import_started")
    after = next(p for p in lines if p["event"] == "after_run")
    assert started["provider"] == "perenual"
    assert started["run"] == "import"
    assert "run" not in after


def test_explicit_key_wins_over_run_context(capsys):
    # Arrange
    configure_logging(level="INFO", json_format=True)
    logger = get_logger("herbsync.test")

    # Act
    bind_run_context("trefle", "enrichment")
    try:
        logger.info("cross_provider_note", provider="perenual")
    finally:
        clear_run_context()

    # Assert
    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["provider"] == "perenual"
