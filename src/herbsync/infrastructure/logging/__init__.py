"""Logging configuration for HerbSync."""

from herbsync.infrastructure.logging.setup import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
