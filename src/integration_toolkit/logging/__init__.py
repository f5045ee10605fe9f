"""Logging setup for the controller process."""

from integration_toolkit.logging.config import configure_logging

__all__ = ["configure_logging"]
