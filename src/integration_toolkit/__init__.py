"""Integration toolkit - multi-cluster tool installation and health monitoring."""

from integration_toolkit.__version__ import __version__

__all__ = ["__version__"]
