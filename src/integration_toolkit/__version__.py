"""Version information for integration_toolkit."""

__version__ = "0.1.0"
