"""Core controller configuration."""
