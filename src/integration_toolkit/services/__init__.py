"""Controller services: registry, installers, health checks."""
