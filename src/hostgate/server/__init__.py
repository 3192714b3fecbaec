"""HTTP API server."""

from hostgate.server.api import create_app

__all__ = ["create_app"]
