"""API middleware package."""

from src.contact_sync.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
