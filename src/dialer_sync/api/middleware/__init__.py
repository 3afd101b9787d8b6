"""API middleware package."""

from src.dialer_sync.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
