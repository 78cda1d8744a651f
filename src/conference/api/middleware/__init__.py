"""API middleware package."""

from src.conference.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
