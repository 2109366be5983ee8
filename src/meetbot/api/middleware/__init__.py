"""API middleware package."""

from src.meetbot.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
