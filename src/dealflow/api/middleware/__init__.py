"""API middleware package."""

from src.dealflow.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
