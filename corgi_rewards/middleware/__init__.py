"""Middleware modules for the application."""

from corgi_rewards.middleware.logging import (
    RequestLoggingMiddleware,
    setup_logging,
    setup_request_logging_middleware,
)


__all__ = [
    "RequestLoggingMiddleware",
    "setup_logging",
    "setup_request_logging_middleware",
]
