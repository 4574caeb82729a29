"""Middleware for the marketplace bot"""

from .database import DatabaseMiddleware
from .admin import AdminMiddleware
from .logging import LoggingMiddleware

__all__ = [
    "DatabaseMiddleware",
    "AdminMiddleware",
    "LoggingMiddleware",
]
