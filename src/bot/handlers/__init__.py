"""Handlers for the marketplace bot"""

from . import (
    start,
    operator,
    admin_orders,
    catalog,
    orders,
)

__all__ = [
    "start",
    "operator",
    "admin_orders",
    "catalog",
    "orders",
]
