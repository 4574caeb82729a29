"""
Core module - shared enums and the error taxonomy.
"""

from src.core.enums import (
    OrderStatus,
    Currency,
    RemovalCategory,
    PayloadKind,
    ChatOutcome,
    AdminDecision,
)

__all__ = [
    "OrderStatus",
    "Currency",
    "RemovalCategory",
    "PayloadKind",
    "ChatOutcome",
    "AdminDecision",
]
