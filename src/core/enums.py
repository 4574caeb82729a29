"""
Core Enums - shared types for the order lifecycle, watcher and reconciler.

Defines:
- OrderStatus: order lifecycle states and the legal transitions between them
- Currency: accepted payment currencies
- RemovalCategory: why the reconciler evicted a user
- PayloadKind: delivery payload variants, in precedence order
- ChatOutcome: classification of a getChat lookup
- AdminDecision: admin verdict on a payment claim
"""

from enum import Enum


class OrderStatus(str, Enum):
    """Order lifecycle state.

    Two paths only:
    - success: pending -> awaiting_product -> delivered
    - termination: pending -> cancelled
    """

    PENDING = "pending"
    AWAITING_PRODUCT = "awaiting_product"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def can_transition(cls, current: "OrderStatus", target: "OrderStatus") -> bool:
        """Check whether current -> target is one of the legal transitions."""
        return (current, target) in _TRANSITIONS

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


_TRANSITIONS = frozenset(
    {
        (OrderStatus.PENDING, OrderStatus.AWAITING_PRODUCT),
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.AWAITING_PRODUCT, OrderStatus.DELIVERED),
    }
)


class Currency(str, Enum):
    """Payment currencies"""

    BTC = "BTC"
    LTC = "LTC"

    @classmethod
    def parse(cls, value: str) -> "Currency":
        """Case-insensitive lookup, raises ValueError on unknown codes."""
        return cls(value.strip().upper())


class RemovalCategory(str, Enum):
    """Reconciler eviction categories"""

    DELETED = "deleted"  # Deleted / deactivated account
    UNREACHABLE = "unreachable"  # Chat not found / peer invalid / user not found
    BLOCKED = "blocked"  # User blocked the bot

    @property
    def icon(self) -> str:
        return {
            RemovalCategory.DELETED: "🗑️",
            RemovalCategory.UNREACHABLE: "🔇",
            RemovalCategory.BLOCKED: "🚫",
        }[self]


class PayloadKind(str, Enum):
    """Delivery payload variants; declaration order is delivery precedence."""

    DOCUMENT = "document"
    PHOTO = "photo"
    VIDEO = "video"
    TEXT = "text"

    @property
    def label(self) -> str:
        return {
            PayloadKind.DOCUMENT: "File",
            PayloadKind.PHOTO: "Image",
            PayloadKind.VIDEO: "Video",
            PayloadKind.TEXT: "Text",
        }[self]


class ChatOutcome(str, Enum):
    """Result of a getChat lookup as seen by the reconciler"""

    OK = "ok"
    DELETED = "deleted"  # profile looks like a deleted account
    DEACTIVATED = "deactivated"
    UNREACHABLE = "unreachable"
    BLOCKED = "blocked"
    TRANSIENT = "transient"

    @property
    def removal_category(self) -> "RemovalCategory | None":
        """Ledger category for outcomes that evict the user, else None."""
        return {
            ChatOutcome.DELETED: RemovalCategory.DELETED,
            ChatOutcome.DEACTIVATED: RemovalCategory.DELETED,
            ChatOutcome.UNREACHABLE: RemovalCategory.UNREACHABLE,
            ChatOutcome.BLOCKED: RemovalCategory.BLOCKED,
        }.get(self)


class AdminDecision(str, Enum):
    """Admin verdict on a payment claim"""

    CONFIRM = "confirm"
    CANCEL = "cancel"
