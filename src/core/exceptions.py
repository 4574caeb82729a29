"""
Error taxonomy shared by the order engine, chat facade, watcher and reconciler.

Every exception carries a short user-visible ``message``. Handlers never show
raw tracebacks or third-party error strings to customers.
"""

from typing import Optional

from src.core.enums import OrderStatus, RemovalCategory


class ShopError(Exception):
    """Base class for all marketplace errors"""

    default_message = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ===========================
# Caller errors
# ===========================


class ValidationError(ShopError):
    """Malformed callback payload, unknown entity or foreign order"""

    default_message = "Invalid request."


class ProductNotFound(ValidationError):
    default_message = "❌ Product not found."


class OrderNotFound(ValidationError):
    default_message = "❌ Order not found or access denied."


class StateError(ShopError):
    """Event is not legal in the order's current state"""

    def __init__(self, current_status: OrderStatus, message: Optional[str] = None):
        self.current_status = current_status
        super().__init__(message or f"Order is already {current_status.value.replace('_', ' ')}.")


class CooldownError(ShopError):
    """Throttle refusal"""

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = max(1, int(retry_after))
        super().__init__(message or f"⏳ Please wait {self.retry_after}s before trying again.")


# ===========================
# External errors
# ===========================


class ExternalTransient(ShopError):
    """Retryable failure of the chat platform or an explorer"""

    default_message = "⚠️ Temporary error, please try again in a moment."


class ExternalFatal(ShopError):
    """Chat platform rejected the target permanently"""

    category: RemovalCategory = RemovalCategory.UNREACHABLE
    default_message = "Recipient cannot be reached."


class ChatDeactivated(ExternalFatal):
    category = RemovalCategory.DELETED
    default_message = "Account deactivated"


class ChatUnreachable(ExternalFatal):
    category = RemovalCategory.UNREACHABLE
    default_message = "Chat not found / unresolvable"


class ChatBlocked(ExternalFatal):
    category = RemovalCategory.BLOCKED
    default_message = "User blocked the bot"


class ChatTransient(ExternalTransient):
    pass


class ExplorerError(ExternalTransient):
    """Explorer provider returned an error or an unparseable body"""

    def __init__(self, provider: str, message: Optional[str] = None):
        self.provider = provider
        super().__init__(f"{provider}: {message or 'request failed'}")


class PersistenceError(ShopError):
    """Database failure; the operation is abandoned"""

    default_message = "⚠️ Database error, please try again."
