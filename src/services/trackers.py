# coding: utf-8
"""
In-memory trackers used by the order engine and the operator commands

- DeliveryTracker: admin-chat message id -> (order, buyer) so that admin
  replies to upload requests and delivery confirmations can be routed
- SessionStore: per-user interactive sessions (poke wizard, buyer reply
  mode, admin /deliver) that expire after a period of inactivity
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from loguru import logger

from config.config import DELIVERY_TRACKING_TTL, SESSION_TIMEOUT


# ===========================
# Delivery tracking
# ===========================


class TrackingKind(str, Enum):
    UPLOAD_REQUEST = "upload_request"  # reply delivers the product
    DELIVERY = "delivery"  # reply is forwarded to the buyer as a support message


@dataclass(frozen=True)
class TrackedMessage:
    kind: TrackingKind
    order_id: int
    buyer_id: int
    admin_chat_id: int
    created_at: float


class DeliveryTracker:
    """
    Maps (admin chat id, message id) to the order it concerns

    Args:
        ttl: seconds an entry stays routable
        clock: time source, injectable for tests
    """

    def __init__(self, ttl: int = DELIVERY_TRACKING_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Tuple[int, int], TrackedMessage] = {}

    def track(
        self,
        kind: TrackingKind,
        admin_chat_id: int,
        message_id: int,
        order_id: int,
        buyer_id: int,
    ) -> TrackedMessage:
        entry = TrackedMessage(kind, order_id, buyer_id, admin_chat_id, self._clock())
        self._entries[(admin_chat_id, message_id)] = entry
        logger.debug(f"Tracking {kind.value} message {message_id} in {admin_chat_id} for order {order_id}")
        return entry

    def lookup(self, admin_chat_id: int, message_id: int) -> Optional[TrackedMessage]:
        key = (admin_chat_id, message_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.created_at > self.ttl:
            del self._entries[key]
            return None
        return entry

    def forget_order(self, order_id: int, kind: TrackingKind) -> None:
        """Drop every entry of ``kind`` for an order"""
        for key in [k for k, e in self._entries.items() if e.order_id == order_id and e.kind is kind]:
            del self._entries[key]

    def cleanup(self) -> int:
        """Remove expired entries, returns how many were dropped"""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.created_at > self.ttl]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"Delivery tracker cleanup: {len(expired)} expired entries removed")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


# ===========================
# Interactive sessions
# ===========================


class SessionKind(str, Enum):
    POKE = "poke"
    REPLY_MODE = "reply_mode"
    DELIVER = "deliver"


@dataclass
class InteractiveSession:
    kind: SessionKind
    step: str
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    touched_at: float = 0.0


class SessionStore:
    """
    One optional session per user, expiring ``timeout`` seconds after last activity

    Args:
        timeout: inactivity timeout in seconds
        clock: time source, injectable for tests
    """

    def __init__(self, timeout: int = SESSION_TIMEOUT, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._clock = clock
        self._sessions: Dict[int, InteractiveSession] = {}

    def start(self, user_id: int, kind: SessionKind, step: str, **payload: Any) -> InteractiveSession:
        """Start a session, replacing any previous one for the user"""
        now = self._clock()
        session = InteractiveSession(kind, step, dict(payload), now, now)
        self._sessions[user_id] = session
        return session

    def get(self, user_id: int, kind: Optional[SessionKind] = None) -> Optional[InteractiveSession]:
        """
        Active session for the user, optionally filtered by kind

        Expired sessions are dropped on access.
        """
        session = self._sessions.get(user_id)
        if session is None:
            return None
        if self._clock() - session.touched_at > self.timeout:
            del self._sessions[user_id]
            logger.debug(f"{session.kind.value} session of user {user_id} expired")
            return None
        if kind is not None and session.kind is not kind:
            return None
        return session

    def advance(self, user_id: int, step: str, **payload: Any) -> Optional[InteractiveSession]:
        """Move an active session to ``step`` and refresh its timer"""
        session = self.get(user_id)
        if session is None:
            return None
        session.step = step
        session.payload.update(payload)
        session.touched_at = self._clock()
        return session

    def clear(self, user_id: int) -> Optional[InteractiveSession]:
        return self._sessions.pop(user_id, None)

    def cleanup(self) -> int:
        now = self._clock()
        expired = [uid for uid, s in self._sessions.items() if now - s.touched_at > self.timeout]
        for user_id in expired:
            del self._sessions[user_id]
        return len(expired)

    @property
    def timeout_minutes(self) -> int:
        return max(1, self.timeout // 60)
