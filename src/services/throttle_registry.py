# coding: utf-8
"""
Throttle & dedup registry

Process-local, in-memory state shared by the bot handlers and the
blockchain watcher:

- per-(user, action) button cooldowns
- per-(user, order) payment-confirmation history (duplicate check, cooldown, hourly cap)
- in-flight confirmation reservations
- the set of transaction ids the watcher has already handled

All methods are synchronous and never await, so under asyncio every call
runs atomically with respect to other tasks.
"""

import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Set, Tuple

from loguru import logger

from config.config import Cooldowns


HOUR = 3600


class ThrottleRegistry:
    """
    Cooldowns, confirmation limits and the seen-transaction set

    Args:
        action_windows: cooldown seconds per action name (confirm/status/cancel/copy)
        confirmation_cooldown: minimum gap between two recorded confirmations of one order
        max_confirmations_per_hour: hourly cap per (user, order)
        duplicate_window: how long a recorded confirmation counts as a duplicate
        clock: monotonic time source, injectable for tests
    """

    def __init__(
        self,
        action_windows: Optional[Dict[str, int]] = None,
        confirmation_cooldown: int = Cooldowns.CONFIRMATION_COOLDOWN,
        max_confirmations_per_hour: int = Cooldowns.CONFIRMATION_MAX_PER_HOUR,
        duplicate_window: int = Cooldowns.CONFIRMATION_DUPLICATE_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.action_windows = action_windows if action_windows is not None else Cooldowns.action_windows()
        self.confirmation_cooldown = confirmation_cooldown
        self.max_confirmations_per_hour = max_confirmations_per_hour
        self.duplicate_window = duplicate_window
        self._clock = clock

        self._last_action: Dict[Tuple[int, str], float] = {}
        self._confirmations: Dict[Tuple[int, int], Deque[float]] = {}
        self._in_flight: Set[Tuple[int, int]] = set()
        self._seen_txids: Set[str] = set()

    # ===========================
    # Button cooldowns
    # ===========================

    def can_perform(self, user_id: int, action: str) -> Tuple[bool, int]:
        """
        Check and consume the (user, action) cooldown

        An allowed call starts a new window; a refused call does not.

        Returns:
            (allowed, retry_after_seconds)
        """
        window = self.action_windows.get(action, 0)
        now = self._clock()
        key = (user_id, action)
        last = self._last_action.get(key)

        if last is not None and now - last < window:
            retry_after = int(window - (now - last)) + 1
            logger.debug(f"Cooldown: user {user_id} action {action} retry in {retry_after}s")
            return False, retry_after

        self._last_action[key] = now
        return True, 0

    # ===========================
    # Payment confirmations
    # ===========================

    def _history(self, user_id: int, order_id: int) -> Deque[float]:
        """Confirmation timestamps for the bucket, pruned to the last hour"""
        bucket = self._confirmations.setdefault((user_id, order_id), deque())
        horizon = self._clock() - max(HOUR, self.duplicate_window)
        while bucket and bucket[0] < horizon:
            bucket.popleft()
        return bucket

    def is_duplicate_confirmation(self, user_id: int, order_id: int) -> bool:
        """True if a claim is in flight or was recorded within the duplicate window"""
        if (user_id, order_id) in self._in_flight:
            return True
        bucket = self._history(user_id, order_id)
        if not bucket:
            return False
        return self._clock() - bucket[-1] < self.duplicate_window

    def confirmation_count(self, user_id: int, order_id: int, window: int = HOUR) -> int:
        """Number of recorded confirmations for the bucket within ``window`` seconds"""
        horizon = self._clock() - window
        return sum(1 for ts in self._history(user_id, order_id) if ts >= horizon)

    def confirmation_retry_after(self, user_id: int, order_id: int) -> int:
        """Seconds until the per-order confirmation cooldown expires (0 if clear)"""
        bucket = self._history(user_id, order_id)
        if not bucket:
            return 0
        elapsed = self._clock() - bucket[-1]
        if elapsed >= self.confirmation_cooldown:
            return 0
        return int(self.confirmation_cooldown - elapsed) + 1

    def reserve_confirmation(self, user_id: int, order_id: int) -> bool:
        """
        Mark a claim for (user, order) as in flight

        Returns:
            False if another claim for the same bucket is already in flight
        """
        key = (user_id, order_id)
        if key in self._in_flight:
            return False
        self._in_flight.add(key)
        return True

    def release_confirmation(self, user_id: int, order_id: int) -> None:
        """Drop an in-flight reservation without recording it"""
        self._in_flight.discard((user_id, order_id))

    def record_confirmation(self, user_id: int, order_id: int) -> None:
        """
        Record a confirmation whose admin notification has been dispatched

        Also clears the in-flight reservation for the bucket.
        """
        self._history(user_id, order_id).append(self._clock())
        self._in_flight.discard((user_id, order_id))
        logger.debug(f"Confirmation recorded: user {user_id} order {order_id}")

    # ===========================
    # Seen transactions
    # ===========================

    def seen_txid(self, txid: str) -> bool:
        return txid in self._seen_txids

    def mark_seen(self, txid: str) -> None:
        self._seen_txids.add(txid)

    # ===========================
    # Maintenance
    # ===========================

    def cleanup(self) -> int:
        """
        Drop cooldown entries and confirmation buckets older than an hour

        Returns:
            Number of entries removed
        """
        now = self._clock()
        removed = 0

        stale_actions = [key for key, ts in self._last_action.items() if now - ts > HOUR]
        for key in stale_actions:
            del self._last_action[key]
        removed += len(stale_actions)

        for key in list(self._confirmations):
            if not self._history(*key) and key not in self._in_flight:
                del self._confirmations[key]
                removed += 1

        if removed:
            logger.debug(f"Throttle registry cleanup: {removed} stale entries removed")
        return removed

    def stats(self) -> Dict[str, int]:
        return {
            "cooldowns": len(self._last_action),
            "confirmation_buckets": len(self._confirmations),
            "in_flight": len(self._in_flight),
            "seen_transactions": len(self._seen_txids),
        }
