"""
Unit tests for the throttle & dedup registry
"""

import pytest

from src.services.throttle_registry import ThrottleRegistry


@pytest.fixture
def registry(clock) -> ThrottleRegistry:
    return ThrottleRegistry(
        action_windows={"confirm": 2, "status": 2, "cancel": 3, "copy": 1},
        confirmation_cooldown=15,
        max_confirmations_per_hour=5,
        duplicate_window=3600,
        clock=clock,
    )


def test_cooldown_blocks_second_press_within_window(registry, clock):
    assert registry.can_perform(1, "cancel") == (True, 0)

    clock.advance(1)
    allowed, retry_after = registry.can_perform(1, "cancel")
    assert allowed is False
    assert retry_after == 3

    clock.advance(2)
    assert registry.can_perform(1, "cancel") == (True, 0)


def test_refused_press_does_not_extend_window(registry, clock):
    registry.can_perform(1, "status")
    clock.advance(1.5)
    registry.can_perform(1, "status")

    clock.advance(0.5)
    assert registry.can_perform(1, "status")[0] is True


def test_cooldowns_are_per_user_and_action(registry):
    assert registry.can_perform(1, "copy")[0] is True
    assert registry.can_perform(2, "copy")[0] is True
    assert registry.can_perform(1, "status")[0] is True
    assert registry.can_perform(1, "unknown")[0] is True
    assert registry.can_perform(1, "unknown")[0] is True


def test_in_flight_claim_counts_as_duplicate(registry):
    assert registry.reserve_confirmation(1, 10) is True
    assert registry.is_duplicate_confirmation(1, 10) is True
    assert registry.reserve_confirmation(1, 10) is False

    registry.release_confirmation(1, 10)
    assert registry.is_duplicate_confirmation(1, 10) is False


def test_recorded_confirmation_is_duplicate_for_an_hour(registry, clock):
    registry.reserve_confirmation(1, 10)
    registry.record_confirmation(1, 10)

    assert registry.is_duplicate_confirmation(1, 10) is True
    assert registry.is_duplicate_confirmation(1, 11) is False
    assert registry.is_duplicate_confirmation(2, 10) is False

    clock.advance(3601)
    assert registry.is_duplicate_confirmation(1, 10) is False


def test_confirmation_cooldown_and_count(registry, clock):
    registry.record_confirmation(1, 10)
    clock.advance(5)

    assert registry.confirmation_retry_after(1, 10) == 11
    assert registry.confirmation_count(1, 10) == 1

    clock.advance(10)
    assert registry.confirmation_retry_after(1, 10) == 0

    for _ in range(4):
        registry.record_confirmation(1, 10)
    assert registry.confirmation_count(1, 10) == 5

    clock.advance(3601)
    assert registry.confirmation_count(1, 10) == 0


def test_seen_txids(registry):
    assert registry.seen_txid("abc") is False
    registry.mark_seen("abc")
    assert registry.seen_txid("abc") is True


def test_cleanup_drops_stale_entries(registry, clock):
    registry.can_perform(1, "confirm")
    registry.record_confirmation(1, 10)
    registry.reserve_confirmation(2, 20)

    clock.advance(3700)
    removed = registry.cleanup()

    assert removed == 2
    stats = registry.stats()
    assert stats["cooldowns"] == 0
    assert stats["confirmation_buckets"] == 0
    assert stats["in_flight"] == 1
