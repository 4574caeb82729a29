"""
Unit tests for CRUD operations
"""

import pytest
from datetime import datetime, UTC
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from src.core.enums import Currency, OrderStatus, RemovalCategory
from src.database.crud import (
    register_user,
    get_user,
    update_username,
    find_users_by_usernames,
    list_users_ordered,
    archive_and_delete_user,
    get_active_wallet_address,
    list_watched_addresses,
    create_order,
    get_order,
    get_user_order,
    transition_order_status,
    get_detected_transaction,
    insert_detected_transaction,
    get_ledger_stats,
    get_recent_ledger_entries,
    list_root_categories,
    list_products_in_category,
)
from src.database.models import Category, RemovedUserLedger, WalletAddress


@pytest.mark.asyncio
async def test_register_user(db_session):
    """Test user registration and profile refresh"""
    user, created = await register_user(
        db_session,
        telegram_id=123456789,
        username="test_user",
        first_name="Test",
        last_name="User",
    )

    assert created is True
    assert user.telegram_id == 123456789
    assert user.username == "test_user"
    assert user.language_code == "en"  # default
    assert not user.is_admin

    again, created = await register_user(db_session, telegram_id=123456789, username="renamed")
    assert created is False
    assert again.username == "renamed"


@pytest.mark.asyncio
async def test_find_users_by_usernames_is_case_insensitive(db_session):
    """Usernames match case-insensitively, with or without @"""
    await register_user(db_session, 1, "Alice")
    await register_user(db_session, 2, "bob")
    await register_user(db_session, 3, None)

    users = await find_users_by_usernames(db_session, ["@alice", "BOB", "carol"])

    assert sorted(u.telegram_id for u in users) == [1, 2]
    assert await find_users_by_usernames(db_session, ["@", " "]) == []


@pytest.mark.asyncio
async def test_update_username(db_session, alice):
    await update_username(db_session, alice.telegram_id, None)
    db_session.expire_all()

    user = await get_user(db_session, alice.telegram_id)
    assert user.username is None


@pytest.mark.asyncio
async def test_archive_and_delete_user_writes_ledger_first(db_session, alice):
    """Eviction leaves exactly one ledger row and removes the user"""
    created = await archive_and_delete_user(
        db_session, alice, RemovalCategory.DELETED, "Account deactivated", "Bad Request: user is deactivated"
    )

    assert created is True
    db_session.expunge_all()
    assert await get_user(db_session, alice.telegram_id) is None

    entries = await get_recent_ledger_entries(db_session)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.telegram_id == 1001
    assert entry.username == "alice"
    assert entry.removal_category == "deleted"
    assert entry.api_error_message == "Bad Request: user is deactivated"
    assert entry.restored_at is None


@pytest.mark.asyncio
async def test_archive_is_idempotent_per_day(db_session, alice):
    """A re-run on the same day does not archive the same user twice"""
    removed_at = datetime(2026, 3, 1, 1, 0, tzinfo=UTC)
    await archive_and_delete_user(db_session, alice, RemovalCategory.BLOCKED, "User blocked the bot", removed_at=removed_at)

    # user reappears (e.g. crash before delete was observed) and is evicted again later that day
    db_session.expunge_all()
    await register_user(db_session, 1001, "alice")
    created = await archive_and_delete_user(
        db_session, alice, RemovalCategory.BLOCKED, "User blocked the bot",
        removed_at=removed_at.replace(hour=5),
    )

    assert created is False
    db_session.expunge_all()
    assert await get_user(db_session, 1001) is None
    assert len(await get_recent_ledger_entries(db_session)) == 1


@pytest.mark.asyncio
async def test_ledger_stats_count_unrestored_only(db_session):
    now = datetime.now(UTC)
    db_session.add_all([
        RemovedUserLedger(telegram_id=1, removal_reason="r", removal_category="deleted", removed_at=now, removed_on=now.date()),
        RemovedUserLedger(telegram_id=2, removal_reason="r", removal_category="deleted", removed_at=now, removed_on=now.date()),
        RemovedUserLedger(telegram_id=3, removal_reason="r", removal_category="blocked", removed_at=now, removed_on=now.date()),
        RemovedUserLedger(
            telegram_id=4, removal_reason="r", removal_category="unreachable",
            removed_at=now, removed_on=now.date(), restored_at=now,
        ),
    ])
    await db_session.commit()

    stats = await get_ledger_stats(db_session)

    assert stats == {"deleted": 2, "unreachable": 0, "blocked": 1, "total": 3}


@pytest.mark.asyncio
async def test_list_users_ordered(db_session):
    for telegram_id in (30, 10, 20):
        await register_user(db_session, telegram_id, f"u{telegram_id}")

    assert [u.telegram_id for u in await list_users_ordered(db_session)] == [10, 20, 30]


@pytest.mark.asyncio
async def test_catalog_queries(db_session, catalog):
    db_session.add(Category(id=2, name="Games", parent_id=1))
    await db_session.commit()

    roots = await list_root_categories(db_session)
    assert [c.name for c in roots] == ["Software"]

    products = await list_products_in_category(db_session, 1)
    assert [p.id for p in products] == [7]


@pytest.mark.asyncio
async def test_active_wallet_address_prefers_latest_active(db_session):
    """Latest active row wins; NULL counts as active; inactive rows are ignored"""
    db_session.add_all([
        WalletAddress(currency="BTC", address="old", added_at=datetime(2024, 1, 1, tzinfo=UTC), active=True),
        WalletAddress(currency="BTC", address="legacy-null", added_at=datetime(2024, 6, 1, tzinfo=UTC), active=None),
        WalletAddress(currency="BTC", address="disabled", added_at=datetime(2025, 1, 1, tzinfo=UTC), active=False),
    ])
    await db_session.commit()

    assert await get_active_wallet_address(db_session, Currency.BTC) == "legacy-null"
    assert await get_active_wallet_address(db_session, Currency.LTC) is None

    watched = await list_watched_addresses(db_session)
    assert sorted(address for _, address in watched) == ["legacy-null", "old"]


@pytest.mark.asyncio
async def test_create_order_snapshots_price(db_session, catalog):
    order = await create_order(db_session, 1001, catalog, Currency.BTC)

    assert order.status == OrderStatus.PENDING.value
    assert order.price == Decimal("25.00")
    assert order.currency == "BTC"

    catalog.price = Decimal("30.00")
    await db_session.commit()
    reloaded = await get_order(db_session, order.id)
    assert reloaded.price == Decimal("25.00")


@pytest.mark.asyncio
async def test_get_user_order_checks_ownership(db_session, catalog):
    order = await create_order(db_session, 1001, catalog, Currency.LTC)

    assert await get_user_order(db_session, order.id, 1001) is not None
    assert await get_user_order(db_session, order.id, 2002) is None


@pytest.mark.asyncio
async def test_transition_order_status_is_conditional(db_session, catalog):
    """Only the first of two competing transitions from pending succeeds"""
    order = await create_order(db_session, 1001, catalog, Currency.BTC)

    first = await transition_order_status(db_session, order.id, OrderStatus.PENDING, OrderStatus.AWAITING_PRODUCT)
    second = await transition_order_status(db_session, order.id, OrderStatus.PENDING, OrderStatus.CANCELLED)

    assert first is True
    assert second is False
    reloaded = await get_order(db_session, order.id)
    assert reloaded.order_status is OrderStatus.AWAITING_PRODUCT


@pytest.mark.asyncio
async def test_transition_order_status_rejects_illegal_transition(db_session, catalog):
    order = await create_order(db_session, 1001, catalog, Currency.BTC)

    with pytest.raises(ValueError):
        await transition_order_status(db_session, order.id, OrderStatus.PENDING, OrderStatus.DELIVERED)


@pytest.mark.asyncio
async def test_detected_transaction_txid_is_unique(db_session):
    await insert_detected_transaction(db_session, "tx1", Currency.BTC, "bc1q", "0.00100000", 1, 800000)

    with pytest.raises(IntegrityError):
        await insert_detected_transaction(db_session, "tx1", Currency.BTC, "bc1q", "0.00100000", 2, 800000)

    stored = await get_detected_transaction(db_session, "tx1")
    assert stored.amount == "0.00100000"
    assert stored.confirmations == 1
