"""
CRUD operations for the Digistore marketplace bot

Async database operations using SQLAlchemy 2.0. Functions commit their own
writes; callers own the session.
"""

import logging
from datetime import datetime, UTC
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.enums import Currency, OrderStatus, RemovalCategory
from src.database.models import (
    User,
    Category,
    Product,
    WalletAddress,
    Order,
    DetectedTransaction,
    RemovedUserLedger,
)

logger = logging.getLogger(__name__)


# ===========================
# USER OPERATIONS
# ===========================


async def get_user(session: AsyncSession, telegram_id: int) -> Optional[User]:
    """
    Get user by Telegram ID

    Args:
        session: Database session
        telegram_id: Telegram user ID

    Returns:
        User model or None
    """
    return await session.get(User, telegram_id)


async def register_user(
    session: AsyncSession,
    telegram_id: int,
    username: Optional[str],
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    language_code: Optional[str] = None,
) -> Tuple[User, bool]:
    """
    Insert a new user or refresh the profile of an existing one

    Args:
        session: Database session
        telegram_id: Telegram user ID
        username: Telegram username (without @)
        first_name: User first name
        last_name: User last name
        language_code: Telegram language code

    Returns:
        Tuple of (User model, is_created)
    """
    user = await get_user(session, telegram_id)
    now = datetime.now(UTC)

    if user:
        user.username = username
        user.first_name = first_name
        user.last_name = last_name
        if language_code:
            user.language_code = language_code
        user.last_activity = now
        await session.commit()
        return user, False

    user = User(
        telegram_id=telegram_id,
        username=username,
        first_name=first_name,
        last_name=last_name,
        language_code=language_code or "en",
        created_at=now,
        last_activity=now,
    )
    session.add(user)
    await session.commit()

    logger.info(f"User registered: {telegram_id} (@{username})")
    return user, True


async def touch_user(session: AsyncSession, telegram_id: int) -> None:
    """Bump last_activity for a known user; unknown users are ignored."""
    await session.execute(
        update(User)
        .where(User.telegram_id == telegram_id)
        .values(last_activity=datetime.now(UTC))
    )
    await session.commit()


async def list_users_ordered(session: AsyncSession) -> List[User]:
    """All users ordered by telegram id"""
    result = await session.execute(select(User).order_by(User.telegram_id))
    return list(result.scalars().all())


async def update_username(
    session: AsyncSession, telegram_id: int, username: Optional[str]
) -> None:
    await session.execute(
        update(User).where(User.telegram_id == telegram_id).values(username=username)
    )
    await session.commit()


async def find_users_by_usernames(
    session: AsyncSession, usernames: Iterable[str]
) -> List[User]:
    """
    Case-insensitive username lookup

    Args:
        session: Database session
        usernames: Usernames, with or without leading @

    Returns:
        Matching users
    """
    normalized = {name.strip().lstrip("@").lower() for name in usernames if name.strip().lstrip("@")}
    if not normalized:
        return []

    stmt = select(User).where(func.lower(User.username).in_(normalized))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def archive_and_delete_user(
    session: AsyncSession,
    user: User,
    category: RemovalCategory,
    reason: str,
    api_error_message: Optional[str] = None,
    removed_at: Optional[datetime] = None,
) -> bool:
    """
    Archive a user into the removed-users ledger and delete the user row

    Both writes share one transaction. The ledger row is keyed on
    (telegram_id, removal date) so a re-run on the same day never archives
    the same user twice.

    Args:
        session: Database session
        user: Snapshot of the user being evicted
        category: Removal category
        reason: Human-readable removal reason
        api_error_message: Raw platform error, if any
        removed_at: Removal timestamp (defaults to now)

    Returns:
        True if a new ledger row was written, False if one already existed
    """
    removed_at = removed_at or datetime.now(UTC)
    removed_on = removed_at.date()

    existing = await session.execute(
        select(RemovedUserLedger.id).where(
            RemovedUserLedger.telegram_id == user.telegram_id,
            RemovedUserLedger.removed_on == removed_on,
        )
    )
    created = existing.scalar_one_or_none() is None

    try:
        if created:
            session.add(
                RemovedUserLedger(
                    telegram_id=user.telegram_id,
                    username=user.username,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    language_code=user.language_code,
                    original_created_at=user.created_at,
                    last_activity=user.last_activity,
                    removal_reason=reason,
                    removal_category=category.value,
                    api_error_message=api_error_message,
                    removed_at=removed_at,
                    removed_on=removed_on,
                )
            )
            await session.flush()

        await session.execute(delete(User).where(User.telegram_id == user.telegram_id))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        f"User {user.telegram_id} archived ({category.value}: {reason}) and removed"
        + ("" if created else " - ledger entry already present")
    )
    return created


# ===========================
# CATALOG OPERATIONS
# ===========================


async def list_root_categories(session: AsyncSession) -> List[Category]:
    result = await session.execute(
        select(Category).where(Category.parent_id.is_(None)).order_by(Category.name)
    )
    return list(result.scalars().all())


async def list_subcategories(session: AsyncSession, parent_id: int) -> List[Category]:
    result = await session.execute(
        select(Category).where(Category.parent_id == parent_id).order_by(Category.name)
    )
    return list(result.scalars().all())


async def get_category(session: AsyncSession, category_id: int) -> Optional[Category]:
    return await session.get(Category, category_id)


async def list_products_in_category(session: AsyncSession, category_id: int) -> List[Product]:
    result = await session.execute(
        select(Product).where(Product.category_id == category_id).order_by(Product.name)
    )
    return list(result.scalars().all())


async def get_product(session: AsyncSession, product_id: int) -> Optional[Product]:
    return await session.get(Product, product_id)


# ===========================
# WALLET OPERATIONS
# ===========================


def _is_active():
    return or_(WalletAddress.active.is_(True), WalletAddress.active.is_(None))


async def get_active_wallet_address(
    session: AsyncSession, currency: Currency
) -> Optional[str]:
    """
    Most recently added active deposit address for a currency

    Args:
        session: Database session
        currency: Payment currency

    Returns:
        Address string or None when no active row exists
    """
    stmt = (
        select(WalletAddress.address)
        .where(WalletAddress.currency == currency.value, _is_active())
        .order_by(WalletAddress.added_at.desc(), WalletAddress.id.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_watched_addresses(session: AsyncSession) -> List[Tuple[Currency, str]]:
    """Distinct (currency, address) pairs of every active wallet row"""
    stmt = (
        select(WalletAddress.currency, WalletAddress.address)
        .where(_is_active())
        .distinct()
    )
    result = await session.execute(stmt)

    watched = []
    for currency, address in result.all():
        try:
            watched.append((Currency.parse(currency), address))
        except ValueError:
            logger.warning(f"Skipping wallet address with unsupported currency {currency!r}")
    return watched


# ===========================
# ORDER OPERATIONS
# ===========================


async def create_order(
    session: AsyncSession, user_id: int, product: Product, currency: Currency
) -> Order:
    """
    Create a pending order with a price and currency snapshot

    Args:
        session: Database session
        user_id: Buyer telegram id
        product: Product being purchased
        currency: Chosen payment currency

    Returns:
        Created Order model
    """
    order = Order(
        user_id=user_id,
        product_id=product.id,
        price=product.price,
        currency=currency.value,
        status=OrderStatus.PENDING.value,
    )
    session.add(order)
    await session.commit()
    await session.refresh(order)

    logger.info(f"Order {order.id} created: user={user_id} product={product.id} {currency.value}")
    return order


async def get_order(session: AsyncSession, order_id: int) -> Optional[Order]:
    result = await session.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_order(
    session: AsyncSession, order_id: int, user_id: int
) -> Optional[Order]:
    """Order by id, only if it belongs to user_id"""
    result = await session.execute(
        select(Order)
        .where(Order.id == order_id, Order.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def transition_order_status(
    session: AsyncSession,
    order_id: int,
    expected: OrderStatus,
    target: OrderStatus,
) -> bool:
    """
    Conditionally move an order from ``expected`` to ``target``

    Runs ``UPDATE orders SET status=target WHERE id=? AND status=expected``;
    the affected row count decides whether the transition happened.

    Args:
        session: Database session
        order_id: Order ID
        expected: Status the order must currently have
        target: New status

    Returns:
        True if exactly this call performed the transition

    Raises:
        ValueError: if expected -> target is not a legal transition
    """
    if not OrderStatus.can_transition(expected, target):
        raise ValueError(f"Illegal order transition {expected.value} -> {target.value}")

    result = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == expected.value)
        .values(status=target.value, updated_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    await session.commit()

    changed = result.rowcount == 1
    if changed:
        logger.info(f"Order {order_id}: {expected.value} -> {target.value}")
    else:
        logger.info(f"Order {order_id}: transition {expected.value} -> {target.value} lost (status changed)")
    return changed


# ===========================
# DETECTED TRANSACTIONS
# ===========================


async def get_detected_transaction(
    session: AsyncSession, txid: str
) -> Optional[DetectedTransaction]:
    result = await session.execute(
        select(DetectedTransaction).where(DetectedTransaction.txid == txid)
    )
    return result.scalar_one_or_none()


async def insert_detected_transaction(
    session: AsyncSession,
    txid: str,
    currency: Currency,
    address: str,
    amount: str,
    confirmations: int,
    block_height: Optional[int],
) -> DetectedTransaction:
    """
    Insert a transaction sighting

    Raises:
        sqlalchemy.exc.IntegrityError: txid already recorded (session is rolled back)
    """
    sighting = DetectedTransaction(
        txid=txid,
        currency=currency.value,
        address=address,
        amount=amount,
        confirmations=confirmations,
        block_height=block_height,
    )
    session.add(sighting)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return sighting


# ===========================
# REMOVED USERS LEDGER
# ===========================


async def get_ledger_stats(session: AsyncSession) -> Dict[str, int]:
    """
    Count un-restored ledger entries per removal category

    Returns:
        Dict category -> count, plus "total"
    """
    stmt = (
        select(RemovedUserLedger.removal_category, func.count(RemovedUserLedger.id))
        .where(RemovedUserLedger.restored_at.is_(None))
        .group_by(RemovedUserLedger.removal_category)
    )
    result = await session.execute(stmt)

    stats = {category.value: 0 for category in RemovalCategory}
    for category, count in result.all():
        stats[category] = count
    stats["total"] = sum(stats.values())
    return stats


async def get_recent_ledger_entries(
    session: AsyncSession, limit: int = 10
) -> List[RemovedUserLedger]:
    result = await session.execute(
        select(RemovedUserLedger)
        .order_by(RemovedUserLedger.removed_at.desc(), RemovedUserLedger.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
