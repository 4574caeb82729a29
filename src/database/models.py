"""
Database models for the Digistore marketplace bot

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, date, UTC
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Text,
    Integer,
    Boolean,
    DateTime,
    Date,
    ForeignKey,
    UniqueConstraint,
    Numeric,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.core.enums import OrderStatus


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ===========================
# USERS
# ===========================


class User(Base):
    """
    User model - identity on the chat platform

    Created on first /start, refreshed by user activity and by the
    directory reconciler, deleted only by the reconciler after archiving.
    """

    __tablename__ = "users"

    telegram_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=False, comment="Telegram user ID"
    )
    username: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True, comment="Telegram username without @"
    )
    first_name: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="User first name"
    )
    last_name: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="User last name"
    )
    language_code: Mapped[str] = mapped_column(
        String(10), default="en", nullable=False, comment="Telegram language code"
    )
    is_admin: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, comment="Informational admin flag"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
        comment="User registration timestamp",
    )
    last_activity: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
        comment="Last user activity timestamp",
    )

    def __repr__(self) -> str:
        return f"<User(telegram_id={self.telegram_id}, username={self.username})>"


# ===========================
# CATALOG (read-only for the core)
# ===========================


class Category(Base):
    """Catalog category; parent_id NULL for root categories"""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True
    )

    products: Mapped[list["Product"]] = relationship(back_populates="category")

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, name={self.name})>"


class Product(Base):
    """Catalog item"""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, comment="Price in USD"
    )
    category_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True
    )

    category: Mapped[Optional[Category]] = relationship(back_populates="products")

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, name={self.name}, price={self.price})>"


class WalletAddress(Base):
    """
    Deposit address for a currency

    Several rows per currency are allowed; the most recently added active
    row wins. active=NULL is treated as active.
    """

    __tablename__ = "wallet_addresses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(128), nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tag: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    added_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    active: Mapped[Optional[bool]] = mapped_column(Boolean, default=True, nullable=True)

    def __repr__(self) -> str:
        return f"<WalletAddress(currency={self.currency}, address={self.address[:12]}...)>"


# ===========================
# ORDERS
# ===========================


class Order(Base):
    """
    Order model - central lifecycle object

    price and currency are frozen at creation. user_id is the buyer's
    telegram id and is not a foreign key so the reconciler can evict users
    that have historic orders.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, nullable=False, index=True, comment="Buyer telegram id"
    )
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id"), nullable=False, index=True
    )
    price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, comment="USD price snapshot"
    )
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32),
        default=OrderStatus.PENDING.value,
        server_default=OrderStatus.PENDING.value,
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    product: Mapped[Product] = relationship(lazy="joined")

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, user_id={self.user_id}, status={self.status})>"


# ===========================
# BLOCKCHAIN WATCHER
# ===========================


class DetectedTransaction(Base):
    """
    Append-only sighting of an inbound transfer to a watched address

    txid uniqueness is the primary dedup guarantee. amount "0" means unknown
    (providers that only list txids).
    """

    __tablename__ = "detected_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    txid: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    address: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    amount: Mapped[str] = mapped_column(
        String(32), nullable=False, default="0", comment="Coin units, 8 decimals"
    )
    confirmations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    block_height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<DetectedTransaction(txid={self.txid[:16]}..., currency={self.currency})>"


# ===========================
# DIRECTORY RECONCILER
# ===========================


class RemovedUserLedger(Base):
    """
    Archive of users evicted by the reconciler

    Write-once except for restored_at. (telegram_id, removed_on) is the
    deterministic key that keeps a re-run after a crash from archiving the
    same user twice on the same day.
    """

    __tablename__ = "removed_users_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    language_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    original_created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_activity: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    removal_reason: Mapped[str] = mapped_column(String(255), nullable=False)
    removal_category: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    api_error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    removed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False, index=True
    )
    removed_on: Mapped[date] = mapped_column(
        Date, nullable=False, comment="UTC date of removal, part of the upsert key"
    )
    restored_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("telegram_id", "removed_on", name="uq_ledger_user_day"),
        Index("ix_ledger_category_restored", "removal_category", "restored_at"),
    )

    def __repr__(self) -> str:
        return f"<RemovedUserLedger(telegram_id={self.telegram_id}, category={self.removal_category})>"
