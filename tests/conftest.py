"""
Pytest configuration and fixtures for the Digistore marketplace bot tests
"""

import itertools
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.enums import ChatOutcome
from src.core.exceptions import ShopError
from src.database.models import Base, Category, Product, User, WalletAddress
from src.services.chat_client import ChatLookup, ChatProfile
from src.services.payloads import Payload
from src.services.prompts import Prompt, PromptKind, render_prompt


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def test_db_engine():
    """
    Create test database engine
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async with session_maker() as session:
        yield session
        await session.rollback()


# ===========================
# Fakes
# ===========================


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class SentMessage:
    chat_id: int
    message_id: int
    text: str
    prompt: Optional[Prompt] = None
    payload: Optional[Payload] = None


@dataclass
class FakeChatClient:
    """
    In-memory stand-in for ChatClient

    Records every send and edit. ``failures`` maps chat ids to the ShopError
    raised when sending there; ``lookups`` maps user ids to get_chat results.
    """

    failures: Dict[int, ShopError] = field(default_factory=dict)
    lookups: Dict[int, object] = field(default_factory=dict)
    administrators: List[int] = field(default_factory=list)
    sent: List[SentMessage] = field(default_factory=list)
    edits: List[Tuple[int, int, str]] = field(default_factory=list)
    answers: List[Tuple[str, Optional[str], bool]] = field(default_factory=list)
    get_chat_calls: List[int] = field(default_factory=list)
    editable: bool = True

    def __post_init__(self):
        self._ids = itertools.count(100)

    def _deliver(self, chat_id, text, prompt=None, payload=None) -> int:
        if chat_id in self.failures:
            raise self.failures[chat_id]
        message_id = next(self._ids)
        self.sent.append(SentMessage(chat_id, message_id, text, prompt, payload))
        return message_id

    async def send_text(self, chat_id, text, keyboard=None, reply_to_message_id=None) -> int:
        return self._deliver(chat_id, text)

    async def send_prompt(self, chat_id, prompt, reply_to_message_id=None) -> int:
        return self._deliver(chat_id, render_prompt(prompt).text, prompt=prompt)

    async def send_media(self, chat_id, kind, file_id, caption=None, keyboard=None) -> int:
        return self._deliver(chat_id, caption or "")

    async def send_payload(self, chat_id, payload, prompt) -> int:
        return self._deliver(chat_id, render_prompt(prompt).text, prompt=prompt, payload=payload)

    async def edit_text(self, chat_id, message_id, text, keyboard=None) -> bool:
        if not self.editable:
            return False
        self.edits.append((chat_id, message_id, text))
        return True

    async def edit_prompt(self, chat_id, message_id, prompt) -> bool:
        return await self.edit_text(chat_id, message_id, render_prompt(prompt).text)

    async def answer_callback(self, callback_id, text=None, alert=False) -> None:
        self.answers.append((callback_id, text, alert))

    async def get_chat(self, user_id: int) -> ChatLookup:
        self.get_chat_calls.append(user_id)
        result = self.lookups.get(user_id)
        if isinstance(result, BaseException):
            raise result
        if result is None:
            return ChatLookup(
                ChatOutcome.OK, ChatProfile(user_id, f"user{user_id}", "Name", None)
            )
        return result

    async def get_chat_administrators(self, chat_id: int) -> List[int]:
        if chat_id in self.failures:
            raise self.failures[chat_id]
        return list(self.administrators)

    # helpers for assertions

    def prompts(self, kind: PromptKind, chat_id: Optional[int] = None) -> List[SentMessage]:
        return [
            m for m in self.sent
            if m.prompt is not None and m.prompt.kind is kind and (chat_id is None or m.chat_id == chat_id)
        ]

    def to(self, chat_id: int) -> List[SentMessage]:
        return [m for m in self.sent if m.chat_id == chat_id]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_chat() -> FakeChatClient:
    return FakeChatClient()


# ===========================
# Seed data
# ===========================


@pytest.fixture
async def catalog(db_session):
    """One category with product 7 priced 25.00 and BTC/LTC deposit addresses"""
    category = Category(id=1, name="Software")
    product = Product(id=7, name="License Key", description="Lifetime license", price=Decimal("25.00"), category_id=1)
    db_session.add_all([
        category,
        product,
        WalletAddress(currency="BTC", address="bc1qshopaddress"),
        WalletAddress(currency="LTC", address="ltc1qshopaddress"),
    ])
    await db_session.commit()
    return product


@pytest.fixture
async def alice(db_session) -> User:
    user = User(telegram_id=1001, username="alice", first_name="Alice")
    db_session.add(user)
    await db_session.commit()
    return user
