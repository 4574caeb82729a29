"""
Tests for the blockchain watcher and explorer response parsing
"""

from unittest.mock import AsyncMock

import pytest

from src.core.enums import Currency
from src.core.exceptions import ExplorerError
from src.database import crud
from src.services.blockchain_watcher import BlockchainWatcher
from src.services.explorer_providers import (
    BlockchairProvider,
    BlockcypherProvider,
    BlockstreamProvider,
    MempoolProvider,
    SightedTransaction,
    format_amount,
)
from src.services.prompts import PromptKind
from src.services.throttle_registry import ThrottleRegistry

ADMIN_CHANNEL = -1001
ADDRESS = "bc1qshopaddress"
HTTP = object()


class StubProvider:
    """Returns canned sightings or raises"""

    def __init__(self, name, result):
        self.name = name
        self.result = result
        self.calls = 0

    async def fetch_transactions(self, session, address):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return list(self.result)


def sighting(txid, amount="0.00100000", confirmations=1, height=800000):
    return SightedTransaction(txid, amount, confirmations, height)


def make_watcher(session_maker, fake_chat, providers, clock, tx_limit=10):
    watcher = BlockchainWatcher(
        session_maker,
        fake_chat,
        ThrottleRegistry(clock=clock),
        admin_targets=[ADMIN_CHANNEL],
        providers={Currency.BTC: providers},
        tx_limit=tx_limit,
    )
    watcher.add_address(Currency.BTC, ADDRESS)
    return watcher


@pytest.mark.asyncio
async def test_new_transaction_is_recorded_and_announced(session_maker, fake_chat, clock):
    watcher = make_watcher(session_maker, fake_chat, [StubProvider("a", [sighting("tx1")])], clock)

    assert await watcher.tick(HTTP) == 1

    notices = fake_chat.prompts(PromptKind.TRANSACTION_DETECTED, ADMIN_CHANNEL)
    assert len(notices) == 1
    assert notices[0].prompt["txid"] == "tx1"
    async with session_maker() as session:
        stored = await crud.get_detected_transaction(session, "tx1")
    assert stored.address == ADDRESS
    assert stored.currency == "BTC"

    # same tick again: nothing new
    assert await watcher.tick(HTTP) == 0
    assert len(fake_chat.prompts(PromptKind.TRANSACTION_DETECTED)) == 1


@pytest.mark.asyncio
async def test_detection_is_not_repeated_after_restart(session_maker, fake_chat, clock):
    """A fresh process (empty seen set) still skips txids already in the database"""
    provider = StubProvider("a", [sighting("tx1"), sighting("tx2")])
    first = make_watcher(session_maker, fake_chat, [provider], clock)
    assert await first.tick(HTTP) == 2

    restarted = make_watcher(session_maker, fake_chat, [provider], clock)
    assert await restarted.tick(HTTP) == 0

    assert len(fake_chat.prompts(PromptKind.TRANSACTION_DETECTED)) == 2
    assert restarted.registry.seen_txid("tx1")


@pytest.mark.asyncio
async def test_falls_back_to_next_provider(session_maker, fake_chat, clock):
    broken = StubProvider("broken", ExplorerError("broken", "HTTP 503"))
    backup = StubProvider("backup", [sighting("tx9")])
    unused = StubProvider("unused", [sighting("tx-other")])
    watcher = make_watcher(session_maker, fake_chat, [broken, backup, unused], clock)

    assert await watcher.tick(HTTP) == 1
    assert broken.calls == backup.calls == 1
    assert unused.calls == 0


@pytest.mark.asyncio
async def test_all_providers_failing_is_not_fatal(session_maker, fake_chat, clock):
    providers = [StubProvider(n, ExplorerError(n, "down")) for n in ("a", "b")]
    watcher = make_watcher(session_maker, fake_chat, providers, clock)

    assert await watcher.tick(HTTP) == 0
    with pytest.raises(ExplorerError) as exc_info:
        await watcher.fetch_with_fallback(HTTP, Currency.BTC, ADDRESS)
    assert "a: down" in exc_info.value.message


@pytest.mark.asyncio
async def test_only_latest_transactions_are_considered(session_maker, fake_chat, clock):
    provider = StubProvider("a", [sighting(f"tx{i}") for i in range(5)])
    watcher = make_watcher(session_maker, fake_chat, [provider], clock, tx_limit=2)

    assert await watcher.tick(HTTP) == 2


@pytest.mark.asyncio
async def test_load_addresses_from_wallet_table(session_maker, fake_chat, clock, catalog):
    watcher = BlockchainWatcher(session_maker, fake_chat, ThrottleRegistry(clock=clock), [ADMIN_CHANNEL], providers={})

    assert await watcher.load_addresses() == 2
    assert watcher.watched == {"bc1qshopaddress": Currency.BTC, "ltc1qshopaddress": Currency.LTC}
    assert watcher.remove_address("ltc1qshopaddress") is True
    assert watcher.remove_address("ltc1qshopaddress") is False


# ===========================
# Provider parsing
# ===========================


def test_format_amount():
    assert format_amount(150000) == "0.00150000"
    assert format_amount(0) == "0.00000000"


@pytest.mark.asyncio
async def test_esplora_parsing():
    provider = BlockstreamProvider("https://example.invalid/api")
    provider.get = AsyncMock(side_effect=[
        [
            {
                "txid": "in-confirmed",
                "vout": [{"scriptpubkey_address": ADDRESS, "value": 150000}, {"scriptpubkey_address": "x", "value": 9}],
                "status": {"confirmed": True, "block_height": 800000},
            },
            {"txid": "in-mempool", "vout": [{"scriptpubkey_address": ADDRESS, "value": 1000}], "status": {"confirmed": False}},
            {"txid": "outgoing", "vout": [{"scriptpubkey_address": "elsewhere", "value": 5000}], "status": {}},
        ],
        "800002",
    ])

    sightings = await provider.fetch_transactions(HTTP, ADDRESS)

    assert sightings == [
        SightedTransaction("in-confirmed", "0.00150000", 3, 800000),
        SightedTransaction("in-mempool", "0.00001000", 0, None),
    ]


@pytest.mark.asyncio
async def test_blockchair_parsing():
    provider = BlockchairProvider("https://example.invalid/litecoin", api_key="k")
    provider.get = AsyncMock(return_value={"data": {ADDRESS: {"transactions": ["t1", "t2"]}}})

    sightings = await provider.fetch_transactions(HTTP, ADDRESS)

    assert [s.txid for s in sightings] == ["t1", "t2"]
    assert sightings[0].amount == "0.00000000"
    assert provider._params() == {"key": "k"}

    provider.get = AsyncMock(return_value={"data": {}})
    with pytest.raises(ExplorerError):
        await provider.fetch_transactions(HTTP, ADDRESS)


@pytest.mark.asyncio
async def test_blockcypher_parsing():
    provider = BlockcypherProvider("https://example.invalid/v1/ltc/main", api_key="t")
    provider.get = AsyncMock(return_value={
        "txs": [
            {"hash": "h1", "outputs": [{"addresses": [ADDRESS], "value": 250000}], "confirmations": 4, "block_height": 2500000},
            {"hash": "h2", "outputs": [{"addresses": [ADDRESS], "value": 100}], "confirmations": 0, "block_height": -1},
            {"hash": "h3", "outputs": [{"addresses": ["other"], "value": 100}]},
        ]
    })

    sightings = await provider.fetch_transactions(HTTP, ADDRESS)

    assert sightings == [
        SightedTransaction("h1", "0.00250000", 4, 2500000),
        SightedTransaction("h2", "0.00000100", 0, None),
    ]
    assert provider._params() == {"token": "t"}


@pytest.mark.asyncio
async def test_malformed_response_falls_through_to_next_provider(session_maker, fake_chat, clock):
    """A body missing the txid counts as a provider error, not a crash"""
    blockstream = BlockstreamProvider("https://example.invalid/api")
    blockstream.get = AsyncMock(side_effect=[
        [{"vout": [{"value": 1000, "scriptpubkey_address": ADDRESS}]}],
        "800000",
    ])
    mempool = MempoolProvider("https://example.invalid/mempool")
    mempool.get = AsyncMock(side_effect=[
        [{"txid": "good", "vout": [{"value": 1000, "scriptpubkey_address": ADDRESS}], "status": {}}],
        "800000",
    ])
    watcher = make_watcher(session_maker, fake_chat, [blockstream, mempool], clock)

    assert await watcher.tick(HTTP) == 1

    notices = fake_chat.prompts(PromptKind.TRANSACTION_DETECTED, ADMIN_CHANNEL)
    assert [n.prompt["txid"] for n in notices] == ["good"]


@pytest.mark.asyncio
async def test_malformed_response_does_not_skip_other_addresses(session_maker, fake_chat, clock):
    class PerAddressProvider:
        name = "per-address"

        async def fetch_transactions(self, session, address):
            if address == ADDRESS:
                raise KeyError("txid")
            return [sighting("tx-second")]

    watcher = make_watcher(session_maker, fake_chat, [PerAddressProvider()], clock)
    watcher.add_address(Currency.BTC, "bc1qsecond")

    assert await watcher.tick(HTTP) == 1
    with pytest.raises(ExplorerError) as exc_info:
        await watcher.fetch_with_fallback(HTTP, Currency.BTC, ADDRESS)
    assert "malformed response" in exc_info.value.message


@pytest.mark.asyncio
async def test_blockcypher_malformed_output_raises_explorer_error():
    provider = BlockcypherProvider("https://example.invalid/v1/ltc/main")
    provider.get = AsyncMock(return_value={"txs": [{"hash": "h1", "outputs": ["not-a-dict"]}]})

    with pytest.raises(ExplorerError):
        await provider.fetch_transactions(HTTP, ADDRESS)

    provider.get = AsyncMock(return_value={"txs": [{"outputs": [{"addresses": [ADDRESS], "value": 5}]}]})
    with pytest.raises(ExplorerError):
        await provider.fetch_transactions(HTTP, ADDRESS)
