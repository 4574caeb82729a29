# coding: utf-8
"""
Blockchain Watcher

Periodically polls explorer providers for every watched deposit address,
records new inbound transactions in detected_transactions and notifies the
admins. Detections are advisory: the watcher never touches orders.

Dedup is two-layered: the registry's process-local seen set first, then the
unique txid column, which also makes a crash between insert and notify safe.
"""
import asyncio
from typing import Dict, List, Optional

import aiohttp
from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.config import BLOCKCHAIN_CHECK_INTERVAL, BLOCKCHAIN_TX_LIMIT, EXPLORER_TIMEOUT
from src.core.enums import Currency
from src.core.exceptions import ExplorerError, ShopError
from src.database import crud
from src.services.explorer_providers import (
    MALFORMED_RESPONSE_ERRORS,
    ExplorerProvider,
    SightedTransaction,
    build_provider_chains,
)
from src.services.prompts import Prompt, PromptKind
from src.services.throttle_registry import ThrottleRegistry


class BlockchainWatcher:
    """
    Explorer poller with provider fall-back

    Args:
        session_maker: async session factory
        chat: ChatClient used for admin notifications
        registry: ThrottleRegistry holding the seen-txid set
        admin_targets: chat ids notified about detections
        providers: provider chain per currency (defaults from configuration)
        interval_ms: polling period in milliseconds
        tx_limit: latest N transactions considered per fetch
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        chat,
        registry: ThrottleRegistry,
        admin_targets: List[int],
        providers: Optional[Dict[Currency, List[ExplorerProvider]]] = None,
        interval_ms: int = BLOCKCHAIN_CHECK_INTERVAL,
        tx_limit: int = BLOCKCHAIN_TX_LIMIT,
    ):
        self.session_maker = session_maker
        self.chat = chat
        self.registry = registry
        self.admin_targets = list(admin_targets)
        self.providers = providers if providers is not None else build_provider_chains()
        self.interval = interval_ms / 1000
        self.tx_limit = tx_limit

        self._addresses: Dict[str, Currency] = {}
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # ===========================
    # Watched addresses
    # ===========================

    async def load_addresses(self) -> int:
        """Load every active wallet address from the database"""
        async with self.session_maker() as session:
            for currency, address in await crud.list_watched_addresses(session):
                self._addresses[address] = currency
        logger.info(f"Blockchain watcher: {len(self._addresses)} address(es) loaded")
        return len(self._addresses)

    def add_address(self, currency: Currency, address: str) -> None:
        self._addresses[address] = currency
        logger.info(f"Watching {currency.value} address {address}")

    def remove_address(self, address: str) -> bool:
        removed = self._addresses.pop(address, None) is not None
        if removed:
            logger.info(f"Stopped watching address {address}")
        return removed

    @property
    def watched(self) -> Dict[str, Currency]:
        return dict(self._addresses)

    # ===========================
    # Lifecycle
    # ===========================

    async def start_monitoring(self) -> None:
        if self._task and not self._task.done():
            logger.warning("Blockchain watcher already running")
            return
        self._stop.clear()
        await self.load_addresses()
        self._task = asyncio.create_task(self._run(), name="blockchain-watcher")
        logger.info(f"Blockchain watcher started (every {self.interval:.0f}s)")

    async def stop_monitoring(self) -> None:
        self._stop.set()
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=self.interval + EXPLORER_TIMEOUT)
            except asyncio.TimeoutError:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        logger.info("Blockchain watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        timeout = aiohttp.ClientTimeout(total=EXPLORER_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as http:
            while not self._stop.is_set():
                try:
                    await self.tick(http)
                except Exception as e:
                    logger.exception(f"Blockchain watcher tick failed: {e}")

                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass

    # ===========================
    # Polling
    # ===========================

    async def tick(self, http: Optional[aiohttp.ClientSession] = None) -> int:
        """
        Poll every watched address once

        Returns:
            Number of newly recorded transactions
        """
        if http is None:
            timeout = aiohttp.ClientTimeout(total=EXPLORER_TIMEOUT)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                return await self.tick(session)

        new_count = 0
        for address, currency in list(self._addresses.items()):
            if self._stop.is_set():
                break
            try:
                sightings = await self.fetch_with_fallback(http, currency, address)
            except ExplorerError as e:
                logger.error(f"All {currency.value} providers failed for {address}: {e.message}")
                continue

            for sighting in sightings[: self.tx_limit]:
                if await self._record(currency, address, sighting):
                    new_count += 1

        if new_count:
            logger.info(f"Blockchain watcher: {new_count} new transaction(s)")
        return new_count

    async def fetch_with_fallback(
        self, http, currency: Currency, address: str
    ) -> List[SightedTransaction]:
        """
        Ask providers in order, returning the first successful answer

        Raises:
            ExplorerError: every provider failed
        """
        errors = []
        for provider in self.providers.get(currency, []):
            try:
                return await provider.fetch_transactions(http, address)
            except ExplorerError as e:
                logger.warning(f"{provider.name} failed for {address}: {e.message}")
                errors.append(e.message)
            except MALFORMED_RESPONSE_ERRORS as e:
                logger.warning(f"{provider.name} returned a malformed response for {address}: {e!r}")
                errors.append(f"{provider.name}: malformed response")
        raise ExplorerError(currency.value, "; ".join(errors) or "no providers configured")

    async def _record(self, currency: Currency, address: str, sighting: SightedTransaction) -> bool:
        """Persist a sighting once and notify; False if already known"""
        txid = sighting.txid
        if self.registry.seen_txid(txid):
            return False

        try:
            async with self.session_maker() as session:
                if await crud.get_detected_transaction(session, txid) is not None:
                    self.registry.mark_seen(txid)
                    return False
                await crud.insert_detected_transaction(
                    session,
                    txid=txid,
                    currency=currency,
                    address=address,
                    amount=sighting.amount,
                    confirmations=sighting.confirmations,
                    block_height=sighting.block_height,
                )
        except IntegrityError:
            logger.debug(f"Transaction {txid} recorded concurrently, skipping")
            self.registry.mark_seen(txid)
            return False
        except SQLAlchemyError as e:
            logger.error(f"Could not record transaction {txid}: {e}")
            return False

        self.registry.mark_seen(txid)
        logger.info(f"New {currency.value} transaction {txid} to {address} ({sighting.amount})")
        await self._notify(currency, address, sighting)
        return True

    async def _notify(self, currency: Currency, address: str, sighting: SightedTransaction) -> None:
        prompt = Prompt(
            PromptKind.TRANSACTION_DETECTED,
            {
                "currency": currency.value,
                "amount": sighting.amount,
                "address": address,
                "txid": sighting.txid,
                "confirmations": sighting.confirmations,
                "block_height": sighting.block_height,
            },
        )
        for chat_id in self.admin_targets:
            try:
                await self.chat.send_prompt(chat_id, prompt)
            except ShopError as e:
                logger.warning(f"Transaction notification to {chat_id} failed: {e.message}")
