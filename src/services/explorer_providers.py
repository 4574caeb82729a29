# coding: utf-8
"""
Blockchain explorer providers

Each provider lists the recent transactions of an address and reports, per
transaction, the amount paid to that address. Providers are tried in order
by the blockchain watcher; any error here makes the watcher fall through to
the next provider.

    BTC: Blockstream -> Mempool -> Blockchair
    LTC: Blockchair -> Blockcypher
"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from config.config import (
    BLOCKSTREAM_API,
    MEMPOOL_API,
    BLOCKCHAIR_API,
    BLOCKCHAIR_LTC_API,
    BLOCKCYPHER_API,
    BLOCKCHAIR_API_KEY,
    BLOCKCYPHER_API_KEY,
)
from src.core.enums import Currency
from src.core.exceptions import ExplorerError


logger = logging.getLogger(__name__)

COIN = Decimal(100_000_000)

# raised by parsing code on a body that does not have the documented shape
MALFORMED_RESPONSE_ERRORS = (KeyError, TypeError, AttributeError, ValueError)


def format_amount(base_units: int) -> str:
    """Satoshis/litoshis -> coin units with 8 decimal places"""
    return str((Decimal(int(base_units)) / COIN).quantize(Decimal("0.00000001")))


@dataclass(frozen=True)
class SightedTransaction:
    """A transaction paying the queried address, as reported by one provider"""

    txid: str
    amount: str  # "0.00000000" when the provider does not report amounts
    confirmations: int
    block_height: Optional[int]


class ExplorerProvider:
    """
    Base explorer client

    Args:
        base_url: API root without trailing slash
        api_key: optional API key
    """

    name = "explorer"

    def __init__(self, base_url: str, api_key: str = ""):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    def _params(self) -> Dict[str, str]:
        return {}

    @retry(
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def _request(self, session: aiohttp.ClientSession, path: str, as_json: bool = True) -> Any:
        """GET base_url + path with automatic retries on network errors"""
        url = f"{self.base_url}{path}"
        async with session.get(url, params=self._params()) as response:
            if response.status != 200:
                raise ExplorerError(self.name, f"HTTP {response.status} for {path}")
            if as_json:
                return await response.json(content_type=None)
            return await response.text()

    async def get(self, session: aiohttp.ClientSession, path: str, as_json: bool = True) -> Any:
        try:
            return await self._request(session, path, as_json)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ExplorerError(self.name, str(e) or type(e).__name__) from e

    async def fetch_transactions(
        self, session: aiohttp.ClientSession, address: str
    ) -> List[SightedTransaction]:
        raise NotImplementedError


class EsploraProvider(ExplorerProvider):
    """Esplora-compatible API (Blockstream, Mempool)"""

    async def _tip_height(self, session: aiohttp.ClientSession) -> Optional[int]:
        try:
            return int(str(await self.get(session, "/blocks/tip/height", as_json=False)).strip())
        except (ExplorerError, ValueError) as e:
            logger.debug(f"{self.name}: tip height unavailable: {e}")
            return None

    async def fetch_transactions(self, session, address):
        txs = await self.get(session, f"/address/{address}/txs")
        if not isinstance(txs, list):
            raise ExplorerError(self.name, "unexpected response shape")

        tip = await self._tip_height(session)
        try:
            return self._parse(txs, tip, address)
        except MALFORMED_RESPONSE_ERRORS as e:
            raise ExplorerError(self.name, f"malformed response: {e!r}") from e

    def _parse(self, txs: list, tip: Optional[int], address: str) -> List[SightedTransaction]:
        sightings = []
        for tx in txs:
            value = sum(
                out.get("value", 0)
                for out in tx.get("vout", [])
                if out.get("scriptpubkey_address") == address
            )
            if value <= 0:
                continue  # outgoing or unrelated

            status = tx.get("status") or {}
            height = status.get("block_height") if status.get("confirmed") else None
            if height is None:
                confirmations = 0
            elif tip is not None:
                confirmations = max(1, tip - height + 1)
            else:
                confirmations = 1

            sightings.append(
                SightedTransaction(tx["txid"], format_amount(value), confirmations, height)
            )
        return sightings


class BlockstreamProvider(EsploraProvider):
    name = "blockstream"


class MempoolProvider(EsploraProvider):
    name = "mempool"


class BlockchairProvider(ExplorerProvider):
    """Blockchair address dashboard; lists txids only, amounts are unknown"""

    name = "blockchair"

    def _params(self):
        return {"key": self.api_key} if self.api_key else {}

    async def fetch_transactions(self, session, address):
        body = await self.get(session, f"/dashboards/address/{address}")
        try:
            txids = body["data"][address]["transactions"]
        except (KeyError, TypeError):
            raise ExplorerError(self.name, "address missing from response")

        if not isinstance(txids, list):
            raise ExplorerError(self.name, "malformed transaction list")
        return [SightedTransaction(str(txid), format_amount(0), 0, None) for txid in txids if txid]


class BlockcypherProvider(ExplorerProvider):
    """Blockcypher full address endpoint"""

    name = "blockcypher"

    def _params(self):
        return {"token": self.api_key} if self.api_key else {}

    async def fetch_transactions(self, session, address):
        body = await self.get(session, f"/addrs/{address}/full")
        if not isinstance(body, dict):
            raise ExplorerError(self.name, "unexpected response shape")

        try:
            return self._parse(body, address)
        except MALFORMED_RESPONSE_ERRORS as e:
            raise ExplorerError(self.name, f"malformed response: {e!r}") from e

    def _parse(self, body: dict, address: str) -> List[SightedTransaction]:
        sightings = []
        for tx in body.get("txs", []):
            value = sum(
                out.get("value", 0)
                for out in tx.get("outputs", [])
                if address in (out.get("addresses") or [])
            )
            if value <= 0:
                continue
            height = tx.get("block_height")
            sightings.append(
                SightedTransaction(
                    tx["hash"],
                    format_amount(value),
                    int(tx.get("confirmations", 0) or 0),
                    height if height and height > 0 else None,
                )
            )
        return sightings


def build_provider_chains() -> Dict[Currency, List[ExplorerProvider]]:
    """Provider fall-back order per currency, from configuration"""
    return {
        Currency.BTC: [
            BlockstreamProvider(BLOCKSTREAM_API),
            MempoolProvider(MEMPOOL_API),
            BlockchairProvider(BLOCKCHAIR_API, BLOCKCHAIR_API_KEY),
        ],
        Currency.LTC: [
            BlockchairProvider(BLOCKCHAIR_LTC_API, BLOCKCHAIR_API_KEY),
            BlockcypherProvider(BLOCKCYPHER_API, BLOCKCYPHER_API_KEY),
        ],
    }
