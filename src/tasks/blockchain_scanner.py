# coding: utf-8
"""
Background task for the blockchain watcher

Starts the explorer polling loop on bot startup and stops it on shutdown.
"""

from typing import Optional

from loguru import logger

from src.services.blockchain_watcher import BlockchainWatcher

_watcher: Optional[BlockchainWatcher] = None


async def start_blockchain_scanner(watcher: BlockchainWatcher) -> None:
    global _watcher

    _watcher = watcher
    try:
        await watcher.start_monitoring()
    except Exception as e:
        # the bot keeps serving orders without detection
        logger.exception(f"Blockchain scanner failed to start: {e}")


async def stop_blockchain_scanner() -> None:
    global _watcher

    if _watcher is None:
        return
    await _watcher.stop_monitoring()
    _watcher = None
