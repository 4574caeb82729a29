"""Marketplace services: order lifecycle, chat facade, watchers and reconciliation"""
from .order_engine import OrderEngine, Outcome
from .chat_client import ChatClient
from .throttle_registry import ThrottleRegistry
from .blockchain_watcher import BlockchainWatcher
from .directory_reconciler import DirectoryReconciler
from .admin_directory import AdminDirectory

__all__ = [
    'OrderEngine',
    'Outcome',
    'ChatClient',
    'ThrottleRegistry',
    'BlockchainWatcher',
    'DirectoryReconciler',
    'AdminDirectory',
]
