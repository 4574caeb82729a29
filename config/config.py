"""
Configuration module for the Digistore marketplace bot

Loads configuration from environment variables using python-dotenv
"""

import os
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv

# Load .env file (override=True ensures .env has priority over shell environment)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path, override=True)


def _optional_int(name: str) -> Optional[int]:
    """Read an optional integer chat id, None when unset or malformed"""
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Telegram Bot Configuration
BOT_TOKEN: str = os.getenv("BOT_TOKEN", "")
ADMIN_IDS: List[int] = [
    int(admin_id.strip())
    for admin_id in os.getenv("ADMIN_IDS", "").split(",")
    if admin_id.strip().lstrip("-").isdigit()
]

# Admin channel (orders, payment claims, detected transactions, reports)
ADMIN_GROUP: Optional[int] = _optional_int("ADMIN_GROUP")

# Social-proof channel for completed deliveries
VOUCH_CHANNEL: Optional[int] = _optional_int("VOUCH_CHANNEL")

SUPPORT_USERNAME: str = os.getenv("SUPPORT_USERNAME", "support").lstrip("@")

# Fallback deposit addresses (used only when wallet_addresses has no active row)
BTC_ADDRESS: str = os.getenv("BTC_ADDRESS", "")
LTC_ADDRESS: str = os.getenv("LTC_ADDRESS", "")

# Database Configuration
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./shop.db")

# =============================================================================
# BLOCKCHAIN WATCHER
# =============================================================================
BLOCKCHAIN_CHECK_INTERVAL: int = int(os.getenv("BLOCKCHAIN_CHECK_INTERVAL", "30000"))  # ms
BLOCKCHAIN_TX_LIMIT: int = int(os.getenv("BLOCKCHAIN_TX_LIMIT", "10"))
EXPLORER_TIMEOUT: int = int(os.getenv("EXPLORER_TIMEOUT", "15"))

BLOCKSTREAM_API: str = os.getenv("BLOCKSTREAM_API", "https://blockstream.info/api")
MEMPOOL_API: str = os.getenv("MEMPOOL_API", "https://mempool.space/api")
BLOCKCHAIR_API: str = os.getenv("BLOCKCHAIR_API", "https://api.blockchair.com/bitcoin")
BLOCKCHAIR_LTC_API: str = os.getenv("BLOCKCHAIR_LTC_API", "https://api.blockchair.com/litecoin")
BLOCKCYPHER_API: str = os.getenv("BLOCKCYPHER_API", "https://api.blockcypher.com/v1/ltc/main")
BLOCKCHAIR_API_KEY: str = os.getenv("BLOCKCHAIR_API_KEY", "")
BLOCKCYPHER_API_KEY: str = os.getenv("BLOCKCYPHER_API_KEY", "")

# =============================================================================
# DIRECTORY RECONCILER
# =============================================================================
BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "25"))
BATCH_PAUSE_MS: int = int(os.getenv("BATCH_PAUSE_MS", "1100"))
PROGRESS_EDIT_INTERVAL: int = int(os.getenv("PROGRESS_EDIT_INTERVAL", "2"))
RECONCILE_CRON: str = os.getenv("RECONCILE_CRON", "0 3 * * *")
RECONCILE_TIMEZONE: str = os.getenv("RECONCILE_TIMEZONE", "Africa/Nairobi")
RECONCILE_ENABLED: bool = _flag("RECONCILE_ENABLED", "true")

ADMIN_REFRESH_INTERVAL: int = int(os.getenv("ADMIN_REFRESH_INTERVAL", "60"))  # seconds

# Timeouts
CHAT_REQUEST_TIMEOUT: int = int(os.getenv("CHAT_REQUEST_TIMEOUT", "30"))
SESSION_TIMEOUT: int = int(os.getenv("SESSION_TIMEOUT", "300"))
DELIVERY_TRACKING_TTL: int = int(os.getenv("DELIVERY_TRACKING_TTL", "86400"))

# Environment
ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# Sentry Configuration (error monitoring)
SENTRY_DSN: str = os.getenv("SENTRY_DSN", "")


# Validation
def validate_config() -> bool:
    """Validate required configuration variables"""
    errors = []

    if not BOT_TOKEN:
        errors.append("BOT_TOKEN is required")

    if not DATABASE_URL:
        errors.append("DATABASE_URL is required")

    if not ADMIN_IDS:
        errors.append("ADMIN_IDS is required (at least one admin)")

    if BATCH_SIZE < 1:
        errors.append("BATCH_SIZE must be a positive integer")

    if PROGRESS_EDIT_INTERVAL < 1:
        errors.append("PROGRESS_EDIT_INTERVAL must be a positive integer")

    if BLOCKCHAIN_CHECK_INTERVAL < 1000:
        errors.append("BLOCKCHAIN_CHECK_INTERVAL must be at least 1000 ms")

    if errors:
        error_message = "\n".join(f"  - {error}" for error in errors)
        raise ValueError(
            f"Configuration validation failed:\n{error_message}\n\n"
            "Please check your .env file and ensure all required variables are set."
        )

    return True


# Throttle windows
class Cooldowns:
    """Per-action button cooldowns and confirmation limits (seconds)"""

    CONFIRM = int(os.getenv("BUTTON_COOLDOWN_CONFIRM", "2"))
    STATUS = int(os.getenv("BUTTON_COOLDOWN_STATUS", "2"))
    CANCEL = int(os.getenv("BUTTON_COOLDOWN_CANCEL", "3"))
    COPY = int(os.getenv("BUTTON_COOLDOWN_COPY", "1"))

    # Minimum gap between two successful confirmations of the same order
    CONFIRMATION_COOLDOWN = int(os.getenv("CONFIRMATION_COOLDOWN", "15"))
    CONFIRMATION_MAX_PER_HOUR = int(os.getenv("CONFIRMATION_MAX_PER_HOUR", "5"))
    CONFIRMATION_DUPLICATE_WINDOW = int(os.getenv("CONFIRMATION_DUPLICATE_WINDOW", "3600"))

    @classmethod
    def action_windows(cls) -> dict:
        return {
            "confirm": cls.CONFIRM,
            "status": cls.STATUS,
            "cancel": cls.CANCEL,
            "copy": cls.COPY,
        }
