# ordercache/config/settings.py

"""Central configuration for the ordercache engine."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the ordercache engine."""

    # --- Order collection ---
    COLLECTION_CAPACITY: int = 100      # Orders kept in memory

    # --- Search ---
    SEARCH_CACHE_TTL: float = 30.0      # Seconds a merged result is served
    SEARCH_CACHE_MAX_ENTRIES: int = 10  # Most recent results kept
    SEARCH_DEBOUNCE: float = 0.3        # Seconds of keystroke quiet time
    SEARCH_MIN_REMOTE_LENGTH: int = 2   # Shorter free text stays local
    REMOTE_PAGE_LIMIT: int = 100        # Gateway hard cap per page

    # --- Customer order counts ---
    COUNT_TTL: float = 7 * 24 * 60 * 60  # Weekly reset
    COUNT_CAPACITY: int = 1000
    COUNT_EVICT_FRACTION: float = 0.2
    COUNT_PAGE_DELAY: float = 0.1        # Between pages of one customer
    COUNT_CUSTOMER_DELAY: float = 0.3    # Between customers in a backfill
    COUNT_MAX_PAGES: int = 50
    COUNT_STORAGE_KEY: str = "customer_order_counts"

    # --- Remote calls ---
    REQUEST_TIMEOUT: float = 10.0       # Seconds before a call times out
    MAX_RETRIES: int = 3                # Attempts on transient failures
    BACKOFF_BASE: float = 0.5           # First retry delay (seconds)
    BACKOFF_MAX: float = 8.0            # Cap for exponential backoff

    # --- Resilience ---
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 60.0

    # --- Remote API ---
    API_BASE_URL: str = os.getenv(
        "ORDERCACHE_API_BASE_URL", "https://www.wixapis.com"
    )
    API_KEY: str = os.getenv("ORDERCACHE_API_KEY", "")
    ORDERS_QUERY_PATH: str = "/ecom/v1/orders/search"
    CONTACTS_QUERY_PATH: str = "/contacts/v4/contacts/query"
    IMPERSONATE_BROWSER: BrowserTypeLiteral = os.getenv(  # type: ignore[assignment]
        "ORDERCACHE_IMPERSONATE", "chrome131"
    )
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "Accept-Language": "en-US,en;q=0.9",
    }

    # --- Logging ---
    LOG_LEVEL: str = os.getenv("ORDERCACHE_LOG_LEVEL", "DEBUG")

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    LOGS_DIR: Path = BASE_DIR / "logs"
    KV_DB_PATH: Path = DATA_DIR / "ordercache.db"
