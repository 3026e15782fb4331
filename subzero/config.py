"""Centralized configuration for the SubZero backend.

Re-exports everything from subzero.infrastructure.settings, then adds typed
constants for database, ingestion pipeline, LLM, sync and reminder settings.
Environment variable overrides use safe defaults so the app starts without
extra env configuration.
"""

from __future__ import annotations

import os

from subzero.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "0.1.0"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("SUBZERO_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("SUBZERO_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("SUBZERO_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("SUBZERO_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("SUBZERO_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("SUBZERO_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("SUBZERO_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("SUBZERO_DB_RETRY_JITTER", "0.1"))

# --- Mailbox Scan ---
SCAN_DISCOVERY_QUERY: str = (
    '(invoice OR receipt OR subscription OR billed OR "payment confirmation")'
)
SCAN_LABEL_QUERY: str = "(label:INVOICE OR label:RECEIPT)"
SCAN_QUERY_MODE: str = os.getenv("SUBZERO_SCAN_QUERY_MODE", "keywords")
SCAN_WINDOW_DAYS: int = int(os.getenv("SUBZERO_SCAN_WINDOW_DAYS", "30"))
SCAN_MAX_RESULTS: int = int(os.getenv("SUBZERO_SCAN_MAX_RESULTS", "50"))
SCAN_INCREMENTAL_MAX_RESULTS: int = 10
PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("SUBZERO_PROVIDER_TIMEOUT_SECONDS", "30"))

# --- Extraction Pipeline ---
EXTRACTION_STRATEGY: str = os.getenv("SUBZERO_EXTRACTION_STRATEGY", "batch")
EXTRACTION_BATCH_SIZE: int = 50
BATCH_BODY_TRUNCATION: int = 2000
SINGLE_BODY_TRUNCATION: int = 3000
CONFIDENCE_THRESHOLD: float = float(os.getenv("SUBZERO_CONFIDENCE_THRESHOLD", "0.6"))
DEFAULT_RENEWAL_DAYS: int = 30

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("SUBZERO_LLM_TIMEOUT", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("SUBZERO_LLM_MAX_RETRIES", "3"))

# --- OAuth ---
OAUTH_STATE_MAX_AGE_SECONDS: int = int(os.getenv("SUBZERO_OAUTH_STATE_MAX_AGE_SECONDS", "600"))

# --- Sync ---
SYNC_STALENESS_HOURS: int = int(os.getenv("SUBZERO_SYNC_STALENESS_HOURS", "24"))
SYNC_LOCK_TTL_SECONDS: int = int(os.getenv("SUBZERO_SYNC_LOCK_TTL_SECONDS", "300"))

# --- Subscriptions ---
BASE_CURRENCY: str = os.getenv("SUBZERO_BASE_CURRENCY", "INR")
DEDUP_AMOUNT_TOLERANCE: float = 0.01
DEDUP_AMOUNT_MIN_DELTA: float = 0.01
YEARLY_DISCOUNT_RATE: float = 0.20
UPCOMING_RENEWAL_DAYS: int = 7

# --- Spending Insights ---
INSIGHT_HIGH_SPEND_THRESHOLD: float = float(os.getenv("SUBZERO_INSIGHT_HIGH_SPEND", "100"))
INSIGHT_STREAMING_LIMIT: int = 2
INSIGHT_STREAMING_SAVINGS_RATE: float = 0.20
INSIGHT_SAVINGS_RATE: float = 0.15

# --- Reminders ---
REMINDER_WINDOW_DAYS: int = 7
REMINDER_COOLDOWN_DAYS: int = 7
