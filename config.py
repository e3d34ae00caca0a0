"""Configuration defaults for the motorcycle listing ingest service.

Everything here is read from the environment once at import time. Components take
these values as constructor arguments, so tests and the CLI can override them.
"""

import os


def as_bool(value, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int_set(value) -> frozenset[int]:
    if not value:
        return frozenset()
    return frozenset(int(part) for part in value.replace(";", ",").split(",") if part.strip())


# Database path
DB_PATH = os.environ.get("DB_PATH", "motorcycles.db")

# Object storage (local filesystem backend)
MEDIA_ROOT = os.environ.get("MEDIA_ROOT", "media")
MEDIA_BASE_URL = os.environ.get("MEDIA_BASE_URL", "http://localhost:8000/media")
# "1" makes the acquirer download images itself and hand raw bytes to storage
MEDIA_FETCH_LOCALLY = as_bool(os.environ.get("MEDIA_FETCH_LOCALLY"), default=False)

# Vendor
VENDOR_ORIGIN = "https://jmmoto.ru"
VENDOR_HOSTS = frozenset({"jmmoto.ru", "www.jmmoto.ru"})

# User agents to rotate (not user-configurable, just a static list)
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

# ── Network ────────────────────────────────────────────────────

PAGE_TIMEOUT = float(os.environ.get("PAGE_TIMEOUT", "20"))
IMAGE_TIMEOUT = float(os.environ.get("IMAGE_TIMEOUT", "30"))
# Backoff delays (seconds) between retries of a failed transport call.
# One retry per entry; an empty value disables retrying.
RETRY_DELAYS = [float(d) for d in os.environ.get("RETRY_DELAYS", "1,3").split(",") if d.strip()]

# ── Extraction vocabulary ──────────────────────────────────────

BRANDS = ["suzuki", "yamaha", "honda", "kawasaki", "ducati", "bmw", "triumph", "harley"]

NAME_SELECTORS = [
    "div[class*='styles_text'][class*='styles_weight--semi-bold']",
    "div[class*='styles_text__'][class*='styles_weight--semi-bold']",
    "div[class*='styles_text'][class*='uppercase']",
]

IMAGE_ATTRS = ["src", "data-src", "data-lazy-src"]

IMAGE_BLOCKLIST = ["logo", "icon", "vite.svg", "favicon", "sprite", "placeholder", "search-banner"]

# ── Listings ───────────────────────────────────────────────────

DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "RUB")
ARRIVAL_DATE_MAX_LENGTH = 200
# Upper bound for an operator-entered price, in roubles
MAX_PRICE = 1_000_000_000

# ── Operator bot ───────────────────────────────────────────────

TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_API_URL = os.environ.get("TELEGRAM_API_URL", "https://api.telegram.org")
TELEGRAM_POLL_TIMEOUT = int(os.environ.get("TELEGRAM_POLL_TIMEOUT", "30"))
BOT_WORKERS = int(os.environ.get("BOT_WORKERS", "8"))
# Telegram user ids allowed to ingest listings
OPERATOR_IDS = _as_int_set(os.environ.get("OPERATOR_IDS"))

# Seconds a pending conversation may sit idle before the sweep drops it (0 = never)
PENDING_TTL = float(os.environ.get("PENDING_TTL", "0"))
STALE_DRAFT_HOURS = float(os.environ.get("STALE_DRAFT_HOURS", "24"))
SWEEP_INTERVAL_MINUTES = float(os.environ.get("SWEEP_INTERVAL_MINUTES", "15"))

# ── Admin API ──────────────────────────────────────────────────

# Empty disables the mutating endpoints entirely
API_TOKEN = os.environ.get("API_TOKEN", "")
