"""
subtrack/config.py
------------------
.env を読み込んで設定値を型付き定数として公開する。
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ── DB ────────────────────────────────────────────────────
DB_URL: str = os.getenv("DB_URL", "sqlite:///./subtrack.db")

# ── 為替レート (USD→JPY) ──────────────────────────────────
EXCHANGE_RATE_URL: str = os.getenv(
    "EXCHANGE_RATE_URL", "https://api.exchangerate-api.com/v4/latest/USD"
)
EXCHANGE_RATE_TTL_SECONDS: int = int(os.getenv("EXCHANGE_RATE_TTL_SECONDS", "3600"))
EXCHANGE_RATE_TIMEOUT_SECONDS: float = float(os.getenv("EXCHANGE_RATE_TIMEOUT_SECONDS", "10"))
FALLBACK_USD_JPY_RATE: float = float(os.getenv("FALLBACK_USD_JPY_RATE", "150.0"))

# ── 通知 ──────────────────────────────────────────────────
NOTIFY_DAYS_BEFORE: int = int(os.getenv("NOTIFY_DAYS_BEFORE", "7"))
NOTIFICATIONS_ENABLED: bool = _env_bool("NOTIFICATIONS_ENABLED", True)
ENABLE_SCHEDULER: bool = _env_bool("ENABLE_SCHEDULER", False)
DISCORD_WEBHOOK_URL: str = os.getenv("DISCORD_WEBHOOK_URL", "")

# ── Logging ───────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
