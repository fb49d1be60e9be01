# deal_tracker/config/settings.py

"""Central configuration for the deal_tracker service."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the deal_tracker service."""

    # --- Products ---
    DEFAULT_CURRENCY: str = "BDT"

    # --- Fetching ---
    REQUEST_DELAY: float = 1.0          # Seconds before each page request
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    MAX_RETRIES: int = 2                # Transport retries inside one fetch
    MAX_DELAY_MULTIPLIER: int = 8       # Cap for adaptive backoff
    CAPTCHA_KEYWORDS: list[str] = [
        "captcha",
        "verify you are human",
        "unusual traffic",
        "automated requests",
    ]

    # --- Batch price check ---
    FETCH_TIMEOUT: float = float(os.getenv("FETCH_TIMEOUT", "60"))
    NOTIFY_TIMEOUT: float = float(os.getenv("NOTIFY_TIMEOUT", "20"))
    STORE_TIMEOUT: float = float(os.getenv("STORE_TIMEOUT", "10"))
    BATCH_CONCURRENCY: int = int(os.getenv("BATCH_CONCURRENCY", "5"))

    # --- Secrets ---
    CRON_SECRET: str = os.getenv("CRON_SECRET", "")
    SERVICE_ROLE_KEY: str = os.getenv("SERVICE_ROLE_KEY", "")

    # --- Email alerts (Resend) ---
    RESEND_API_KEY: str = os.getenv("RESEND_API_KEY", "")
    RESEND_API_URL: str = "https://api.resend.com/emails"
    ALERT_FROM_EMAIL: str = os.getenv(
        "ALERT_FROM_EMAIL", "Deal Tracker <alerts@deal-tracker.local>"
    )

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "en-US,en;q=0.9",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "sec-fetch-user": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = Path(
        os.getenv("DATA_DIR", str(BASE_DIR / "data"))
    )
    DB_PATH: Path = Path(
        os.getenv("DB_PATH", str(DATA_DIR / "deal_tracker.db"))
    )
    LOGS_DIR: Path = Path(os.getenv("LOGS_DIR", str(BASE_DIR / "logs")))

    # --- Logging ---
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "DEBUG").upper()
    SERVE_LOG_MAX_BYTES: int = 5 * 1024 * 1024   # Rotate serve.log at 5 MB
    SERVE_LOG_BACKUPS: int = 5
