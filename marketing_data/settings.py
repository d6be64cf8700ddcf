# marketing_data/settings.py
import os
from datetime import time
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_time(name: str, default: str) -> time:
    """Parse an HH:MM value into a time-of-day."""
    raw = os.getenv(name, default).strip()
    hh, sep, mm = raw.partition(":")
    if not sep:
        raise ValueError(f"{name} must look like HH:MM, got {raw!r}")
    return time(int(hh), int(mm))


PROJECT_ROOT = Path(__file__).resolve().parents[1]

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./marketing_data.sqlite3")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Nightly ETL
ETL_SCHEDULER_ENABLED = _env_bool("ETL_SCHEDULER_ENABLED", "true")
ETL_RUN_AT = _env_time("ETL_RUN_AT", "02:00")
ETL_MAX_ATTEMPTS = int(os.getenv("ETL_MAX_ATTEMPTS", "3"))
ETL_RETRY_DELAY_SECONDS = int(os.getenv("ETL_RETRY_DELAY_SECONDS", "600"))
ENRICHMENT_MARKER = os.getenv("ENRICHMENT_MARKER", " | enriched")

# Alerting (webhook is optional; email is only logged)
ALERTS_ENABLED = _env_bool("ALERTS_ENABLED", "false")
ALERT_WEBHOOK_URL = os.getenv("ALERT_WEBHOOK_URL") or None
ALERT_EMAIL = os.getenv("ALERT_EMAIL") or None

REPORTS_DIR = Path(os.getenv("REPORTS_DIR", str(PROJECT_ROOT / "reports")))
