# sapjuice/config.py
from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env locally (safe in prod too)
load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [x.strip().lower() for x in raw.split(",") if x.strip()]


# -------------------
# Config (env-driven)
# -------------------
class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./sapjuice.db")

    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    jwt_alg: str = os.getenv("JWT_ALG", "HS256")
    jwt_expire_min: int = int(_env_float("JWT_EXPIRE_MIN", 1440))  # 24h

    # Formspree-style endpoint; the placeholder disables notifications.
    order_notify_endpoint: str = os.getenv(
        "ORDER_NOTIFY_ENDPOINT", "https://formspree.io/f/YOUR_FORM_ID"
    )
    notify_timeout: float = _env_float("NOTIFY_TIMEOUT", 10.0)

    progression_delay_seconds: float = _env_float("PROGRESSION_DELAY_SECONDS", 8.0)

    admin_emails: list[str] = _env_list("ADMIN_EMAILS")
    menu_path: str = os.getenv("MENU_PATH", "").strip()

    currency_symbol: str = os.getenv("CURRENCY_SYMBOL", "₹")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
