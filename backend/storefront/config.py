# backend/storefront/config.py
from __future__ import annotations
import json
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///storefront.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Checkout defaults (amounts in cents)
    DEFAULT_SHIPPING_CENTS = _env_int("DEFAULT_SHIPPING_CENTS", 999)
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")
    GUEST_CART_TTL_DAYS = _env_int("GUEST_CART_TTL_DAYS", 7)

    # Outbound order e-mail channel
    NOTIFICATION_WORKER_ENABLED = _env_bool("NOTIFICATION_WORKER_ENABLED", True)
    NOTIFICATION_QUEUE_MAXSIZE = _env_int("NOTIFICATION_QUEUE_MAXSIZE", 0)  # 0 = unbounded

    # Payment providers: provider key -> settings. JSON in PAYMENT_PROVIDERS overrides.
    SANDBOX_WEBHOOK_SECRET = os.environ.get("SANDBOX_WEBHOOK_SECRET", "whsec_dev_change_me")
    PAYMENT_PROVIDERS = json.loads(os.environ.get("PAYMENT_PROVIDERS", "null")) or {
        "sandbox": {
            "provider_currency": "USD",
            "publishable_key": "pk_test_sandbox",
            "webhook_secret": SANDBOX_WEBHOOK_SECRET,
        },
        "manual": {
            "provider_currency": "USD",
        },
    }

    # Browser origins allowed to call the API (comma separated)
    CORS_ALLOWED_ORIGINS = [
        o.strip()
        for o in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if o.strip()
    ]
