# bakery/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=ROOT_DIR / ".env")


def _get_env(*keys: str, default: Optional[str] = None) -> Optional[str]:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return float(v)


@dataclass(frozen=True)
class Settings:
    db_path: str
    jwt_secret: str
    jwt_expire_days: int
    stripe_secret_key: str
    stripe_publishable_key: str
    stripe_webhook_secret: str
    frontend_url: str
    currency: str
    tax_rate: float
    free_shipping_threshold: float
    shipping_charge: float
    reward_point_value: float
    default_state: str
    default_country: str
    api_base_url: str
    api_timeout_seconds: float
    payment_poll_interval: float
    payment_timeout_seconds: float
    notification_ttl_seconds: float
    admin_email: str
    admin_password: str


def load_settings() -> Settings:
    return Settings(
        db_path=_get_env("DB_PATH", "DATABASE_PATH", default=str(ROOT_DIR / "bakery.db")) or "bakery.db",
        jwt_secret=_get_env("JWT_SECRET", default="perfect-bakery-jwt-secret-key") or "",
        jwt_expire_days=int(_get_float("JWT_EXPIRE_DAYS", default=30)),
        stripe_secret_key=_get_env("STRIPE_SECRET_KEY", default="") or "",
        stripe_publishable_key=_get_env("STRIPE_PUBLISHABLE_KEY", default="") or "",
        stripe_webhook_secret=_get_env("STRIPE_WEBHOOK_SECRET", default="") or "",
        frontend_url=(_get_env("FRONTEND_URL", default="http://localhost:5173") or "").rstrip("/"),
        currency=(_get_env("CURRENCY", default="inr") or "inr").lower(),
        tax_rate=_get_float("TAX_RATE", default=0.05),
        free_shipping_threshold=_get_float("FREE_SHIPPING_THRESHOLD", default=500),
        shipping_charge=_get_float("SHIPPING_CHARGE", default=50),
        reward_point_value=_get_float("REWARD_POINT_VALUE", default=1),
        default_state=_get_env("DEFAULT_STATE", default="Uttar Pradesh") or "",
        default_country=_get_env("DEFAULT_COUNTRY", default="India") or "",
        api_base_url=(_get_env("API_BASE_URL", default="http://localhost:8000/api") or "").rstrip("/"),
        api_timeout_seconds=_get_float("API_TIMEOUT_SECONDS", default=15),
        payment_poll_interval=_get_float("PAYMENT_POLL_INTERVAL", default=2),
        payment_timeout_seconds=_get_float("PAYMENT_TIMEOUT_SECONDS", default=900),
        notification_ttl_seconds=_get_float("NOTIFICATION_TTL_SECONDS", default=4),
        admin_email=_get_env("ADMIN_EMAIL", default="") or "",
        admin_password=_get_env("ADMIN_PASSWORD", default="") or "",
    )


settings = load_settings()
