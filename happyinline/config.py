"""Environment-driven configuration."""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default) in {"1", "true", "True", "yes"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///happyinline.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    ENABLE_PAYMENTS = _env_flag("ENABLE_PAYMENTS", "1")

    # Auth
    AUTH_TOKEN_MAX_AGE = int(os.getenv("AUTH_TOKEN_MAX_AGE", "86400"))
    OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", "10"))

    DEEP_LINK_SCHEME = os.getenv("DEEP_LINK_SCHEME", "happyinline")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
