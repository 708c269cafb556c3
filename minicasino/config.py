import os
from decimal import Decimal

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    DATABASE_URL = os.getenv("DATABASE_URL", "")
    STORE_PATH = os.getenv("STORE_PATH", os.path.join("data", "store.json"))

    # Sessions: short default vs. "remember me"
    SESSION_COOKIE = os.getenv("SESSION_COOKIE", "casino_session")
    SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "24"))
    REMEMBER_ME_DAYS = int(os.getenv("REMEMBER_ME_DAYS", "30"))
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "0") == "1"

    # Signup bonus
    PROMO_CODE = os.getenv("PROMO_CODE", "SUPA")
    PROMO_BONUS = Decimal(os.getenv("PROMO_BONUS", "2500.00"))

    HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "50"))
    HISTORY_MAX = int(os.getenv("HISTORY_MAX", "100"))

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    PORT = int(os.getenv("PORT", "8080"))


def settings_dict(overrides=None) -> dict:
    """Config attributes as a plain mapping, with `overrides` applied on top."""
    values = {k: getattr(Config, k) for k in dir(Config) if k.isupper()}
    values.update(overrides or {})
    return values
