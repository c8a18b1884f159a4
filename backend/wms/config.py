# backend/wms/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/wms.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///wms.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Browser origins allowed to call the API (comma separated)
    CORS_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",")
        if origin.strip()
    )

    # Listing defaults
    PAGE_SIZE_DEFAULT = _env_int("PAGE_SIZE_DEFAULT", 15)
    PAGE_SIZE_MAX = _env_int("PAGE_SIZE_MAX", 100)

    # Basis points (1900 = 19%) applied when neither line nor product sets a rate
    DEFAULT_TAX_RATE_BPS = _env_int("DEFAULT_TAX_RATE_BPS", 1900)

    # Electronic invoicing
    EINVOICE_PREFIX = os.environ.get("EINVOICE_PREFIX", "SETP")
    EINVOICE_TECHNICAL_KEY = os.environ.get("EINVOICE_TECHNICAL_KEY", "")
    # "1" = production, "2" = testing
    EINVOICE_ENVIRONMENT = os.environ.get("EINVOICE_ENVIRONMENT", "2")
    EINVOICE_THRESHOLD_CENTS = _env_int("EINVOICE_THRESHOLD_CENTS", 10_000_000)
    EINVOICE_CURRENCY = os.environ.get("EINVOICE_CURRENCY", "COP")
    EINVOICE_ISSUER_NIT = os.environ.get("EINVOICE_ISSUER_NIT", "")
    EINVOICE_ISSUER_NAME = os.environ.get("EINVOICE_ISSUER_NAME", "")
    EINVOICE_ISSUER_ADDRESS = os.environ.get("EINVOICE_ISSUER_ADDRESS", "")
    EINVOICE_ISSUER_CITY = os.environ.get("EINVOICE_ISSUER_CITY", "")
    EINVOICE_ISSUER_DEPARTMENT = os.environ.get("EINVOICE_ISSUER_DEPARTMENT", "")
    EINVOICE_ISSUER_PHONE = os.environ.get("EINVOICE_ISSUER_PHONE", "")
    EINVOICE_ISSUER_EMAIL = os.environ.get("EINVOICE_ISSUER_EMAIL", "")
