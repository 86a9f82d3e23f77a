# backend/flowdesk/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/flowdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///flowdesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Business defaults applied to newly created owners
    DEFAULT_CURRENCY = os.environ.get("FLOWDESK_DEFAULT_CURRENCY", "NGN")
    DEFAULT_TAX_RATE_BPS = int(os.environ.get("FLOWDESK_DEFAULT_TAX_RATE_BPS", "750"))

    LOG_LEVEL = os.environ.get("FLOWDESK_LOG_LEVEL", "INFO")
