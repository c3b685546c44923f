# backend/procure/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/procure.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///procure.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Attempts for a unit of work that loses an optimistic-lock race
    PROCURE_RETRY_ATTEMPTS = int(os.environ.get("PROCURE_RETRY_ATTEMPTS", "3"))

    # PO defaults when the generator call omits them
    PROCURE_DEFAULT_TAX_RATE_BPS = int(os.environ.get("PROCURE_DEFAULT_TAX_RATE_BPS", "1100"))
    PROCURE_CURRENCY = os.environ.get("PROCURE_CURRENCY", "IDR")
