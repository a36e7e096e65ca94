# backend/receivables/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the app by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///receivables.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Derived statistics cache (debt totals, customer summaries)
    STATS_CACHE_TTL_SECONDS = int(os.environ.get("STATS_CACHE_TTL_SECONDS", "120"))
    STATS_CACHE_MAX_ENTRIES = int(os.environ.get("STATS_CACHE_MAX_ENTRIES", "1000"))

    # Receipt numbering: CR-YYYYMMDD-XXXXXX, regenerated on collision
    RECEIPT_NUMBER_PREFIX = os.environ.get("RECEIPT_NUMBER_PREFIX", "CR")
    RECEIPT_NUMBER_MAX_ATTEMPTS = int(os.environ.get("RECEIPT_NUMBER_MAX_ATTEMPTS", "5"))
