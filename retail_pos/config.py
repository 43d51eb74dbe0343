# retail_pos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retail_pos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Basis points (e.g., 800 = 8.00%)
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "0"))

    # One loyalty point per this many cents of a completed sale's total ($10)
    POINTS_PER_CURRENCY_UNIT = int(os.environ.get("POINTS_PER_CURRENCY_UNIT", "1000"))

    # Sale transaction concurrency controls
    SALE_RETRY_ATTEMPTS = int(os.environ.get("SALE_RETRY_ATTEMPTS", "3"))
    SALE_RETRY_BACKOFF_SECONDS = float(os.environ.get("SALE_RETRY_BACKOFF_SECONDS", "0.1"))
    SALE_TRANSACTION_TIMEOUT_SECONDS = float(os.environ.get("SALE_TRANSACTION_TIMEOUT_SECONDS", "5"))


def validate_config(config) -> None:
    """Reject settings the sale operations cannot run with."""
    if config["POINTS_PER_CURRENCY_UNIT"] <= 0:
        raise ValueError("POINTS_PER_CURRENCY_UNIT must be a positive number of cents")
    if config["TAX_RATE_BPS"] < 0:
        raise ValueError("TAX_RATE_BPS must not be negative")
    if config["SALE_RETRY_ATTEMPTS"] < 1:
        raise ValueError("SALE_RETRY_ATTEMPTS must be at least 1")
    if config["SALE_RETRY_BACKOFF_SECONDS"] < 0 or config["SALE_TRANSACTION_TIMEOUT_SECONDS"] < 0:
        raise ValueError("Sale retry backoff and timeout must not be negative")
