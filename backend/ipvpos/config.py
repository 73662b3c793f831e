# backend/ipvpos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///ipvpos.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound (seconds) for lock waits and for the retry loop of one
    # business operation. SQLite uses it as its busy timeout.
    TRANSACTION_TIMEOUT_SECONDS = float(os.environ.get("TRANSACTION_TIMEOUT_SECONDS", "10"))
    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))

    # Sales do not check on-hand quantity unless this is enabled.
    SALE_REQUIRES_STOCK = _env_bool("SALE_REQUIRES_STOCK", False)

    # (name, requires_reference)
    DEFAULT_PAYMENT_METHODS = (
        ("efectivo", False),
        ("transferencia", True),
    )

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
