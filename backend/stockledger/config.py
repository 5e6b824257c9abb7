# backend/stockledger/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # One tenant's store per configured database.
    # SQLite file lives in backend/instance/stockledger.sqlite3 by default.
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Composite products expose batches by default; set to multiply the
    # floor-of-components result by the recipe yield instead.
    COMPOSITE_STOCK_MULTIPLY_BY_YIELD = _env_flag("COMPOSITE_STOCK_MULTIPLY_BY_YIELD")

    # Retries for deadlocks / optimistic-lock conflicts on a unit of work
    STOCK_TX_RETRY_ATTEMPTS = int(os.environ.get("STOCK_TX_RETRY_ATTEMPTS", "3"))
