# backend/erp/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def engine_options_for(database_uri: str, statement_timeout_ms: int) -> dict:
    """
    Build SQLAlchemy engine options that bound every statement in time.

    SQLite only exposes a busy timeout (seconds); PostgreSQL accepts a
    per-connection statement_timeout.
    """
    if database_uri.startswith("sqlite"):
        return {"connect_args": {"timeout": max(statement_timeout_ms / 1000.0, 1.0)}}
    if database_uri.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "connect_args": {"options": f"-c statement_timeout={statement_timeout_ms}"},
        }
    return {"pool_pre_ping": True}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///erp.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    DB_STATEMENT_TIMEOUT_MS = int(os.environ.get("DB_STATEMENT_TIMEOUT_MS", "5000"))
    SQLALCHEMY_ENGINE_OPTIONS = engine_options_for(SQLALCHEMY_DATABASE_URI, DB_STATEMENT_TIMEOUT_MS)

    # External collaborators
    STORAGE_BASE_URL = os.environ.get("STORAGE_BASE_URL")
    STORAGE_API_KEY = os.environ.get("STORAGE_API_KEY")
    NOTIFY_WEBHOOK_URL = os.environ.get("NOTIFY_WEBHOOK_URL")
    COLLABORATOR_TIMEOUT_SECONDS = float(os.environ.get("COLLABORATOR_TIMEOUT_SECONDS", "5"))

    # Business policy switches
    SALES_CONFIRM_DECREMENTS_STOCK = _env_flag("SALES_CONFIRM_DECREMENTS_STOCK")
    RESTOCK_DAMAGED_RETURNS = _env_flag("RESTOCK_DAMAGED_RETURNS")
    ABC_CLASS_A_CUTOFF = float(os.environ.get("ABC_CLASS_A_CUTOFF", "80"))
    ABC_CLASS_B_CUTOFF = float(os.environ.get("ABC_CLASS_B_CUTOFF", "95"))

    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
