import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite:///./notes.sqlite"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the notes database and API."""

    database_url: str = DEFAULT_DATABASE_URL
    max_connections: int = 10
    timeout_seconds: Optional[float] = 30.0
    secret_key: str = "temporary_dev_secret"
    access_token_expire_minutes: int = 60 * 24
    bcrypt_rounds: int = 10
    log_level: str = "INFO"


# PUBLIC_INTERFACE
def get_database_url():
    """
    Retrieves the database URL from the DATABASE_URL environment variable,
    falling back to a SQLite file in the working directory.
    """
    load_dotenv()
    return os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Builds Settings from the environment (and a .env file if present)."""
    load_dotenv()
    timeout = _float_env("DB_TIMEOUT_SECONDS", 30.0)
    return Settings(
        database_url=get_database_url(),
        max_connections=_int_env("DB_MAX_CONNECTIONS", 10),
        timeout_seconds=timeout if timeout > 0 else None,
        secret_key=os.getenv("SECRET_KEY", "temporary_dev_secret"),
        access_token_expire_minutes=_int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24),
        bcrypt_rounds=_int_env("BCRYPT_ROUNDS", 10),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
