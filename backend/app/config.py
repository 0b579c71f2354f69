"""
Runtime settings for the bracket engine.

All values come from the environment (optionally via a .env file).
"""
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Settings:
    database_url: str
    sql_echo: bool
    registration_close_lead_minutes: int
    bracket_reset_enabled: bool
    randomize_seeding: bool
    read_retry_attempts: int
    read_retry_delay_seconds: float
    notify_webhook_url: str
    notify_timeout_seconds: float
    creation_session_ttl_seconds: int


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./brackets.db"),
        sql_echo=_env_bool("SQL_ECHO", False),
        registration_close_lead_minutes=int(os.getenv("REGISTRATION_CLOSE_LEAD_MINUTES", "15")),
        bracket_reset_enabled=_env_bool("BRACKET_RESET_ENABLED", True),
        randomize_seeding=_env_bool("RANDOMIZE_SEEDING", True),
        read_retry_attempts=max(1, int(os.getenv("READ_RETRY_ATTEMPTS", "3"))),
        read_retry_delay_seconds=float(os.getenv("READ_RETRY_DELAY_SECONDS", "0.05")),
        notify_webhook_url=os.getenv("NOTIFY_WEBHOOK_URL", ""),
        notify_timeout_seconds=float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "5")),
        creation_session_ttl_seconds=int(os.getenv("CREATION_SESSION_TTL_SECONDS", "900")),
    )


settings = load_settings()
