# storefront/config.py
from __future__ import annotations

import os
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env locally (safe in prod too)
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        return default


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no", ""}


def _env_list(name: str, default: str = "") -> List[str]:
    return [x.strip() for x in os.getenv(name, default).split(",") if x.strip()]


# -------------------
# Config (env-driven)
# -------------------
class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./storefront.db")
    db_pool_size: int = _env_int("DB_POOL_SIZE", 20)
    db_pool_timeout: int = _env_int("DB_POOL_TIMEOUT", 2)  # seconds to wait for a pooled connection
    db_pool_recycle: int = _env_int("DB_POOL_RECYCLE", 1800)
    db_query_timeout_ms: int = _env_int("DB_QUERY_TIMEOUT_MS", 5000)

    totp_issuer: str = os.getenv("TOTP_ISSUER", "Storefront")
    totp_valid_window: int = _env_int("TOTP_VALID_WINDOW", 1)

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_json: bool = _env_flag("LOG_JSON")

    cors_origins: List[str] = _env_list("CORS_ORIGINS", "http://localhost:5173")


settings = Settings()
