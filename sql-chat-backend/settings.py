"""
SQL Chat Gate - Configuration
=============================

All configuration comes from environment variables. A local .env file is
read during development; in deployment the platform injects the values.

USAGE:
    from settings import load_settings
    settings = load_settings()
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

DEFAULT_GROQ_MODEL = "llama-3.3-70b-versatile"
DEFAULT_CACHE_TTL_SECONDS = 600  # 10 minutes
DEFAULT_SAMPLE_ROWS = 3
DEFAULT_ROW_LIMIT = 100


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the service."""
    database_url: Optional[str] = None
    database_schema: Optional[str] = None

    groq_api_key: Optional[str] = None
    groq_model: str = DEFAULT_GROQ_MODEL
    llm_temperature: float = 0.0
    llm_max_output_tokens: int = 512

    schema_cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    schema_sample_rows: int = DEFAULT_SAMPLE_ROWS
    default_row_limit: int = DEFAULT_ROW_LIMIT

    app_env: str = "production"
    enable_schema_endpoint: bool = False
    log_level: str = "INFO"
    log_full_sql: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    host: str = "0.0.0.0"
    port: int = 5000

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


def load_settings() -> Settings:
    """
    Build Settings from the environment (and .env if present).

    Raises:
        ValueError: If a numeric variable cannot be parsed or is out of range.
    """
    load_dotenv()

    app_env = os.getenv("APP_ENV", "production").strip().lower()
    is_dev = app_env == "development"

    origins = [
        o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
    ]

    settings = Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        database_schema=os.getenv("DATABASE_SCHEMA") or None,
        groq_api_key=os.getenv("GROQ_API_KEY") or None,
        groq_model=os.getenv("GROQ_MODEL", DEFAULT_GROQ_MODEL),
        llm_temperature=_env_float("LLM_TEMPERATURE", 0.0),
        llm_max_output_tokens=_env_int("LLM_MAX_OUTPUT_TOKENS", 512),
        schema_cache_ttl_seconds=_env_int("SCHEMA_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS),
        schema_sample_rows=_env_int("SCHEMA_SAMPLE_ROWS", DEFAULT_SAMPLE_ROWS),
        default_row_limit=_env_int("DEFAULT_ROW_LIMIT", DEFAULT_ROW_LIMIT),
        app_env=app_env,
        enable_schema_endpoint=_env_bool("ENABLE_SCHEMA_ENDPOINT", is_dev),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_full_sql=_env_bool("LOG_FULL_SQL", is_dev),
        cors_origins=origins or ["*"],
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT", 5000),
    )

    if settings.schema_sample_rows < 0:
        raise ValueError("SCHEMA_SAMPLE_ROWS must be >= 0")
    if settings.default_row_limit <= 0:
        raise ValueError("DEFAULT_ROW_LIMIT must be a positive integer")
    if settings.schema_cache_ttl_seconds < 0:
        raise ValueError("SCHEMA_CACHE_TTL_SECONDS must be >= 0")

    return settings
