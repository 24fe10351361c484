"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Postgres ─────────────────────────────────────────
    postgres_user: str = "salesqa"
    postgres_password: str = "salesqa_pw"
    postgres_db: str = "pos"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url_override: str = ""  # e.g. sqlite:///./pos.db for local dev

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    openai_model: str = "gpt-4o"
    anthropic_model: str = "claude-3-haiku-20240307"
    llm_timeout_seconds: float = 15.0
    llm_temperature: float = 0.1
    llm_max_tokens: int = 1000
    history_turns: int = 6

    # ── Business ─────────────────────────────────────────
    business_timezone: str = "America/Toronto"
    currency_symbol: str = "$"
    counted_order_states: list[str] = ["COMPLETED"]

    # ── Query limits ─────────────────────────────────────
    max_result_rows: int = 200
    query_timeout_ms: int = 10_000
    parallel_query_limit: int = 5

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
