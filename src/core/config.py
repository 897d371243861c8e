"""
Service settings: environment variables, then the project-root .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# .env sits at the repository root, next to semantic_layer/
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Postgres ─────────────────────────────────────────
    postgres_user: str = "insights"
    postgres_password: str = "insights_pw"
    postgres_db: str = "crm"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    query_timeout_ms: int = 10_000

    # ── Auth ─────────────────────────────────────────────
    supabase_jwt_secret: str = ""
    jwt_audience: str = "authenticated"

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible gateway, empty = api.openai.com
    anthropic_api_key: str = ""
    llm_model: str = ""  # empty = provider default
    llm_timeout_seconds: float = 20.0

    # ── Insights pipeline ────────────────────────────────
    sql_row_limit: int = 500
    cache_ttl_minutes: int = 30
    cache_backend: str = "memory"  # memory | postgres

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
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
