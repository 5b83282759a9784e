"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "agent-sandbox"
    log_level: str = "INFO"
    storage_backend: str = "memory"
    database_url: str = ""
    max_task_length: int = Field(default=1000, ge=1)
    task_max_duration_ms: int = Field(default=30_000, ge=1)
    task_max_retries: int = Field(default=3, ge=0)
    task_retry_backoff_s: float = Field(default=0.5, ge=0.0)
    task_workers: int = Field(default=4, ge=1)
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout_s: float = Field(default=20.0, ge=0.5)
    openai_api_key: str = ""

    model_config = SettingsConfigDict(
        env_prefix="AGENT_SANDBOX_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("SANDBOX_DATABASE_URL", "")

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
