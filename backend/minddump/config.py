"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

Application configuration powered by environment variables.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Centralized configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=(".env", "../.env", "../../.env"), env_prefix="", case_sensitive=False, extra="ignore")

    app_name: str = "minddump"
    database_url: str = "sqlite+aiosqlite:///./minddump.db"

    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.7
    llm_timeout_seconds: float = 60.0

    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"

    ollama_base_url: str = "http://localhost:11434"
    ollama_keep_alive_seconds: int = 900

    speech_language: str = "en-US"
    grace_period_seconds: float = 1.0
    restart_delay_seconds: float = 0.25
    permission_timeout_seconds: float = 30.0

    sessions_storage_key: str = "minddump_sessions"

    allowed_origins: str = "*"
    forwarded_allow_ips: str = "*"

    log_level: str = "warning"
    log_file: Optional[str] = None

settings = Settings()
