"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Lumis configuration. All values come from environment variables."""

    # Volcengine Ark (OpenAI-compatible chat completions)
    ark_api_key: str = Field(default="")
    ark_base_url: str = Field(default="https://ark.cn-beijing.volces.com")
    chat_completions_path: str = Field(default="/api/v3/chat/completions")
    chat_model: str = Field(default="deepseek-v3-241226")
    request_timeout_seconds: float = Field(default=60.0)

    # Database
    database_path: Path = Field(default=Path("data/lumis.db"))

    # Turso (hosted libSQL) — when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Release limit
    daily_release_limit: int = Field(default=5)
    release_timezone: str = Field(default="Asia/Shanghai")

    # Prompt overrides (DIAGNOSIS.md / CARD.md)
    prompts_dir: Path = Field(default=Path("config/prompts"))

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)


settings = Settings()
