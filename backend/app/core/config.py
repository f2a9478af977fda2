"""Application configuration powered by Pydantic settings."""
from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    PROJECT_NAME: str = Field(default="Chat Backend")
    VERSION: str = Field(default="0.1.0")

    DATABASE_URL: str = Field(default="postgresql+psycopg://postgres:postgres@db:5432/postgres")
    LOG_LEVEL: str = Field(default="INFO")

    FRONTEND_URL: str = Field(default="http://localhost:5173")

    SESSION_SECRET: str = Field(default="change-me")
    SESSION_COOKIE_NAME: str = Field(default="chat_session")
    SESSION_COOKIE_SECURE: bool = Field(default=False)

    LOCAL_LOGIN_ENABLED: bool = Field(default=True)
    LOCAL_LOGIN_EMAIL: str = Field(default="test@example.com")
    LOCAL_LOGIN_PASSWORD: str = Field(default="testtest")

    COMPLETION_API_BASE: str = Field(default="https://api.groq.com/openai/v1")
    COMPLETION_API_KEY: str = Field(default="")
    COMPLETION_MODEL: str = Field(default="llama3-8b-8192")
    COMPLETION_MAX_TOKENS: int = Field(default=256)
    COMPLETION_TIMEOUT: float = Field(default=30.0)
    COMPLETION_FALLBACK_TEXT: str = Field(default="Sorry, I could not generate a response.")

    CHAT_TIMEZONE: str = Field(default="UTC")
    CHAT_MESSAGE_MAX_LENGTH: int = Field(default=2000)

    CONVERSATION_TITLE_MAX_LENGTH: int = Field(default=100)
    CONVERSATION_TITLE_PREFIX_LENGTH: int = Field(default=30)
    DEFAULT_CONVERSATION_TITLE: str = Field(default="New Conversation")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache(maxsize=1)
def get_settings(**overrides: Any) -> Settings:
    """Return cached settings instance to avoid repeated parsing."""

    if overrides:
        return Settings(**overrides)
    return Settings()


settings = get_settings()
