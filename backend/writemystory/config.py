"""Configuration settings for the WriteMyStory application."""

from typing import Literal
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with database, LLM and email configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # LLM Provider
    PROVIDER: Literal["together", "openai", "anthropic"] = "together"
    TOGETHER_AI_API_KEY: str | None = None
    TOGETHER_BASE_URL: str = "https://api.together.xyz/v1"
    OPENAI_API_KEY: str | None = None
    ANTHROPIC_API_KEY: str | None = None

    # Model Configuration
    MODEL_NAME: str = "mistralai/Mixtral-8x7B-Instruct-v0.1"
    STORY_MODEL_NAME: str = "meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo"
    TEMPERATURE: float = 0.7
    TOP_P: float = 0.9
    TIMEOUT_SEC: int = 60
    MAX_TOKENS: int = 1500
    STORY_MAX_TOKENS: int = 6000
    CHAPTER_MAX_TOKENS: int = 2000

    # Database Configuration
    DATABASE_URL: str | None = None
    DATABASE_ECHO: bool = False  # Set to True for SQL query logging

    # Email (Postmark)
    POSTMARK_SERVER_API_TOKEN: str | None = None
    POSTMARK_API_URL: str = "https://api.postmarkapp.com/email"
    EMAIL_FROM: str = "WriteMyStory <info@write-my-story.com>"
    EMAIL_REPLY_TO: str = "info@write-my-story.com"

    APP_URL: str = "https://write-my-story.com"
    LOG_LEVEL: str = "INFO"

    @property
    def database_configured(self) -> bool:
        return bool(self.DATABASE_URL)

    @property
    def llm_api_key(self) -> str | None:
        """API key for the selected provider."""
        return {
            "together": self.TOGETHER_AI_API_KEY,
            "openai": self.OPENAI_API_KEY,
            "anthropic": self.ANTHROPIC_API_KEY,
        }.get(self.PROVIDER.lower())

    @property
    def email_configured(self) -> bool:
        token = self.POSTMARK_SERVER_API_TOKEN
        return bool(token) and token != "your_postmark_server_token_here"


@lru_cache()
def get_settings() -> Settings:
    """Get singleton settings instance."""
    return Settings()
