from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Message log seeded at startup with ids "0".."N-1"
    SEED_MESSAGE_COUNT: int = Field(default=30, ge=0)

    # Page size used when neither first nor last is requested
    DEFAULT_PAGE_SIZE: int = Field(default=10, ge=0)

    # Status lifecycle timings (milliseconds), each step strictly after the last
    SENT_DELAY_MS: int = Field(default=1000, gt=0)
    READ_DELAY_MS: int = Field(default=15000, gt=0)

    # Hold back every other sendMessage response so live updates can win the race
    RESPONSE_DELAY_MS: int = Field(default=4000, ge=0)

    # Synthetic inbound messages
    AUTO_REPLY_ENABLED: bool = True
    AUTO_REPLY_INTERVAL_MS: int = Field(default=30000, gt=0)

    # 0 means unbounded subscriber queues
    SUBSCRIBER_QUEUE_SIZE: int = Field(default=0, ge=0)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
