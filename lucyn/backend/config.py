"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    APP_URL: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"

    GITHUB_CLIENT_ID: str = ""
    GITHUB_CLIENT_SECRET: str = ""
    SLACK_CLIENT_ID: str = ""
    SLACK_CLIENT_SECRET: str = ""
    DISCORD_CLIENT_ID: str = ""
    DISCORD_CLIENT_SECRET: str = ""

    TOKEN_ENCRYPTION_KEY: str = ""
    SESSION_SECRET: str = ""
    GITHUB_WEBHOOK_SECRET: str = ""
    UNSUBSCRIBE_TOKEN_SECRET: str = ""
    SLACK_SIGNING_SECRET: str = ""
    DISCORD_PUBLIC_KEY: str = ""
    DISCORD_BOT_ID: str = ""

    REDIS_URL: str = "redis://localhost:6379/0"
    DB_PATH: str = str(Path(__file__).parent / "lucyn.db")
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    API_REQUESTS_PER_MINUTE: int = 60
    WEBHOOK_REQUESTS_PER_MINUTE: int = 100

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


settings = Settings()
