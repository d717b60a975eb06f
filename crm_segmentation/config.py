"""Configuration management using environment variables."""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database settings
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "crm_db"
    DB_USER: str = "crm_user"
    DB_PASSWORD: str = "crm_password"
    DATABASE_URL: Optional[str] = None

    # Segmentation settings
    ACTIVITY_HISTORY_LIMIT: int = 100
    NO_ORDER_RECENCY_DAYS: int = 999

    # Cron settings
    CRON_SECRET: Optional[str] = None

    # Data ingestion settings
    DATA_DIR: str = "./data/input"

    # API settings
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        """Database URL; DATABASE_URL wins over the PostgreSQL parts."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
