"""Configuration for the Amora backend."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Amora service configuration settings."""

    # Database (SQLite for development, PostgreSQL/asyncpg in production)
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/amora.db"
    DB_ECHO: bool = False

    # Identity gateway: tokens are issued elsewhere, only verified here
    JWT_SECRET: str = "dev-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"

    # Reply generator for bot personas
    REPLY_SERVICE_URL: str = "http://localhost:8090"
    REPLY_TIMEOUT_SECONDS: float = 15.0
    REPLY_FAILURE_THRESHOLD: int = 5
    REPLY_RECOVERY_TIMEOUT: float = 60.0

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Server
    LOG_LEVEL: str = "INFO"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    CORS_ORIGINS: list[str] = ["*"]

    class Config:
        env_file = ".env"


# Global settings instance
settings = Settings()
