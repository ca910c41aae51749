from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "cloud_db"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    # Full DSN; takes precedence over the POSTGRES_* components
    DATABASE_URL: Optional[str] = None

    PORT: int = 8080
    LOG_LEVEL: str = "INFO"
    RUN_MIGRATIONS: bool = True

    # Fulfillment worker knobs (milliseconds)
    POLL_MS: int = 1000
    WORK_MS: int = 3000
    ERROR_BACKOFF_MS: int = 1000
    DB_WAIT_INITIAL_MS: int = 500
    DB_WAIT_MAX_MS: int = 5000

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if not self.DATABASE_URL:
            return (
                f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )
        return normalize_database_url(self.DATABASE_URL)


def normalize_database_url(url: str) -> str:
    """Pin libpq-style ``postgres://`` / ``postgresql://`` DSNs to psycopg2."""
    url = url.strip().strip('"').strip("'")
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg2://", 1)
    return url


@lru_cache
def get_settings() -> Settings:
    return Settings()
