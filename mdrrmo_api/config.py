from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from functools import lru_cache


# Secrets that must never reach a production deployment
WEAK_SECRET_KEYS = {
    "development-secret-key-change-in-production",
    "changeme",
    "secret",
    "password",
    "mdrrmo",
    "test",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "mysql+aiomysql://root@localhost:3306/mdrrmo"

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert mysql:// to mysql+aiomysql:// for async support."""
        if v and v.startswith("mysql://"):
            return v.replace("mysql://", "mysql+aiomysql://", 1)
        return v

    # Auth
    SECRET_KEY: str = "development-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # Login throttling
    LOGIN_MAX_ATTEMPTS: int = 5
    LOGIN_WINDOW_SECONDS: int = 900

    # Cache
    REDIS_URL: str | None = None
    CACHE_TTL_SECONDS: int = 60

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Inventory rules
    EXPIRY_WARNING_DAYS: int = 30
    EXPIRY_CRITICAL_DAYS: int = 7
    MAINTENANCE_WARNING_DAYS: int = 7

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    OVERDUE_SWEEP_INTERVAL_MINUTES: int = 10

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    DOCS_ENABLED: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @model_validator(mode="after")
    def check_production_secrets(self) -> "Settings":
        """Refuse to boot production with a guessable signing key."""
        if self.ENVIRONMENT == "production":
            if self.SECRET_KEY in WEAK_SECRET_KEYS:
                raise ValueError("SECRET_KEY must be changed in production")
            if len(self.SECRET_KEY) < 32:
                raise ValueError("SECRET_KEY must be at least 32 characters in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def sqlalchemy_echo(self) -> bool:
        """SQL echo is only ever enabled for local debugging."""
        return self.DEBUG and not self.is_production


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
