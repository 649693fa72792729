"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "Action Plan Tracker"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Database (PostgreSQL in production, SQLite file for local runs)
    DATABASE_URL: str = "sqlite:///./action_plans.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis (login throttling)
    REDIS_URL: str = "redis://localhost:6379/0"
    AUTH_LOGIN_IP_LIMIT_PER_MINUTE: int = 5
    AUTH_LOGIN_USER_FAIL_THRESHOLD: int = 5
    AUTH_LOGIN_USER_LOCK_SECONDS: int = 15 * 60  # 15 minutes

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # JWT
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_LEEWAY_SECONDS: int = 30  # clock skew tolerance for exp validation

    # Permission engine
    PERMISSION_CACHE_TTL_SECONDS: int = 300

    # Unlock workflow: duration presets offered to the approver (hours)
    UNLOCK_PRESET_HOURS: str = "24,48,168"

    # Grading
    MAX_QUALITY_SCORE: int = 100
    # Type-to-confirm literal required by the company-wide grade reset.
    GRADE_RESET_CONFIRMATION: str = "RESET ALL GRADES"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def unlock_preset_hours(self) -> list[int]:
        """Get unlock duration presets as list of hours."""
        return [int(value.strip()) for value in self.UNLOCK_PRESET_HOURS.split(",") if value.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
