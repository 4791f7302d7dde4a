from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    DATABASE_URL: str = Field(..., description="Async database connection string (postgresql+asyncpg://...)")

    # Redis (optional, empty string disables the start lock)
    REDIS_URL: str = Field("redis://localhost:6379/0")

    # Auth
    SECRET_KEY: str = Field(..., description="HMAC key used to sign student auth tokens")
    TOKEN_TTL_SECONDS: int = 2592000  # 30 days

    # Mock Test Settings
    MOCK_TEST_QUESTION_COUNT: int = 50
    MOCK_TEST_TIME_LIMIT_SECONDS: int = 3600  # 60 minutes
    CLOCK_TICK_SECONDS: float = 1.0
    AUTOSAVE_EVERY_TICKS: int = 10
    START_LOCK_TTL_SECONDS: int = 30

    # Expiry Sweep
    EXPIRY_SWEEP_SECONDS: int = 30
    EXPIRY_SWEEP_JOB_ID: str = "expired_session_sweep"

    # Performance
    RECENT_TESTS_LIMIT: int = 5
    RECENT_MISTAKES_LIMIT: int = 20

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    CORS_ORIGINS: List[str] = Field(default_factory=list)

    # Environment
    ENV: str = "production"  # development, staging, production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

settings = Settings()
