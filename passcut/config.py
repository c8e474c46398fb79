"""Application configuration with validation."""
from typing import Optional, Literal
from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment / .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Pass-Cut Platform"
    APP_VERSION: str = "1.0.0"
    APP_ENV: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = False
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "json"

    # API
    RATE_LIMIT_BACKEND: Literal["memory", "redis"] = "memory"
    RATE_LIMIT_PER_MINUTE: int = Field(default=60, ge=1, le=1000)
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=60, ge=1, le=3600)

    # Storage
    STORAGE_BACKEND: Literal["memory", "snowflake"] = "memory"
    SEED_DEMO_DATA: bool = True

    # Snowflake
    SNOWFLAKE_ACCOUNT: Optional[str] = None
    SNOWFLAKE_USER: Optional[str] = None
    SNOWFLAKE_PASSWORD: Optional[SecretStr] = None
    SNOWFLAKE_DATABASE: Optional[str] = None
    SNOWFLAKE_SCHEMA: Optional[str] = None
    SNOWFLAKE_WAREHOUSE: Optional[str] = None
    SNOWFLAKE_ROLE: Optional[str] = None

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Scoring policy
    CAREER_EXAM_ENABLED: bool = True
    SUBJECT_CUTOFF_RATE: float = Field(default=0.4, gt=0, lt=1)
    BONUS_BASIS: Literal["total_score", "max_score"] = "total_score"
    SCORE_PRECISION: int = Field(default=2, ge=0, le=4)
    SUBMISSION_EDIT_LIMIT: Optional[int] = Field(default=None, ge=1)
    HERO_MIN_RECRUIT_COUNT: int = Field(default=10, ge=1)
    HERO_PASS_CAP_RATE: float = Field(default=0.1, ge=0, le=1)

    # Statistics
    DISTRIBUTION_MIN_PARTICIPANTS: int = Field(default=10, ge=1)
    DISTRIBUTION_BUCKET_SIZE: int = Field(default=10, ge=1)
    DISTRIBUTION_MAX_SCORE: int = Field(default=250, ge=10)

    # Rescoring
    RESCORE_EMIT_EMPTY_EVENTS: bool = False

    # Auto release
    AUTO_RELEASE_ENABLED: bool = False
    AUTO_RELEASE_MODE: Literal["HYBRID", "TRAFFIC_ONLY", "CRON_ONLY"] = "HYBRID"
    AUTO_RELEASE_CHECK_INTERVAL_SEC: int = Field(default=300, ge=30, le=86400)
    AUTO_RELEASE_THRESHOLD_PROFILE: Literal["BALANCED", "CONSERVATIVE", "AGGRESSIVE"] = "BALANCED"
    AUTO_RELEASE_READY_RATIO_PROFILE: Literal["BALANCED", "CONSERVATIVE", "AGGRESSIVE"] = "BALANCED"
    AUTO_RELEASE_ADMIN_ID: Optional[int] = None
    AUTO_RELEASE_NOTICE: bool = True

    @model_validator(mode="after")
    def validate_production_settings(self):
        """Ensure production has required settings."""
        if self.APP_ENV == "production" and self.DEBUG:
            raise ValueError("DEBUG must be False in production")
        return self

    @model_validator(mode="after")
    def validate_snowflake_settings(self):
        """Snowflake backend needs credentials."""
        if self.STORAGE_BACKEND == "snowflake":
            missing = [
                name for name in ("SNOWFLAKE_ACCOUNT", "SNOWFLAKE_USER", "SNOWFLAKE_PASSWORD")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"Snowflake backend requires {', '.join(missing)}")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
