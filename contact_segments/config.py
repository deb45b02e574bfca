from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from functools import lru_cache


DEV_SECRET_KEY = "development-secret-key-change-in-production"

# Secrets that must never reach production
WEAK_SECRET_KEYS = {
    DEV_SECRET_KEY,
    "changeme",
    "secret",
    "password",
    "test",
    "dev",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/contact_segments"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    # Pool sized for short single-statement reads
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 5
    SLOW_QUERY_THRESHOLD_MS: int = 500

    # Auth (bearer tokens carry the caller's organization id)
    SECRET_KEY: str = DEV_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # CORS
    FRONTEND_URL: str = "http://localhost:3000"

    # Segment evaluation limits
    SEGMENT_DEFAULT_PAGE_SIZE: int = 100
    SEGMENT_MAX_PAGE_SIZE: int = 1000
    # Deepest row a members page may start at; full walks use keyset iteration
    SEGMENT_MAX_OFFSET: int = 1_000_000

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @model_validator(mode='after')
    def check_settings(self) -> "Settings":
        """Refuse to boot production with a guessable signing key, or with
        segment page limits that contradict each other."""
        if self.is_production:
            if self.SECRET_KEY in WEAK_SECRET_KEYS:
                raise ValueError("SECRET_KEY is a known weak value")
            if len(self.SECRET_KEY) < 32:
                raise ValueError("SECRET_KEY must be at least 32 characters in production")
            self.DEBUG = False
        if self.SEGMENT_DEFAULT_PAGE_SIZE < 1:
            raise ValueError("SEGMENT_DEFAULT_PAGE_SIZE must be at least 1")
        if self.SEGMENT_MAX_OFFSET < 1:
            raise ValueError("SEGMENT_MAX_OFFSET must be at least 1")
        if self.SEGMENT_DEFAULT_PAGE_SIZE > self.SEGMENT_MAX_PAGE_SIZE:
            raise ValueError("SEGMENT_DEFAULT_PAGE_SIZE cannot exceed SEGMENT_MAX_PAGE_SIZE")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def sqlalchemy_echo(self) -> bool:
        # Never echo SQL in production, statements can carry contact data
        return self.DEBUG and not self.is_production

    @property
    def docs_enabled(self) -> bool:
        return not self.is_production

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
