"""Configuration management for the face authentication microservice."""

from typing import List, Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    # Server configuration
    port: int = 5000
    host: str = "0.0.0.0"
    cors_origins: List[str] = ["*"]
    trust_forwarded_for: bool = False

    # Identity storage
    storage_backend: str = "memory"
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_table: str = "users"

    # Face matching settings
    match_threshold: float = 0.6
    embedding_dimension: Optional[int] = None

    # Login rate limiting
    rate_limit_backend: str = "memory"
    redis_url: str = ""
    rate_limit_window_seconds: int = 300
    rate_limit_max_attempts: int = 10
    rate_limit_max_tracked_clients: int = 10000
    rate_limit_sweep_interval: int = 1000

    # Observability
    otel_enabled: bool = False
    otel_endpoint: Optional[str] = None
    otel_console_export: bool = False

    # Logging configuration
    log_level: str = "INFO"

    @field_validator('storage_backend')
    @classmethod
    def validate_storage_backend(cls, v):
        v = v.lower()
        if v not in ("memory", "supabase"):
            raise ValueError('STORAGE_BACKEND must be "memory" or "supabase"')
        return v

    @field_validator('rate_limit_backend')
    @classmethod
    def validate_rate_limit_backend(cls, v):
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError('RATE_LIMIT_BACKEND must be "memory" or "redis"')
        return v

    @field_validator('match_threshold')
    @classmethod
    def validate_match_threshold(cls, v):
        if v <= 0.0:
            raise ValueError('MATCH_THRESHOLD must be greater than 0.0')
        return v

    @field_validator('embedding_dimension')
    @classmethod
    def validate_embedding_dimension(cls, v):
        if v is not None and v < 1:
            raise ValueError('EMBEDDING_DIMENSION must be a positive integer')
        return v

    @field_validator('rate_limit_window_seconds', 'rate_limit_max_attempts',
                     'rate_limit_max_tracked_clients', 'rate_limit_sweep_interval')
    @classmethod
    def validate_positive(cls, v, info):
        if v < 1:
            raise ValueError(f'{info.field_name.upper()} must be a positive integer')
        return v

    @model_validator(mode='after')
    def validate_backend_credentials(self):
        if self.storage_backend == "supabase":
            if not self.supabase_url:
                raise ValueError('SUPABASE_URL environment variable is required')
            if not self.supabase_key:
                raise ValueError('SUPABASE_KEY environment variable is required')
        if self.rate_limit_backend == "redis" and not self.redis_url:
            raise ValueError('REDIS_URL environment variable is required')
        return self


# Global settings instance
settings = Settings()
