"""Configuration management for hierarchical tasks."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CapacityConfig(BaseSettings):
    """Process-wide and per-job concurrency ceilings."""

    model_config = SettingsConfigDict(env_prefix="TASKS_", env_file=".env", extra="ignore")

    global_units: int = Field(10, description="Process-wide concurrency ceiling")
    default_local_units: int = Field(3, description="Per-job ceiling when none is given")

    @field_validator("global_units", "default_local_units")
    @classmethod
    def validate_units(cls, v):
        """Capacity limits must be positive."""
        if v < 1:
            raise ValueError("Capacity units must be at least 1")
        return v


class StoreConfig(BaseSettings):
    """Identity store settings."""

    model_config = SettingsConfigDict(env_prefix="TASKS_STORE_", env_file=".env", extra="ignore")

    backend: str = Field("memory", description="memory or postgres")
    database_url: Optional[str] = None
    table: str = "task_units"
    pool_min_size: int = 1
    pool_max_size: int = 10

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v):
        v = v.lower()
        if v not in ("memory", "postgres"):
            raise ValueError("Store backend must be 'memory' or 'postgres'")
        return v

    @field_validator("database_url")
    @classmethod
    def validate_url(cls, v):
        """Validate database URL format."""
        if v is None:
            return v
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError("TASKS_STORE_DATABASE_URL must be a valid PostgreSQL connection string")
        if "[PASSWORD]" in v:
            raise ValueError("TASKS_STORE_DATABASE_URL contains placeholder password - please set actual password")
        return v

    @field_validator("table")
    @classmethod
    def validate_table(cls, v):
        if not v.replace("_", "").isalnum():
            raise ValueError("Store table name may only contain letters, digits and underscores")
        return v


class AppConfig(BaseSettings):
    """Application configuration settings."""

    model_config = SettingsConfigDict(env_prefix="TASKS_", env_file=".env", extra="ignore")

    name: str = "hierarchical-tasks"
    log_level: str = "INFO"
    debug: bool = False

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    capacity: CapacityConfig = Field(default_factory=CapacityConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    app: AppConfig = Field(default_factory=AppConfig)

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from environment."""
        return cls()
