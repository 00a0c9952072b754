"""
Centralized configuration management for mongosync.

Uses Pydantic Settings for validation and environment variable loading.
Loads from .env file if present, falls back to environment variables, then defaults.
Command-line arguments are passed in as overrides and take precedence.
"""
from typing import Annotated, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
LOG_FORMATS = {"text", "json"}


class ReplicationSettings(BaseSettings):
    """Settings for one replication run."""

    model_config = SettingsConfigDict(
        env_prefix="MONGOSYNC_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Connections
    source_uri: str = Field(description="Connection string of the source deployment")
    target_uri: str = Field(description="Connection string of the target deployment")
    databases: Annotated[List[str], NoDecode] = Field(
        description="Databases to replicate (comma-separated in env)"
    )

    # Stream settings
    lookback_hours: int = Field(
        default=50,
        description="Start the change stream this many hours before now"
    )
    batch_size: int = Field(default=2000, description="Change stream batch size")
    max_await_time_ms: int = Field(
        default=1000,
        description="How long one wait for new changes blocks on the server"
    )

    # Apply settings
    transaction_timeout: float = Field(
        default=2.0,
        description="Wall-clock budget for one change's transaction, in seconds"
    )
    apply_attempts: int = Field(
        default=1,
        description="Attempts per change for transient write errors (1 = no retry)"
    )
    compare_ids_as_strings: bool = Field(
        default=True,
        description="Match _id on its string form for delete/update/replace"
    )
    dry_run: bool = Field(default=False, description="Log changes without writing to the target")

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log output format (text/json)")
    metrics_port: Optional[int] = Field(
        default=None,
        description="Expose Prometheus metrics on this port if set"
    )

    @field_validator("databases", mode="before")
    @classmethod
    def split_databases(cls, v):
        """Accept a comma-separated string; trim names and drop empties."""
        if isinstance(v, str):
            v = v.split(",")
        return [name.strip() for name in v if name and name.strip()]

    @field_validator("databases")
    @classmethod
    def validate_databases(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one database name is required")
        return v

    @field_validator("lookback_hours")
    @classmethod
    def validate_lookback(cls, v: int) -> int:
        if v < 0:
            raise ValueError("lookback_hours must be non-negative")
        return v

    @field_validator("batch_size", "max_await_time_ms", "apply_attempts")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("transaction_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("transaction_timeout must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level value."""
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {LOG_LEVELS}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v.lower() not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of: {LOG_FORMATS}")
        return v.lower()

    @property
    def database_set(self) -> frozenset:
        """Configured database names, lower-cased for case-insensitive matching."""
        return frozenset(name.lower() for name in self.databases)


def load_settings(**overrides) -> ReplicationSettings:
    """Build settings from the environment plus explicit overrides."""
    return ReplicationSettings(**overrides)
