"""Configuration module for the idempotency gate.

This module provides the GateConfig class for configuring which requests are
guarded, how long records live, how often the reaper runs, which record store
backs the gate and how the gate treats fingerprints and handler failures.

Example:
    Basic usage with defaults:

        >>> config = GateConfig()
        >>> config.enabled_methods
        ['POST', 'PUT', 'PATCH', 'DELETE']
        >>> config.ttl_seconds
        86400

    Loading from environment:

        >>> import os
        >>> os.environ['IDEMPOTENCY_STORAGE_BACKEND'] = 'postgres'
        >>> os.environ['IDEMPOTENCY_DATABASE_URL'] = 'postgresql://app@db/app'
        >>> config = GateConfig.from_env()
"""

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# Valid HTTP methods for idempotency
VALID_HTTP_METHODS = {
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "DELETE",
    "CONNECT",
    "OPTIONS",
    "TRACE",
    "PATCH",
}

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class GateConfig(BaseModel):
    """Configuration for the idempotency gate.

    Attributes:
        enabled_methods: HTTP methods guarded by the gate. Requests with any
            other method bypass it. Default: POST, PUT, PATCH, DELETE.
        key_header: Name of the request header carrying the idempotency key.
        ttl_seconds: Lifetime of an idempotency record, 1 to 604800 seconds.
            Default is 86400 (24 hours).
        reaper_interval_seconds: Time between expiry sweeps. Default 3600.
        max_key_length: Longest accepted idempotency key.
        max_body_bytes: Largest accepted guarded request body, 0 = unlimited.
        verify_fingerprint: Reject replays whose request differs from the one
            that claimed the key (422). Off by default: replays are served
            regardless of the request body.
        release_on_failure: When the handler raises, mark the record failed so
            the next request with the key re-executes. Off by default: the key
            stays in processing until it expires.
        storage_backend: "memory" or "postgres".
        database_url: asyncpg DSN for the postgres backend.
        pool_min_size: Minimum connections in the postgres pool.
        pool_max_size: Maximum connections in the postgres pool.
        log_level: Log level for configure_logging.
        json_logs: Emit JSON logs instead of console output.

    Note:
        This class is immutable (frozen=True).
    """

    enabled_methods: list[str] | str = Field(
        default=["POST", "PUT", "PATCH", "DELETE"],
        description="HTTP methods guarded by the gate",
    )
    key_header: str = Field(
        default="Idempotency-Key",
        description="Request header carrying the idempotency key",
    )
    ttl_seconds: int = Field(
        default=86400,
        description="Time-to-live in seconds for idempotency records (1-604800)",
    )
    reaper_interval_seconds: int = Field(
        default=3600,
        description="Seconds between expiry sweeps",
    )
    max_key_length: int = Field(
        default=255,
        description="Maximum idempotency key length (1-255)",
    )
    max_body_bytes: int = Field(
        default=1048576,
        description="Maximum guarded request body size in bytes (0=unlimited)",
    )
    verify_fingerprint: bool = Field(
        default=False,
        description="Reject replays whose fingerprint differs from the original",
    )
    release_on_failure: bool = Field(
        default=False,
        description="Release the key when the downstream handler raises",
    )
    storage_backend: Literal["memory", "postgres"] = Field(
        default="memory",
        description="Record store backend",
    )
    database_url: str | None = Field(
        default=None,
        description="PostgreSQL DSN for the postgres backend",
    )
    pool_min_size: int = Field(default=1, description="Minimum pool connections")
    pool_max_size: int = Field(default=10, description="Maximum pool connections")
    log_level: str = Field(default="INFO", description="Log level")
    json_logs: bool = Field(default=True, description="Emit JSON logs")

    model_config = {"frozen": True}

    @field_validator("enabled_methods", mode="before")
    @classmethod
    def validate_enabled_methods(cls, v: Any) -> list[str]:
        """Validate and normalize enabled HTTP methods.

        Raises:
            ValueError: If any method is not a valid HTTP method.

        Example:
            >>> GateConfig(enabled_methods="post, put").enabled_methods
            ['POST', 'PUT']
        """
        if isinstance(v, str):
            v = [method.strip() for method in v.split(",") if method.strip()]

        if not isinstance(v, list):
            raise ValueError("enabled_methods must be a list or comma-separated string")

        methods = [method.upper() for method in v]

        invalid_methods = set(methods) - VALID_HTTP_METHODS
        if invalid_methods:
            raise ValueError(
                f"Invalid HTTP methods: {', '.join(sorted(invalid_methods))}. "
                f"Valid methods are: {', '.join(sorted(VALID_HTTP_METHODS))}"
            )

        return methods

    @field_validator("key_header")
    @classmethod
    def validate_key_header(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("key_header cannot be empty")
        return v

    @field_validator("ttl_seconds")
    @classmethod
    def validate_ttl_seconds(cls, v: int) -> int:
        if not (1 <= v <= 604800):
            raise ValueError(f"ttl_seconds must be between 1 and 604800 (7 days), got {v}")
        return v

    @field_validator("reaper_interval_seconds")
    @classmethod
    def validate_reaper_interval_seconds(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"reaper_interval_seconds must be >= 1, got {v}")
        return v

    @field_validator("max_key_length")
    @classmethod
    def validate_max_key_length(cls, v: int) -> int:
        # The key column is VARCHAR(255).
        if not (1 <= v <= 255):
            raise ValueError(f"max_key_length must be between 1 and 255, got {v}")
        return v

    @field_validator("max_body_bytes")
    @classmethod
    def validate_max_body_bytes(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_body_bytes must be >= 0, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level: {v}. Valid levels are: {', '.join(sorted(VALID_LOG_LEVELS))}"
            )
        return level

    @model_validator(mode="after")
    def validate_storage_config(self) -> "GateConfig":
        """Validate backend-specific settings.

        Raises:
            ValueError: If the postgres backend has no database_url, or the
                pool bounds are inconsistent.
        """
        if self.storage_backend == "postgres" and not self.database_url:
            raise ValueError("database_url is required when storage_backend is 'postgres'")
        if self.pool_min_size < 0 or self.pool_max_size < 1:
            raise ValueError("pool sizes must be non-negative and pool_max_size >= 1")
        if self.pool_min_size > self.pool_max_size:
            raise ValueError("pool_min_size must not exceed pool_max_size")
        return self

    def guards(self, method: str) -> bool:
        """Whether requests with this method go through the gate."""
        return method.upper() in self.enabled_methods

    @classmethod
    def from_env(cls, prefix: str = "IDEMPOTENCY_") -> "GateConfig":
        """Create configuration from environment variables.

        Variable names are the upper-cased field names with the prefix, e.g.
        ``IDEMPOTENCY_TTL_SECONDS``. Missing variables keep their defaults.

        Example:
            >>> import os
            >>> os.environ['IDEMPOTENCY_TTL_SECONDS'] = '3600'
            >>> GateConfig.from_env().ttl_seconds
            3600
        """
        config_dict: dict[str, Any] = {}

        field_types = {
            "enabled_methods": list,
            "key_header": str,
            "ttl_seconds": int,
            "reaper_interval_seconds": int,
            "max_key_length": int,
            "max_body_bytes": int,
            "verify_fingerprint": bool,
            "release_on_failure": bool,
            "storage_backend": str,
            "database_url": str,
            "pool_min_size": int,
            "pool_max_size": int,
            "log_level": str,
            "json_logs": bool,
        }

        for field_name, field_type in field_types.items():
            env_var = f"{prefix}{field_name.upper()}"
            env_value = os.environ.get(env_var)

            if env_value is None:
                continue
            if field_type is int:
                config_dict[field_name] = int(env_value)
            elif field_type is bool:
                config_dict[field_name] = env_value.strip().lower() in {"1", "true", "yes", "on"}
            else:
                # Lists stay comma-separated strings for the validators
                config_dict[field_name] = env_value

        return cls(**config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "GateConfig":
        """Create configuration from a dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls(**config_dict)
