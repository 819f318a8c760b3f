"""
Configuration management module for the CloudWatch log sink.
Loads and validates environment variables with type safety using Pydantic.

Mandatory variables are checked up front by validate_environment() so a
misconfigured deployment fails before any connection is attempted, with a
message naming every missing key.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError


# Load environment variables from .env file
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


REQUIRED_ENV_VARS = ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD")


def validate_environment(environ: Optional[Mapping[str, str]] = None) -> None:
    """
    Ensure every mandatory database variable is set and non-empty.

    Args:
        environ: Mapping to check. Defaults to os.environ.

    Raises:
        ConfigError: Listing the missing keys in REQUIRED_ENV_VARS order.

    Example:
        >>> validate_environment({"DB_NAME": "logs", "DB_USER": "u", "DB_PASSWORD": "p"})
        Traceback (most recent call last):
        ...
        ConfigError: Missing required environment variables: DB_HOST, DB_PORT
    """
    if environ is None:
        environ = os.environ

    missing = [name for name in REQUIRED_ENV_VARS if not environ.get(name)]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")


class DatabaseConfig(BaseSettings):
    """Database connection configuration"""

    host: str = Field(..., validation_alias="DB_HOST")
    port: int = Field(..., validation_alias="DB_PORT", ge=1, le=65535)
    database: str = Field(..., validation_alias="DB_NAME")
    username: str = Field(..., validation_alias="DB_USER")
    password: str = Field(..., validation_alias="DB_PASSWORD", repr=False)
    ssl: bool = Field(default=False, validation_alias="DB_SSL")

    model_config = SettingsConfigDict(
        frozen=True,
        populate_by_name=True,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("port", mode="before")
    @classmethod
    def parse_port(cls, v):
        """DB_PORT is read as a base-10 integer"""
        if isinstance(v, str):
            return int(v.strip(), 10)
        return v

    @field_validator("ssl", mode="before")
    @classmethod
    def parse_ssl(cls, v):
        """Only the literal string "true" enables TLS"""
        if isinstance(v, str):
            return v.strip().lower() == "true"
        return bool(v)

    @property
    def sslmode(self) -> str:
        """libpq sslmode; "require" encrypts without verifying the certificate"""
        return "require" if self.ssl else "disable"

    def connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for psycopg2.connect"""
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.username,
            "password": self.password,
            "sslmode": self.sslmode,
        }


class PipelineConfig(BaseSettings):
    """Runtime behaviour of the ingestion pipeline"""

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    pool_max_connections: int = Field(default=10, validation_alias="DB_POOL_MAX", ge=1)
    connect_timeout_seconds: int = Field(default=2, validation_alias="DB_CONNECT_TIMEOUT", ge=1)

    # Partial per-record failures are logged but not retried unless this is set;
    # escalating makes the runtime redeliver the whole batch.
    escalate_partial_failures: bool = Field(default=False, validation_alias="ESCALATE_PARTIAL_FAILURES")

    model_config = SettingsConfigDict(
        frozen=True,
        populate_by_name=True,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is valid"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()


def _describe_validation_error(error: ValidationError) -> str:
    problems: List[str] = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        problems.append(f"{location}: {item.get('msg')}")
    return "; ".join(problems)


class Settings:
    """Main settings class that combines all configuration sections"""

    def __init__(self, database: DatabaseConfig, pipeline: Optional[PipelineConfig] = None):
        self.database = database
        self.pipeline = pipeline or PipelineConfig()

    @classmethod
    def from_environment(cls) -> "Settings":
        """
        Validate the environment and build settings from it.

        Raises:
            ConfigError: If a mandatory variable is missing or any value is malformed
        """
        validate_environment()
        try:
            return cls(database=DatabaseConfig(), pipeline=PipelineConfig())
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {_describe_validation_error(e)}") from e

    def to_dict(self, include_sensitive: bool = False) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        config = {
            "database": {
                "host": self.database.host,
                "port": self.database.port,
                "name": self.database.database,
                "user": self.database.username,
                "ssl": self.database.ssl,
            },
            "pipeline": {
                "log_level": self.pipeline.log_level,
                "pool_max_connections": self.pipeline.pool_max_connections,
                "connect_timeout_seconds": self.pipeline.connect_timeout_seconds,
                "escalate_partial_failures": self.pipeline.escalate_partial_failures,
            },
        }

        if include_sensitive:
            # Only include sensitive data if explicitly requested
            config["database"]["password"] = self.database.password

        return config
