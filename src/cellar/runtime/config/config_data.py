"""Pydantic models for parsing the config.yaml configuration file.

This module contains Pydantic models that correspond to the structure of config.yaml.
These models handle validation and type conversion of the YAML configuration data.
"""

from __future__ import annotations

from typing import Literal

from loguru import logger
from pydantic import BaseModel, Field, computed_field


class CORSConfig(BaseModel):
    """CORS configuration for the application."""

    origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"]
    )
    allow_credentials: bool = True
    allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )
    allow_headers: list[str] = Field(default=["*"])


class OIDCProviderConfig(BaseModel):
    """Identity provider whose bearer tokens this API accepts."""

    issuer: str = Field(description="OIDC issuer URL")
    jwks_uri: str | None = Field(
        default=None, description="JWKS endpoint for JWT validation"
    )
    public_key: str | None = Field(
        default=None,
        description="PEM encoded public key, used instead of the JWKS endpoint",
    )
    client_id: str | None = Field(
        default=None, description="Client ID, accepted as audience when no audiences are configured"
    )
    enabled: bool = Field(default=True, description="Accept tokens from this provider")
    dev_only: bool = Field(
        default=False, description="Enable provider only in development/test environments"
    )


class OIDCConfig(BaseModel):
    """OIDC configuration model."""

    providers: dict[str, OIDCProviderConfig] = Field(
        default_factory=dict, description="OIDC provider configurations"
    )
    jwks_cache_ttl: int = Field(
        default=3600, description="Seconds a fetched JWKS document stays cached"
    )
    jwks_timeout: float = Field(
        default=5.0, description="Timeout in seconds for fetching a JWKS document"
    )


class JWTClaimsConfig(BaseModel):
    """JWT claims mapping configuration."""

    user_id: str = Field(
        default="sub", description="Claim name for user ID (usually 'sub')"
    )
    email: str = Field(default="email", description="Claim name for email address")
    name: str = Field(default="name", description="Claim name for user's full name")


class JWTConfig(BaseModel):
    """JWT validation configuration."""

    allowed_algorithms: list[str] = Field(
        default_factory=lambda: ["RS256", "RS512", "ES256", "ES384"],
        description="JWT algorithms allowed for token validation",
    )
    audiences: list[str] = Field(
        default_factory=lambda: ["cellar-api"],
        description="JWT audiences that this API accepts",
    )
    clock_skew: int = Field(default=60, description="Clock skew tolerance in seconds")
    claims: JWTClaimsConfig = Field(
        default_factory=JWTClaimsConfig, description="JWT claims mapping configuration"
    )


class LoggingConfig(BaseModel):
    """Logging configuration model."""

    level: str = Field(default="INFO", description="Logging level")
    format: Literal["json", "plain"] = Field(default="json", description="Log format")
    file: str | None = Field(default="logs/app.log", description="Log file path")
    monitoring_file: str | None = Field(
        default="logs/errors.jsonl",
        description="JSON sink collected by the monitoring agent (errors and alerts)",
    )
    max_size_mb: int = Field(default=10, description="Maximum log file size in MB")
    backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )


class DatabaseConfig(BaseModel):
    """Database configuration model."""

    url: str = Field(
        default="sqlite:///./cellar.db",
        description="Database connection URL",
    )
    pool_size: int = Field(default=20, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum pool overflow")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    pool_recycle: int = Field(default=1800, description="Pool recycle time in seconds")
    echo: bool = Field(default=False, description="Echo SQL statements")
    password_file: str | None = Field(
        default=None,
        description="Path to file containing database password",
    )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @computed_field
    @property
    def connection_string(self) -> str:
        """Construct the database connection string, injecting a password file if given."""
        from sqlalchemy.engine import make_url

        base_url = make_url(self.url)
        if not self.password_file:
            return base_url.render_as_string(hide_password=False)

        if base_url.password:
            logger.warning(
                "Database URL contains a password and a password file is configured; "
                "using the password file."
            )
        try:
            with open(self.password_file) as f:
                password = f.read().strip()
        except OSError as e:
            raise ValueError("Failed to read database password from file.") from e
        return base_url.set(password=password).render_as_string(hide_password=False)


class UploadConfig(BaseModel):
    """Upload storage configuration."""

    directory: str = Field(default="uploads", description="Root directory for stored files")
    max_image_bytes: int = Field(
        default=5 * 1024 * 1024, description="Maximum accepted image size in bytes"
    )
    image_extensions: list[str] = Field(
        default_factory=lambda: [".jpg", ".jpeg", ".png", ".webp", ".gif"]
    )
    image_content_types: list[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/png", "image/webp", "image/gif"]
    )
    chunk_size: int = Field(default=64 * 1024, description="Read size for uploaded files")


class ImportConfig(BaseModel):
    """Spreadsheet import configuration."""

    max_bytes: int = Field(
        default=5 * 1024 * 1024, description="Maximum accepted spreadsheet size in bytes"
    )
    max_rows: int = Field(default=10000, description="Maximum data rows per import")
    extensions: list[str] = Field(default_factory=lambda: [".xlsx", ".csv"])
    content_types: list[str] = Field(
        default_factory=lambda: [
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "text/csv",
            "application/csv",
            "application/vnd.ms-excel",
            "application/octet-stream",
        ]
    )


class ApiConfig(BaseModel):
    """HTTP API layout."""

    prefix: str = Field(default="/api/v1", description="Shared path prefix for resources")
    default_page_size: int = Field(default=50, description="Default list page size")
    max_page_size: int = Field(default=200, description="Largest page size a client may request")


class AppConfig(BaseModel):
    """Application configuration model."""

    environment: Literal["development", "production", "test"] = Field(
        default="development", description="Application environment"
    )
    host: str = Field(default="0.0.0.0", description="Application host")
    port: int = Field(default=8000, description="Application port")
    cors: CORSConfig = Field(
        default_factory=CORSConfig, description="CORS configuration"
    )


class ConfigData(BaseModel):
    """Root configuration model that matches the config.yaml structure."""

    app: AppConfig = Field(
        default_factory=AppConfig, description="Application configuration"
    )
    api: ApiConfig = Field(default_factory=ApiConfig, description="HTTP API layout")
    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig, description="Database configuration"
    )
    oidc: OIDCConfig = Field(
        default_factory=OIDCConfig, description="OIDC configuration"
    )
    jwt: JWTConfig = Field(
        default_factory=JWTConfig, description="JWT validation configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    uploads: UploadConfig = Field(
        default_factory=UploadConfig, description="Upload storage configuration"
    )
    imports: ImportConfig = Field(
        default_factory=ImportConfig, description="Spreadsheet import configuration"
    )
