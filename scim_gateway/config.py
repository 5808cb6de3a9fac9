"""
Configuration module for SCIM Gateway.

This module provides environment variable configuration and settings management
using Pydantic Settings for type-safe configuration.
"""
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewaySettings(BaseSettings):
    """
    Configuration settings for the SCIM Gateway application.

    All settings are loaded from environment variables (or a ``.env`` file)
    with validation. Downstream credentials come either as an OAuth2 client
    id/secret pair (preferred) or as a pre-obtained access token.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Required environment variables
    gateway_bearer_token: str = Field(
        ...,
        description="Static bearer token the upstream identity provider presents to the gateway"
    )

    # Downstream SCIM API
    downstream_scim_base_url: str = Field(
        "https://app.launchdarkly.com/trust/scim/v2",
        description="Base URL of the downstream SCIM API"
    )

    downstream_token_url: str = Field(
        "https://app.launchdarkly.com/trust/oauth/token",
        description="OAuth2 token endpoint of the downstream service"
    )

    downstream_client_id: Optional[str] = Field(
        None,
        description="OAuth2 client ID for the client-credentials grant"
    )

    downstream_client_secret: Optional[str] = Field(
        None,
        description="OAuth2 client secret for the client-credentials grant"
    )

    downstream_access_token: Optional[str] = Field(
        None,
        description="Pre-obtained downstream access token (alternative to client credentials)"
    )

    downstream_oauth_scope: str = Field(
        "scim",
        description="OAuth2 scope requested with the client-credentials grant"
    )

    downstream_timeout_seconds: float = Field(
        10.0,
        gt=0,
        description="Timeout applied to every outbound HTTP call"
    )

    # Token lifecycle
    token_refresh_buffer_seconds: int = Field(
        60,
        ge=0,
        description="Refresh the cached token this many seconds before it expires"
    )

    default_token_lifetime_seconds: int = Field(
        365 * 24 * 60 * 60,
        gt=0,
        description="Lifetime assumed when the token endpoint omits expires_in"
    )

    # Storage and mappings
    database_path: Path = Field(
        Path("./data/scim-gateway.db"),
        description="SQLite file holding identity correlation records"
    )

    role_mapping_file: Path = Field(
        Path("./config/mappings.yaml"),
        description="YAML file with upstream role to downstream custom role rules"
    )

    strict_role_mapping: bool = Field(
        False,
        description="Reject upstream roles that match no mapping rule instead of ignoring them"
    )

    list_fanout_concurrency: int = Field(
        10,
        ge=1,
        description="Maximum concurrent downstream fetches when serving a list page"
    )

    public_base_url: Optional[str] = Field(
        None,
        description="Externally visible SCIM base URL used in Location headers"
    )

    log_level: str = Field(
        "INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("downstream_scim_base_url", "downstream_token_url")
    @classmethod
    def validate_urls(cls, v):
        """Validate downstream URLs and drop any trailing slash."""
        if not v.startswith(("https://", "http://")):
            raise ValueError("Downstream URLs must be HTTP(S) URLs")
        return v.rstrip("/")

    @field_validator("public_base_url")
    @classmethod
    def validate_public_base_url(cls, v):
        if v is None:
            return v
        return v.rstrip("/")

    @field_validator("gateway_bearer_token")
    @classmethod
    def validate_gateway_token(cls, v):
        """Validate the inbound token is not empty."""
        if not v or not v.strip():
            raise ValueError("gateway_bearer_token cannot be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_downstream_credentials(self):
        """Require exactly one usable downstream authentication method."""
        if self.downstream_client_id and not self.downstream_client_secret:
            raise ValueError("DOWNSTREAM_CLIENT_ID is set but DOWNSTREAM_CLIENT_SECRET is missing")
        if self.downstream_client_secret and not self.downstream_client_id:
            raise ValueError("DOWNSTREAM_CLIENT_SECRET is set but DOWNSTREAM_CLIENT_ID is missing")
        if not self.downstream_client_id and not self.downstream_access_token:
            raise ValueError(
                "Missing downstream credentials. Set either DOWNSTREAM_CLIENT_ID and "
                "DOWNSTREAM_CLIENT_SECRET, or DOWNSTREAM_ACCESS_TOKEN"
            )
        return self

    @property
    def uses_client_credentials(self) -> bool:
        return bool(self.downstream_client_id and self.downstream_client_secret)

    def ensure_data_directories(self) -> None:
        """Create the parent directory of the correlation database if needed."""
        if str(self.database_path) != ":memory:":
            self.database_path.parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings: Optional[GatewaySettings] = None


def get_settings() -> GatewaySettings:
    """
    Get the global settings instance, creating it if necessary.

    Returns:
        GatewaySettings: The global settings instance

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global settings
    if settings is None:
        settings = GatewaySettings()
        settings.ensure_data_directories()
    return settings


def reload_settings() -> GatewaySettings:
    """
    Force reload settings from environment variables.

    This is useful for testing or when environment variables change.

    Returns:
        GatewaySettings: New settings instance
    """
    global settings
    settings = GatewaySettings()
    settings.ensure_data_directories()
    return settings
