# ABOUTME: Configuration management for the ArgoCD bridge
# ABOUTME: Reads the ArgoCD endpoint, credential, read-only flag and logging options

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module turns environment variables into one validated settings object.
The bridge talks to exactly ONE ArgoCD server with ONE bearer token, both
fixed when the client is constructed. Everything else here is about how the
process behaves around that client (logging, audit trail, read-only mode).

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

ArgoCD endpoint:
    ARGOCD_BASE_URL     -> Server URL (scheme optional, https assumed)
    ARGOCD_API_TOKEN    -> API token sent as "Authorization: Bearer <token>"
    ARGOCD_INSECURE     -> Skip TLS certificate verification

Tool surface:
    MCP_READ_ONLY       -> When true, mutating tools are not registered

Process options (ARGOCD_BRIDGE_ prefix):
    ARGOCD_BRIDGE_LOG_LEVEL        -> DEBUG, INFO, WARNING, ERROR, CRITICAL
    ARGOCD_BRIDGE_LOG_JSON         -> Render logs as JSON lines
    ARGOCD_BRIDGE_AUDIT_LOG        -> Path of the JSON-lines audit file
    ARGOCD_BRIDGE_REQUEST_TIMEOUT  -> HTTP timeout in seconds
    ARGOCD_BRIDGE_ENV_FILE         -> Optional .env file read by load_settings()
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# ARGOCD INSTANCE
# =============================================================================


class ArgocdInstance(BaseModel):
    """
    Connection details for the ArgoCD server.

    WHY BaseModel NOT BaseSettings?
    -------------------------------
    The instance is assembled from ServerSettings (which does the environment
    reading) and handed to the client. Tests build it directly:

        instance = ArgocdInstance(
            url="https://argocd.example.com",
            token=SecretStr("my-api-token"),
        )
    """

    model_config = {"extra": "ignore"}

    url: str = Field(description="ArgoCD server URL")
    # Base URL only, e.g. "https://argocd.example.com". API paths such as
    # "/api/v1/applications" are appended by the transport.

    token: SecretStr = Field(description="ArgoCD API token")
    # SecretStr keeps the token out of repr() and logs.
    # token.get_secret_value() returns the real string.

    insecure: bool = Field(default=False, description="Skip TLS verification")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """
        Ensure URL has a scheme and no trailing slash.

        "argocd.example.com"   -> "https://argocd.example.com"
        "https://example.com/" -> "https://example.com"

        The trailing slash matters because every request path starts with
        "/", and "https://example.com//api/v1" is not the same resource.
        """
        if not v.startswith(("http://", "https://")):
            v = f"https://{v}"
        return v.rstrip("/")


# =============================================================================
# SERVER SETTINGS
# =============================================================================


class ServerSettings(BaseSettings):
    """
    Top-level process configuration.

    USAGE:
    ------
        settings = load_settings()
        settings.instance        # ArgocdInstance or None
        settings.read_only       # bool
    """

    model_config = SettingsConfigDict(
        env_prefix="ARGOCD_BRIDGE_",
        # Process options read from ARGOCD_BRIDGE_* variables.
        # The endpoint fields use validation_alias to read the unprefixed
        # names that ArgoCD tooling already exports.
        extra="ignore",
        populate_by_name=True,
        # Allows ServerSettings(argocd_base_url=...) in code and tests
        # while the environment still uses ARGOCD_BASE_URL.
    )

    # -------------------------------------------------------------------------
    # ARGOCD ENDPOINT
    # -------------------------------------------------------------------------

    argocd_base_url: str = Field(
        default="",  # Empty string = not configured
        validation_alias="ARGOCD_BASE_URL",
        description="ArgoCD server URL",
    )

    argocd_api_token: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="ARGOCD_API_TOKEN",
        description="ArgoCD API token",
    )
    # HOW TO GET AN ARGOCD TOKEN:
    #    argocd account generate-token --account <account-name>

    argocd_insecure: bool = Field(
        default=False,
        validation_alias="ARGOCD_INSECURE",
        description="Skip TLS verification",
    )

    # -------------------------------------------------------------------------
    # TOOL SURFACE
    # -------------------------------------------------------------------------

    read_only: bool = Field(
        default=False,
        validation_alias="MCP_READ_ONLY",
        description="Do not register tools that modify applications",
    )
    # When True only list/get/logs/events/actions tools are exposed.
    # create, update, delete, sync and run_resource_action disappear from the
    # tool list entirely, so a client cannot even attempt them.

    server_name: str = Field(default="argocd-bridge", description="MCP server name")

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout in seconds",
    )
    # Applies to connect, read and write. A log stream that stops sending
    # data for this long fails with a NetworkError instead of hanging.

    # -------------------------------------------------------------------------
    # LOGGING AND AUDIT
    # -------------------------------------------------------------------------

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )

    log_json: bool = Field(default=False, description="Render logs as JSON lines")

    audit_log: Path | None = Field(
        default=None,
        description="Path to audit log file",
    )
    # When None, audit entries go through structlog alongside normal logs.

    @property
    def instance(self) -> ArgocdInstance | None:
        """
        Build the ArgocdInstance from the endpoint fields.

        Returns None when ARGOCD_BASE_URL is not set.
        """
        if not self.argocd_base_url:
            return None
        return ArgocdInstance(
            url=self.argocd_base_url,
            token=self.argocd_api_token,
            insecure=self.argocd_insecure,
        )


# =============================================================================
# SETTINGS LOADER
# =============================================================================


def load_settings() -> ServerSettings:
    """
    Load settings from the environment.

    If ARGOCD_BRIDGE_ENV_FILE is set, variables are also read from that file:

        ARGOCD_BASE_URL=https://localhost:8443
        ARGOCD_API_TOKEN=my-dev-token
        ARGOCD_INSECURE=true
        MCP_READ_ONLY=true

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return ServerSettings(
        _env_file=os.environ.get("ARGOCD_BRIDGE_ENV_FILE"),
    )
