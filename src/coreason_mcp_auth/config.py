# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_mcp_auth

"""
Configuration for the coreason-mcp-auth package.
"""

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coreason_mcp_auth.cimd import validate_client_id_url
from coreason_mcp_auth.constants import METADATA_REQUEST_TIMEOUT
from coreason_mcp_auth.exceptions import CoreasonMcpAuthError
from coreason_mcp_auth.models import ScopeSelectionMode
from coreason_mcp_auth.urls import require_https_except_loopback

DEFAULT_SCOPES = ["mcp:tools", "mcp:resources"]
DEFAULT_REDIRECT_URL = "http://localhost:8765/callback"


class OAuthConfig(BaseSettings):
    """
    OAuth 2.1 settings for connecting to a protected MCP server.

    Attributes:
        enabled (bool): Whether OAuth should be used at all.
        client_id (str | None): A pre-registered client id. Always wins when set.
        client_secret (SecretStr | None): Secret for confidential pre-registered clients.
        scopes (list[str]): Scopes requested in manual selection mode.
        redirect_url (str): Callback URL. HTTP is only accepted for loopback hosts.
        client_id_metadata_url (str | None): HTTPS URL of this client's metadata document.
        disable_cimd (bool): Ignore `client_id_metadata_url` and fall through to registration.
        scope_selection_mode (ScopeSelectionMode): `auto` asks the server, `manual` uses `scopes`.
        authorization_timeout (float): Seconds allowed for the interactive token exchange.
        skip_pkce_validation (bool): Testing only. Also requires COREASON_MCP_ALLOW_INSECURE=true.
        resource_uri (str | None): Explicit RFC 8707 resource. Derived from the server URL if unset.
        skip_resource_param (bool): Do not send the RFC 8707 resource parameter.
        registration_token (SecretStr | None): Initial access token for Dynamic Client Registration.
        preferred_auth_server (str | None): Authorization server to pick when several are listed.
        http_timeout (float): Timeout in seconds for metadata requests.
        enable_step_up_auth (bool): Re-authorize and replay on insufficient_scope responses.
        step_up_max_retries (int): Step-up attempts allowed per host and method.
        strict_resource_check (bool): Fail when the resource metadata names another resource.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_MCP_OAUTH_",
        case_sensitive=False,
    )

    enabled: bool = False
    client_id: str | None = None
    client_secret: SecretStr | None = None
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    redirect_url: str = DEFAULT_REDIRECT_URL
    client_id_metadata_url: str | None = None
    disable_cimd: bool = False
    scope_selection_mode: ScopeSelectionMode = ScopeSelectionMode.AUTO
    authorization_timeout: float = Field(default=300.0, gt=0)
    skip_pkce_validation: bool = False
    resource_uri: str | None = None
    skip_resource_param: bool = False
    registration_token: SecretStr | None = None
    preferred_auth_server: str | None = None
    http_timeout: float = Field(
        default=METADATA_REQUEST_TIMEOUT, gt=0, description="Timeout in seconds for metadata requests."
    )
    enable_step_up_auth: bool = True
    step_up_max_retries: int = Field(default=2, ge=1)
    strict_resource_check: bool = False

    @field_validator("redirect_url")
    @classmethod
    def validate_redirect_url(cls, v: str) -> str:
        """
        Ensures the redirect URL is absolute HTTP(S), with HTTP restricted to loopback hosts.
        """
        try:
            require_https_except_loopback(v, "redirect_url")
        except CoreasonMcpAuthError as e:
            raise ValueError(str(e)) from e
        return v

    @field_validator("client_id_metadata_url")
    @classmethod
    def validate_metadata_url(cls, v: str | None) -> str | None:
        if not v:
            return None
        try:
            validate_client_id_url(v)
        except CoreasonMcpAuthError as e:
            raise ValueError(str(e)) from e
        return v
