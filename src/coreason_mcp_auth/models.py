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
Data models for the coreason-mcp-auth package.
"""

from enum import StrEnum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationInfo, field_validator

from coreason_mcp_auth.constants import PKCE_METHOD_S256


class ScopeSelectionMode(StrEnum):
    AUTO = "auto"
    MANUAL = "manual"


class ClientIdStrategy(StrEnum):
    PRE_REGISTERED = "pre_registered"
    CIMD = "cimd"
    DYNAMIC_REGISTRATION = "dynamic_registration"


class AuthorizationServerMetadata(BaseModel):
    """
    OAuth 2.0 Authorization Server Metadata (RFC 8414) or OpenID Connect Discovery document.

    Structural checks (non-empty endpoints, HTTPS-or-loopback schemes) are applied by
    `coreason_mcp_auth.as_metadata.validate_as_metadata` after parsing.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    issuer: str = Field(..., description="The authorization server's issuer identifier URL.")
    authorization_endpoint: str = Field(..., description="The authorization endpoint URL.")
    token_endpoint: str = Field(..., description="The token endpoint URL.")
    registration_endpoint: str | None = Field(
        default=None, description="The Dynamic Client Registration endpoint URL (RFC 7591)."
    )
    code_challenge_methods: list[str] | None = Field(
        default=None,
        alias="code_challenge_methods_supported",
        description="Supported PKCE code challenge methods. Must contain S256.",
    )
    client_id_metadata_document_supported: bool = False
    scopes_supported: list[str] | None = None
    response_types_supported: list[str] | None = None
    grant_types_supported: list[str] | None = None
    token_endpoint_auth_methods_supported: list[str] | None = None

    @field_validator("client_id_metadata_document_supported", mode="before")
    @classmethod
    def null_as_unsupported(cls, v: Any) -> Any:
        # Some servers publish an explicit null
        return False if v is None else v


class ProtectedResourceMetadata(BaseModel):
    """
    OAuth 2.0 Protected Resource Metadata (RFC 9728).
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    resource: str | None = Field(default=None, description="The protected resource identifier.")
    authorization_servers: list[str] = Field(default_factory=list)
    scopes_supported: list[str] | None = None
    bearer_methods_supported: list[str] | None = None
    resource_documentation: str | None = None


class ClientMetadataDocument(BaseModel):
    """
    Client ID Metadata Document (draft-ietf-oauth-client-id-metadata-document).

    The `client_id` must equal the URL the document is hosted at. That is checked by
    `validate_cimd_consistency`, not at parse time.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    client_id: str
    client_name: str | None = None
    client_uri: str | None = None
    logo_uri: str | None = None
    redirect_uris: list[str] = Field(default_factory=list)
    grant_types: list[str] = Field(default_factory=lambda: ["authorization_code"])
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "none"

    @field_validator("redirect_uris", "grant_types", "response_types", "token_endpoint_auth_method", mode="before")
    @classmethod
    def null_as_default(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None and info.field_name:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return v

    def to_json(self) -> str:
        """Serializes the document for hosting, omitting unset optional fields."""
        return self.model_dump_json(exclude_none=True, indent=2)


class WWWAuthenticateChallenge(BaseModel):
    """
    Parsed WWW-Authenticate challenge (RFC 6750, RFC 9728).
    """

    model_config = ConfigDict(frozen=True)

    scheme: str
    resource_metadata_url: str | None = None
    scopes: list[str] = Field(default_factory=list)
    error: str | None = None
    error_description: str | None = None


class ClientIdentity(BaseModel):
    """
    Outcome of client identification. An empty `client_id` means Dynamic Client
    Registration must be attempted by the caller.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str = ""
    strategy: ClientIdStrategy

    @property
    def requires_registration(self) -> bool:
        return self.strategy == ClientIdStrategy.DYNAMIC_REGISTRATION


class PKCEParameters(BaseModel):
    """
    PKCE parameters (RFC 7636) and the CSRF state for one authorization request.
    """

    model_config = ConfigDict(frozen=True)

    code_verifier: SecretStr
    code_challenge: str
    code_challenge_method: str = PKCE_METHOD_S256
    state: str


class TokenResponse(BaseModel):
    """
    Token set returned by the token exchange.

    Attributes:
        access_token (SecretStr): The access token issued by the authorization server.
        refresh_token (SecretStr | None): The refresh token, if issued.
        id_token (SecretStr | None): The ID token, if issued.
        token_type (str): The type of the token (e.g. "Bearer").
        expires_in (int | None): The lifetime in seconds of the access token.
        scope (str | None): The granted scopes, space separated.
    """

    access_token: SecretStr
    refresh_token: SecretStr | None = None
    id_token: SecretStr | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str | None = None


class AuthorizationPlan(BaseModel):
    """
    Everything the interactive authorization collaborator needs: who the client is,
    where to send it, what to ask for, and which resource the token is for.
    """

    model_config = ConfigDict(frozen=True)

    server_url: str
    auth_server_url: str
    resource_metadata: ProtectedResourceMetadata
    as_metadata: AuthorizationServerMetadata
    client: ClientIdentity
    scopes: list[str] = Field(default_factory=list)
    resource_uri: str | None = None
    redirect_url: str
    pkce: PKCEParameters

    @property
    def client_id(self) -> str:
        return self.client.client_id

    @property
    def authorization_endpoint(self) -> str:
        return self.as_metadata.authorization_endpoint

    @property
    def token_endpoint(self) -> str:
        return self.as_metadata.token_endpoint

    @property
    def registration_endpoint(self) -> str | None:
        return self.as_metadata.registration_endpoint

    def authorization_params(self, client_id: str | None = None) -> dict[str, Any]:
        """
        Query parameters for the authorization request.

        Args:
            client_id: Overrides the planned client id, e.g. after Dynamic Client Registration.
        """
        params: dict[str, Any] = {
            "response_type": "code",
            "client_id": client_id or self.client_id,
            "redirect_uri": self.redirect_url,
            "code_challenge": self.pkce.code_challenge,
            "code_challenge_method": self.pkce.code_challenge_method,
            "state": self.pkce.state,
        }
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        if self.resource_uri:
            params["resource"] = self.resource_uri
        return params

    def authorization_url(self, client_id: str | None = None) -> str:
        """The full authorization URL to open in the user's browser."""
        url = httpx.URL(self.authorization_endpoint)
        return str(url.copy_merge_params(self.authorization_params(client_id)))
