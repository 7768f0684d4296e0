# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_mcp_auth

from urllib.parse import parse_qs, urlsplit

import pytest
from pydantic import SecretStr, ValidationError

from coreason_mcp_auth.models import (
    AuthorizationPlan,
    AuthorizationServerMetadata,
    ClientIdentity,
    ClientIdStrategy,
    PKCEParameters,
    ProtectedResourceMetadata,
    TokenResponse,
)


def _as_metadata() -> AuthorizationServerMetadata:
    return AuthorizationServerMetadata(
        issuer="https://auth.example.com",
        authorization_endpoint="https://auth.example.com/authorize?tenant=t1",
        token_endpoint="https://auth.example.com/token",
        code_challenge_methods_supported=["S256"],
    )


def _plan(scopes: list[str], resource_uri: str | None) -> AuthorizationPlan:
    return AuthorizationPlan(
        server_url="https://mcp.example.com/mcp",
        auth_server_url="https://auth.example.com",
        resource_metadata=ProtectedResourceMetadata(
            resource="https://mcp.example.com", authorization_servers=["https://auth.example.com"]
        ),
        as_metadata=_as_metadata(),
        client=ClientIdentity(client_id="client-1", strategy=ClientIdStrategy.PRE_REGISTERED),
        scopes=scopes,
        resource_uri=resource_uri,
        redirect_url="http://localhost:8765/callback",
        pkce=PKCEParameters(code_verifier=SecretStr("v" * 43), code_challenge="challenge", state="state-1"),
    )


def test_as_metadata_reads_alias() -> None:
    metadata = _as_metadata()
    assert metadata.code_challenge_methods == ["S256"]
    assert metadata.client_id_metadata_document_supported is False


def test_as_metadata_is_frozen() -> None:
    metadata = _as_metadata()
    with pytest.raises(ValidationError):
        metadata.issuer = "https://evil.example.com"  # type: ignore[misc]


def test_as_metadata_requires_endpoints() -> None:
    with pytest.raises(ValidationError):
        AuthorizationServerMetadata.model_validate({"issuer": "https://auth.example.com"})


def test_resource_metadata_defaults() -> None:
    metadata = ProtectedResourceMetadata.model_validate({})
    assert metadata.resource is None
    assert metadata.authorization_servers == []


def test_client_identity_registration_flag() -> None:
    assert ClientIdentity(strategy=ClientIdStrategy.DYNAMIC_REGISTRATION).requires_registration
    assert not ClientIdentity(client_id="x", strategy=ClientIdStrategy.CIMD).requires_registration


def test_token_response_masks_secrets() -> None:
    token = TokenResponse(access_token=SecretStr("access"), refresh_token=SecretStr("refresh"))
    assert "access" not in repr(token).replace("access_token", "")
    assert token.token_type == "Bearer"


def test_plan_exposes_endpoints() -> None:
    plan = _plan(["a"], "https://mcp.example.com/mcp")
    assert plan.client_id == "client-1"
    assert plan.token_endpoint == "https://auth.example.com/token"
    assert plan.registration_endpoint is None


def test_authorization_url_contains_pkce_scope_and_resource() -> None:
    plan = _plan(["files:read", "files:write"], "https://mcp.example.com/mcp")
    query = parse_qs(urlsplit(plan.authorization_url()).query)

    assert query["response_type"] == ["code"]
    assert query["client_id"] == ["client-1"]
    assert query["redirect_uri"] == ["http://localhost:8765/callback"]
    assert query["code_challenge"] == ["challenge"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["state"] == ["state-1"]
    assert query["scope"] == ["files:read files:write"]
    assert query["resource"] == ["https://mcp.example.com/mcp"]
    assert query["tenant"] == ["t1"]


def test_authorization_url_omits_empty_scope_and_resource() -> None:
    params = _plan([], None).authorization_params()
    assert "scope" not in params
    assert "resource" not in params


def test_authorization_params_client_id_override() -> None:
    assert _plan([], None).authorization_params("registered-id")["client_id"] == "registered-id"
