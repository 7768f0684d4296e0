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
Tests for Client ID Metadata Document support.
"""

import json
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest

from coreason_mcp_auth.cimd import (
    fetch_client_metadata,
    generate_client_metadata,
    supports_client_id_metadata,
    validate_cimd_consistency,
    validate_client_id_url,
    validate_client_metadata,
)
from coreason_mcp_auth.config import OAuthConfig
from coreason_mcp_auth.constants import CLIENT_NAME, MAX_CLIENT_METADATA_SIZE
from coreason_mcp_auth.exceptions import (
    MalformedInputError,
    OversizedResponseError,
    SchemeViolationError,
    SecurityPolicyViolationError,
)
from coreason_mcp_auth.models import AuthorizationServerMetadata, ClientMetadataDocument

RoutedClient = Callable[[dict[str, Any]], httpx.AsyncClient]
CIMD_URL = "https://app.example.com/oauth/client-metadata.json"


def _document(**overrides: Any) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "client_id": CIMD_URL,
        "client_name": "Example",
        "redirect_uris": ["http://localhost:8765/callback"],
        "grant_types": ["authorization_code"],
        "response_types": ["code"],
        "token_endpoint_auth_method": "none",
    }
    doc.update(overrides)
    return doc


@pytest.mark.parametrize(
    "url",
    [
        CIMD_URL,
        "https://app.example.com/client",
        "https://app.example.com:8443/a/b",
    ],
)
def test_client_id_url_accepted(url: str) -> None:
    validate_client_id_url(url)


@pytest.mark.parametrize(
    ("url", "error"),
    [
        ("", MalformedInputError),
        ("/oauth/client.json", MalformedInputError),
        ("https://app.example.com", MalformedInputError),
        ("https://app.example.com/", MalformedInputError),
        ("http://app.example.com/client.json", SchemeViolationError),
        ("http://localhost:8080/client.json", SchemeViolationError),
        ("ftp://app.example.com/client.json", SchemeViolationError),
    ],
)
def test_client_id_url_rejected(url: str, error: type[Exception]) -> None:
    with pytest.raises(error):
        validate_client_id_url(url)


def test_generate_client_metadata() -> None:
    config = OAuthConfig(client_id_metadata_url=CIMD_URL, redirect_url="http://127.0.0.1:9000/cb")
    doc = generate_client_metadata(config)

    assert doc.client_id == CIMD_URL
    assert doc.client_name == CLIENT_NAME
    assert doc.redirect_uris == ["http://127.0.0.1:9000/cb"]
    assert doc.grant_types == ["authorization_code"]
    assert doc.response_types == ["code"]
    assert doc.token_endpoint_auth_method == "none"
    validate_client_metadata(doc)


def test_generate_client_metadata_requires_url() -> None:
    with pytest.raises(MalformedInputError, match="client_id_metadata_url is required"):
        generate_client_metadata(OAuthConfig())


def test_generated_document_serializes_without_nulls() -> None:
    doc = ClientMetadataDocument(client_id=CIMD_URL, redirect_uris=["https://app.example.com/cb"])
    data = json.loads(doc.to_json())
    assert "logo_uri" not in data
    assert data["client_id"] == CIMD_URL


def test_validate_document_requires_redirect_uris() -> None:
    with pytest.raises(MalformedInputError, match="redirect_uri"):
        validate_client_metadata(ClientMetadataDocument.model_validate(_document(redirect_uris=[])))


@pytest.mark.parametrize(
    "redirect_uri",
    [
        "https://app.example.com/cb",
        "http://localhost/cb",
        "http://127.0.0.1:8765/cb",
        "http://[::1]:8765/cb",
        "http://[0:0:0:0:0:0:0:1]/cb",
    ],
)
def test_validate_document_accepts_redirects(redirect_uri: str) -> None:
    validate_client_metadata(ClientMetadataDocument.model_validate(_document(redirect_uris=[redirect_uri])))


def test_validate_document_rejects_plain_http_redirect() -> None:
    doc = ClientMetadataDocument.model_validate(
        _document(redirect_uris=["https://app.example.com/cb", "http://app.example.com/cb"])
    )
    with pytest.raises(SchemeViolationError, match="index 1"):
        validate_client_metadata(doc)


def test_validate_document_rejects_relative_redirect() -> None:
    doc = ClientMetadataDocument.model_validate(_document(redirect_uris=["/callback"]))
    with pytest.raises(MalformedInputError):
        validate_client_metadata(doc)


def test_validate_document_checks_client_id() -> None:
    doc = ClientMetadataDocument.model_validate(_document(client_id="https://app.example.com"))
    with pytest.raises(MalformedInputError):
        validate_client_metadata(doc)


@pytest.mark.asyncio
async def test_fetch_client_metadata(routed_client: RoutedClient) -> None:
    client = routed_client({CIMD_URL: httpx.Response(200, json=_document())})
    async with client:
        doc = await fetch_client_metadata(CIMD_URL, client=client)
    assert doc.client_name == "Example"


@pytest.mark.asyncio
async def test_fetch_fills_defaults_for_null_fields(routed_client: RoutedClient) -> None:
    served = _document(grant_types=None, response_types=None, token_endpoint_auth_method=None)
    client = routed_client({CIMD_URL: httpx.Response(200, json=served)})
    async with client:
        doc = await fetch_client_metadata(CIMD_URL, client=client)

    assert doc.grant_types == ["authorization_code"]
    assert doc.response_types == ["code"]
    assert doc.token_endpoint_auth_method == "none"


@pytest.mark.asyncio
async def test_fetch_validates_url_before_io() -> None:
    handler = MagicMock()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(SchemeViolationError):
            await fetch_client_metadata("http://app.example.com/client.json", client=client)
    handler.assert_not_called()


@pytest.mark.asyncio
async def test_fetch_enforces_smaller_cap(routed_client: RoutedClient) -> None:
    padding = "x" * MAX_CLIENT_METADATA_SIZE
    client = routed_client({CIMD_URL: httpx.Response(200, json=_document(client_name=padding))})
    async with client:
        with pytest.raises(OversizedResponseError):
            await fetch_client_metadata(CIMD_URL, client=client)


@pytest.mark.asyncio
async def test_consistency_passes_when_ids_match(routed_client: RoutedClient) -> None:
    client = routed_client({CIMD_URL: httpx.Response(200, json=_document())})
    async with client:
        await validate_cimd_consistency(CIMD_URL, client=client)


@pytest.mark.asyncio
async def test_consistency_fails_on_mismatch(routed_client: RoutedClient) -> None:
    served = _document(client_id="https://app.example.com/oauth/other.json")
    client = routed_client({CIMD_URL: httpx.Response(200, json=served)})
    async with client:
        with pytest.raises(SecurityPolicyViolationError, match="client_id mismatch"):
            await validate_cimd_consistency(CIMD_URL, client=client)


@pytest.mark.asyncio
async def test_consistency_is_byte_exact(routed_client: RoutedClient) -> None:
    served = _document(client_id=CIMD_URL.replace("app.example.com", "APP.example.com"))
    client = routed_client({CIMD_URL: httpx.Response(200, json=served)})
    async with client:
        with pytest.raises(SecurityPolicyViolationError):
            await validate_cimd_consistency(CIMD_URL, client=client)


@pytest.mark.asyncio
@pytest.mark.parametrize("client_id", [CIMD_URL + "/", CIMD_URL.removesuffix(".json")])
async def test_consistency_rejects_path_variants(routed_client: RoutedClient, client_id: str) -> None:
    client = routed_client({CIMD_URL: httpx.Response(200, json=_document(client_id=client_id))})
    async with client:
        with pytest.raises(SecurityPolicyViolationError, match="client_id mismatch"):
            await validate_cimd_consistency(CIMD_URL, client=client)


@pytest.mark.asyncio
async def test_consistency_wraps_fetch_failures(routed_client: RoutedClient) -> None:
    client = routed_client({})
    async with client:
        with pytest.raises(SecurityPolicyViolationError, match="failed to fetch client metadata"):
            await validate_cimd_consistency(CIMD_URL, client=client)


def test_supports_client_id_metadata() -> None:
    base = {
        "issuer": "https://auth.example.com",
        "authorization_endpoint": "https://auth.example.com/authorize",
        "token_endpoint": "https://auth.example.com/token",
    }
    assert supports_client_id_metadata(None) is False
    assert supports_client_id_metadata(AuthorizationServerMetadata.model_validate(base)) is False
    flagged = AuthorizationServerMetadata.model_validate(dict(base, client_id_metadata_document_supported=True))
    assert supports_client_id_metadata(flagged) is True
