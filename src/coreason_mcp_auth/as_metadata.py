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
Authorization Server Metadata discovery (RFC 8414 with OpenID Connect Discovery fallback).

Candidate endpoints are probed strictly in priority order. The first document that is
fetched and passes structural validation wins; nothing is merged across endpoints.
"""

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from coreason_mcp_auth.constants import (
    MAX_METADATA_SIZE,
    METADATA_REQUEST_TIMEOUT,
    WELL_KNOWN_OAUTH_AS,
    WELL_KNOWN_OPENID,
)
from coreason_mcp_auth.exceptions import (
    DiscoveryError,
    MalformedInputError,
    NetworkFailureError,
    ProtocolViolationError,
    SchemeViolationError,
)
from coreason_mcp_auth.models import AuthorizationServerMetadata
from coreason_mcp_auth.transport import borrow_or_create_client, safe_json_fetch
from coreason_mcp_auth.urls import require_https_except_loopback
from coreason_mcp_auth.utils.logger import LoggerProtocol, get_logger

tracer = trace.get_tracer(__name__)

# Failures that move discovery on to the next candidate
_CANDIDATE_ERRORS = (
    MalformedInputError,
    NetworkFailureError,
    ProtocolViolationError,
    SchemeViolationError,
)


def build_as_metadata_urls(issuer_url: str) -> list[str]:
    """
    Builds the ordered discovery URLs for an issuer (RFC 8414 Section 3, OIDC Discovery Section 4).

    For https://auth.example.com/tenant1:
        1. https://auth.example.com/.well-known/oauth-authorization-server/tenant1
        2. https://auth.example.com/.well-known/openid-configuration/tenant1
        3. https://auth.example.com/tenant1/.well-known/openid-configuration

    For https://auth.example.com:
        1. https://auth.example.com/.well-known/oauth-authorization-server
        2. https://auth.example.com/.well-known/openid-configuration

    Raises:
        MalformedInputError: If the issuer URL is not absolute or has no host.
        SchemeViolationError: If the issuer uses HTTP on a non-loopback host.
    """
    parsed = require_https_except_loopback(issuer_url, "issuer URL")

    netloc = parsed.netloc.rpartition("@")[2]
    base_url = f"{parsed.scheme.lower()}://{netloc}"
    path = parsed.path.strip("/")

    if path:
        return [
            f"{base_url}/{WELL_KNOWN_OAUTH_AS}/{path}",
            f"{base_url}/{WELL_KNOWN_OPENID}/{path}",
            f"{base_url}/{path}/{WELL_KNOWN_OPENID}",
        ]

    return [
        f"{base_url}/{WELL_KNOWN_OAUTH_AS}",
        f"{base_url}/{WELL_KNOWN_OPENID}",
    ]


def validate_as_metadata(metadata: AuthorizationServerMetadata) -> None:
    """
    Checks required fields and endpoint schemes.

    Raises:
        ProtocolViolationError: If a required field is empty.
        MalformedInputError: If an endpoint is not an absolute URL with a host.
        SchemeViolationError: If an endpoint uses HTTP on a non-loopback host.
    """
    endpoints = {
        "issuer": metadata.issuer,
        "authorization_endpoint": metadata.authorization_endpoint,
        "token_endpoint": metadata.token_endpoint,
    }
    for name, value in endpoints.items():
        if not value:
            raise ProtocolViolationError(f"missing required field: {name}")

    if metadata.registration_endpoint:
        endpoints["registration_endpoint"] = metadata.registration_endpoint

    for name, value in endpoints.items():
        require_https_except_loopback(value, name)


async def fetch_as_metadata(client: httpx.AsyncClient, url: str) -> AuthorizationServerMetadata:
    """
    Fetches and parses one AS metadata document.

    Raises:
        NetworkFailureError: On transport failures.
        ProtocolViolationError: On bad status, content type, size, JSON or shape.
    """
    data = await safe_json_fetch(client, url, max_bytes=MAX_METADATA_SIZE)
    try:
        return AuthorizationServerMetadata.model_validate(data)
    except ValidationError as e:
        raise ProtocolViolationError(f"invalid AS metadata from {url}: {e}") from e


async def discover_as_metadata(
    issuer_url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = METADATA_REQUEST_TIMEOUT,
    log: LoggerProtocol | None = None,
) -> AuthorizationServerMetadata:
    """
    Discovers the authorization server metadata for an issuer.

    Emits an OpenTelemetry span `discover_as_metadata`.

    Args:
        issuer_url: The authorization server issuer URL.
        client: Optional HTTP client. A transient TLS 1.2+ client is used if omitted.
        timeout: Per-request timeout in seconds for the transient client.
        log: Optional injected logger.

    Returns:
        AuthorizationServerMetadata: The first valid document, in priority order.

    Raises:
        MalformedInputError: If the issuer URL is malformed.
        SchemeViolationError: If the issuer URL is not HTTPS (or loopback HTTP).
        DiscoveryError: If no candidate yields valid metadata. The last error is chained.
    """
    log = get_logger(log)

    with tracer.start_as_current_span("discover_as_metadata") as span:
        span.set_attribute("oauth.issuer", issuer_url)
        endpoints = build_as_metadata_urls(issuer_url)
        log.info(f"Probing {len(endpoints)} AS metadata endpoints for issuer: {issuer_url}")

        last_error: Exception | None = None
        async with borrow_or_create_client(client, timeout) as http:
            for index, endpoint in enumerate(endpoints, start=1):
                log.debug(f"Trying AS metadata endpoint ({index}/{len(endpoints)}): {endpoint}")
                try:
                    metadata = await fetch_as_metadata(http, endpoint)
                    validate_as_metadata(metadata)
                except _CANDIDATE_ERRORS as e:
                    log.warning(f"AS metadata endpoint {endpoint} rejected: {e}")
                    span.add_event("candidate_failed", {"endpoint": endpoint})
                    last_error = e
                    continue

                log.info(f"Successfully discovered AS metadata from: {endpoint}")
                span.set_attribute("oauth.as_metadata_url", endpoint)
                span.set_status(Status(StatusCode.OK))
                return metadata

        if last_error is not None:
            error = DiscoveryError(f"no valid AS metadata found for {issuer_url} (last error: {last_error})")
            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, str(error)))
            raise error from last_error

        error = DiscoveryError(f"no AS metadata found at any discovery endpoint for {issuer_url}")
        span.set_status(Status(StatusCode.ERROR, str(error)))
        raise error
