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
Protected Resource Metadata discovery (RFC 9728).
"""

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from coreason_mcp_auth.constants import (
    MAX_METADATA_SIZE,
    METADATA_REQUEST_TIMEOUT,
    SCHEME_HTTP,
    SCHEME_HTTPS,
    WELL_KNOWN_PROTECTED_RESOURCE,
)
from coreason_mcp_auth.exceptions import (
    CoreasonMcpAuthError,
    DiscoveryError,
    MalformedInputError,
    ProtocolViolationError,
    SchemeViolationError,
    SecurityPolicyViolationError,
)
from coreason_mcp_auth.models import ProtectedResourceMetadata, WWWAuthenticateChallenge
from coreason_mcp_auth.transport import borrow_or_create_client, safe_json_fetch
from coreason_mcp_auth.urls import check_metadata_url_allowed, derive_resource_uri, parse_absolute_url
from coreason_mcp_auth.utils.logger import LoggerProtocol, get_logger

tracer = trace.get_tracer(__name__)


def build_resource_metadata_url(resource_url: str) -> str:
    """
    Returns `{scheme}://{host}/.well-known/oauth-protected-resource` for a resource URL.

    Raises:
        MalformedInputError: If the URL is not absolute or has no host.
        SchemeViolationError: If the scheme is not http(s).
    """
    parsed = parse_absolute_url(resource_url, "resource URL")
    scheme = parsed.scheme.lower()
    if scheme not in (SCHEME_HTTP, SCHEME_HTTPS):
        raise SchemeViolationError(f"resource URL must use http or https scheme: {resource_url}")
    netloc = parsed.netloc.rpartition("@")[2]
    return f"{scheme}://{netloc}/{WELL_KNOWN_PROTECTED_RESOURCE}"


def validate_protected_resource_metadata(metadata: ProtectedResourceMetadata) -> None:
    """
    Requires `resource` and at least one absolute http(s) authorization server.

    Raises:
        ProtocolViolationError: If a requirement is not met.
    """
    if not metadata.resource:
        raise ProtocolViolationError("missing required field: resource")

    if not metadata.authorization_servers:
        raise ProtocolViolationError("missing required field: authorization_servers (at least one required)")

    for index, as_url in enumerate(metadata.authorization_servers):
        try:
            parsed = parse_absolute_url(as_url, f"authorization server URL at index {index}")
        except MalformedInputError as e:
            raise ProtocolViolationError(str(e)) from e
        if parsed.scheme.lower() not in (SCHEME_HTTP, SCHEME_HTTPS):
            raise ProtocolViolationError(
                f"authorization server URL at index {index} must use http or https scheme: {as_url}"
            )


def resource_matches(metadata: ProtectedResourceMetadata, resource_url: str) -> bool:
    """
    True if the advertised `resource` names the queried server, either its full
    canonical URL or its origin.
    """
    if not metadata.resource:
        return False
    try:
        advertised = derive_resource_uri(metadata.resource)
        queried = derive_resource_uri(resource_url)
    except MalformedInputError:
        return False
    parsed = parse_absolute_url(queried)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    return advertised in (queried, origin, f"{origin}/")


def _warn_insecure_auth_servers(metadata: ProtectedResourceMetadata, log: LoggerProtocol) -> None:
    for as_url in metadata.authorization_servers:
        if as_url.lower().startswith(f"{SCHEME_HTTP}://"):
            log.warning(
                f"Authorization server using HTTP (not HTTPS): {as_url} - "
                "credentials may be exposed to network attacks"
            )


async def discover_protected_resource_metadata(
    resource_url: str,
    *,
    challenge: WWWAuthenticateChallenge | None = None,
    client: httpx.AsyncClient | None = None,
    timeout: float = METADATA_REQUEST_TIMEOUT,
    strict_resource_check: bool = False,
    log: LoggerProtocol | None = None,
) -> ProtectedResourceMetadata:
    """
    Fetches the protected resource metadata of an MCP server.

    The document is read from the single well-known endpoint under the server's origin,
    unless a WWW-Authenticate challenge names a `resource_metadata` URL, which then takes
    precedence after an SSRF check.

    Emits an OpenTelemetry span `discover_protected_resource_metadata`.

    Args:
        resource_url: The MCP server URL.
        challenge: Optional challenge from a 401 response.
        client: Optional HTTP client. A transient TLS 1.2+ client is used if omitted.
        timeout: Per-request timeout in seconds for the transient client.
        strict_resource_check: Raise instead of warn when `resource` does not name the server.
        log: Optional injected logger.

    Returns:
        ProtectedResourceMetadata: The validated metadata.

    Raises:
        MalformedInputError: If the resource URL is malformed.
        SchemeViolationError: If the resource URL is not http(s).
        SecurityPolicyViolationError: If the challenge URL is blocked, or the resource
            mismatches under `strict_resource_check`.
        DiscoveryError: If the document cannot be fetched or is invalid.
    """
    log = get_logger(log)

    with tracer.start_as_current_span("discover_protected_resource_metadata") as span:
        span.set_attribute("oauth.resource_url", resource_url)

        if challenge is not None and challenge.resource_metadata_url:
            metadata_url = challenge.resource_metadata_url
            log.info(f"Using resource_metadata URL from WWW-Authenticate: {metadata_url}")
            check_metadata_url_allowed(metadata_url)
        else:
            metadata_url = build_resource_metadata_url(resource_url)

        log.debug(f"Fetching protected resource metadata from: {metadata_url}")
        try:
            async with borrow_or_create_client(client, timeout) as http:
                data = await safe_json_fetch(http, metadata_url, max_bytes=MAX_METADATA_SIZE)
            try:
                metadata = ProtectedResourceMetadata.model_validate(data)
            except ValidationError as e:
                raise ProtocolViolationError(f"invalid protected resource metadata: {e}") from e
            validate_protected_resource_metadata(metadata)
        except CoreasonMcpAuthError as e:
            error = DiscoveryError(f"failed to discover protected resource metadata from {metadata_url}: {e}")
            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, str(error)))
            raise error from e

        if not resource_matches(metadata, resource_url):
            msg = f"protected resource metadata names resource {metadata.resource!r}, expected {resource_url!r}"
            if strict_resource_check:
                span.set_status(Status(StatusCode.ERROR, msg))
                raise SecurityPolicyViolationError(msg)
            log.warning(msg)

        _warn_insecure_auth_servers(metadata, log)
        log.info(
            f"Discovered protected resource metadata from {metadata_url}: "
            f"{len(metadata.authorization_servers)} authorization server(s)"
        )
        span.set_status(Status(StatusCode.OK))
        return metadata


def select_authorization_server(metadata: ProtectedResourceMetadata, preferred: str | None = None) -> str:
    """
    Picks the authorization server to use.

    The preferred server is returned if the resource lists it; otherwise the first listed
    server is used (RFC 9728 Section 3).

    Raises:
        DiscoveryError: If the list is empty or the preferred server is not listed.
    """
    if not metadata.authorization_servers:
        raise DiscoveryError("no authorization servers available")

    if preferred:
        if preferred in metadata.authorization_servers:
            return preferred
        raise DiscoveryError(f"preferred authorization server not found: {preferred}")

    return metadata.authorization_servers[0]
