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
Client ID Metadata Documents (draft-ietf-oauth-client-id-metadata-document).

With CIMD the client_id is an HTTPS URL that hosts the client's own metadata.
The authorization server dereferences it, so the URL is held to a stricter rule
than redirect URIs: HTTPS only, no loopback exception, and a non-root path.
"""

from typing import TYPE_CHECKING

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from coreason_mcp_auth.constants import (
    CLIENT_NAME,
    CLIENT_URI,
    MAX_CLIENT_METADATA_SIZE,
    METADATA_REQUEST_TIMEOUT,
    SCHEME_HTTPS,
)
from coreason_mcp_auth.exceptions import (
    CoreasonMcpAuthError,
    MalformedInputError,
    ProtocolViolationError,
    SchemeViolationError,
    SecurityPolicyViolationError,
)
from coreason_mcp_auth.models import AuthorizationServerMetadata, ClientMetadataDocument
from coreason_mcp_auth.transport import borrow_or_create_client, safe_json_fetch
from coreason_mcp_auth.urls import parse_absolute_url, require_https_except_loopback
from coreason_mcp_auth.utils.logger import LoggerProtocol, get_logger

if TYPE_CHECKING:
    from coreason_mcp_auth.config import OAuthConfig

tracer = trace.get_tracer(__name__)


def validate_client_id_url(url: str) -> None:
    """
    Validates a URL for use as a CIMD client_id.

    Raises:
        MalformedInputError: If the URL is not absolute, has no host, or has an empty/root path.
        SchemeViolationError: If the scheme is not https.
    """
    parsed = parse_absolute_url(url, "client_id URL")

    if parsed.scheme.lower() != SCHEME_HTTPS:
        raise SchemeViolationError(f"client_id URL must use https scheme, got: {parsed.scheme}")

    if parsed.path in ("", "/"):
        raise MalformedInputError(f"client_id URL must have a path component: {url}")


def generate_client_metadata(config: "OAuthConfig") -> ClientMetadataDocument:
    """
    Builds the metadata document this client should host at `client_id_metadata_url`.

    Args:
        config: Settings providing `client_id_metadata_url` and `redirect_url`.

    Returns:
        ClientMetadataDocument: A public-client document for the authorization code flow.

    Raises:
        MalformedInputError: If `client_id_metadata_url` is unset or invalid.
        SchemeViolationError: If `client_id_metadata_url` is not https.
    """
    url = config.client_id_metadata_url
    if not url:
        raise MalformedInputError("client_id_metadata_url is required for CIMD")

    validate_client_id_url(url)

    return ClientMetadataDocument(
        client_id=url,
        client_name=CLIENT_NAME,
        client_uri=CLIENT_URI,
        redirect_uris=[config.redirect_url],
        grant_types=["authorization_code"],
        response_types=["code"],
        token_endpoint_auth_method="none",
    )


def validate_client_metadata(doc: ClientMetadataDocument) -> None:
    """
    Structural validation of a client metadata document.

    Raises:
        MalformedInputError: If client_id or a redirect URI is not a valid absolute URL,
            or no redirect URIs are present.
        SchemeViolationError: If client_id is not https, or a redirect URI uses HTTP on a
            non-loopback host.
    """
    validate_client_id_url(doc.client_id)

    if not doc.redirect_uris:
        raise MalformedInputError("at least one redirect_uri is required")

    for index, redirect_uri in enumerate(doc.redirect_uris):
        require_https_except_loopback(redirect_uri, f"redirect_uri at index {index}")


async def fetch_client_metadata(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = METADATA_REQUEST_TIMEOUT,
    log: LoggerProtocol | None = None,
) -> ClientMetadataDocument:
    """
    Fetches and validates the client metadata document hosted at `url`.

    The URL is validated before any network call. Bodies of 100 KiB or more are rejected.
    Emits an OpenTelemetry span `fetch_client_metadata`.

    Raises:
        MalformedInputError: If the URL or the document is structurally invalid.
        SchemeViolationError: If the URL or a redirect URI uses a forbidden scheme.
        NetworkFailureError: On transport failures.
        ProtocolViolationError: On bad status, content type, size or JSON shape.
    """
    log = get_logger(log)
    validate_client_id_url(url)

    with tracer.start_as_current_span("fetch_client_metadata") as span:
        span.set_attribute("oauth.client_id_url", url)
        try:
            async with borrow_or_create_client(client, timeout) as http:
                data = await safe_json_fetch(http, url, max_bytes=MAX_CLIENT_METADATA_SIZE)
            try:
                doc = ClientMetadataDocument.model_validate(data)
            except ValidationError as e:
                raise ProtocolViolationError(f"invalid client metadata document from {url}: {e}") from e
            validate_client_metadata(doc)
        except CoreasonMcpAuthError as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise

        log.debug(f"Fetched client metadata document from {url}")
        span.set_status(Status(StatusCode.OK))
        return doc


async def validate_cimd_consistency(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = METADATA_REQUEST_TIMEOUT,
    log: LoggerProtocol | None = None,
) -> None:
    """
    Checks that the document hosted at `url` names `url` as its own client_id.

    Raises:
        SecurityPolicyViolationError: If the document cannot be fetched or its client_id
            differs from `url` in any byte.
    """
    try:
        doc = await fetch_client_metadata(url, client=client, timeout=timeout, log=log)
    except CoreasonMcpAuthError as e:
        raise SecurityPolicyViolationError(f"failed to fetch client metadata for consistency check: {e}") from e

    if doc.client_id != url:
        raise SecurityPolicyViolationError(
            f"client_id mismatch: document at {url} declares client_id {doc.client_id!r}"
        )


def supports_client_id_metadata(as_metadata: AuthorizationServerMetadata | None) -> bool:
    """True iff the authorization server advertises `client_id_metadata_document_supported`."""
    if as_metadata is None:
        return False
    return as_metadata.client_id_metadata_document_supported
