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
Secure HTTP fetching of JSON metadata documents.

All metadata (AS metadata, protected resource metadata, client metadata documents)
is fetched through `safe_json_fetch`, which enforces status, content type and a
hard size cap while streaming, so an oversized body is never buffered in full.
"""

import json
import ssl
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import certifi
import httpx

from coreason_mcp_auth.constants import (
    ACCEPT_JSON,
    MAX_METADATA_SIZE,
    METADATA_REQUEST_TIMEOUT,
    USER_AGENT,
)
from coreason_mcp_auth.exceptions import (
    MalformedInputError,
    NetworkFailureError,
    OversizedResponseError,
    ProtocolViolationError,
)
from coreason_mcp_auth.utils.logger import logger

DEFAULT_HEADERS = {"Accept": ACCEPT_JSON, "User-Agent": USER_AGENT}


def create_ssl_context() -> ssl.SSLContext:
    """
    Creates a certificate-verifying SSL context that refuses anything older than TLS 1.2.
    """
    context = ssl.create_default_context(cafile=certifi.where())
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


@asynccontextmanager
async def secure_client(timeout: float = METADATA_REQUEST_TIMEOUT) -> AsyncIterator[httpx.AsyncClient]:
    """
    Yields a transient client for one discovery call and closes it afterwards.

    Redirects are not followed: a metadata endpoint must answer 200 directly.
    """
    async with httpx.AsyncClient(
        verify=create_ssl_context(),
        timeout=timeout,
        headers=DEFAULT_HEADERS,
        follow_redirects=False,
    ) as client:
        yield client


@asynccontextmanager
async def borrow_or_create_client(
    client: httpx.AsyncClient | None, timeout: float = METADATA_REQUEST_TIMEOUT
) -> AsyncIterator[httpx.AsyncClient]:
    """
    Yields the injected client untouched, or a transient secure client if none was given.
    """
    if client is not None:
        yield client
        return
    async with secure_client(timeout) as transient:
        yield transient


async def safe_json_fetch(
    client: httpx.AsyncClient,
    url: str,
    max_bytes: int = MAX_METADATA_SIZE,
) -> dict[str, Any]:
    """
    Fetches a JSON object with a GET request.

    Args:
        client: The async HTTP client to use.
        url: The URL to fetch.
        max_bytes: Size cap. A body of `max_bytes` or more is rejected.

    Returns:
        dict[str, Any]: The decoded JSON object.

    Raises:
        NetworkFailureError: On connection, timeout or TLS errors.
        ProtocolViolationError: If the status is not 200, the content type is not JSON,
            or the body is not a JSON object.
        OversizedResponseError: If the body reaches the size cap.
        MalformedInputError: If httpx rejects the URL.
    """
    try:
        async with client.stream("GET", url, headers=DEFAULT_HEADERS) as response:
            if response.status_code != 200:
                raise ProtocolViolationError(f"request to {url} failed with status {response.status_code}")

            content_type = response.headers.get("Content-Type", "")
            if "application/json" not in content_type.lower():
                raise ProtocolViolationError(
                    f"unexpected Content-Type from {url}: {content_type!r} (expected application/json)"
                )

            content_length = response.headers.get("Content-Length")
            if content_length:
                try:
                    declared = int(content_length)
                except ValueError:
                    declared = 0
                if declared >= max_bytes:
                    raise OversizedResponseError(f"response from {url} exceeds maximum size of {max_bytes} bytes")

            content = bytearray()
            async for chunk in response.aiter_bytes():
                content.extend(chunk)
                if len(content) >= max_bytes:
                    raise OversizedResponseError(f"response from {url} exceeds maximum size of {max_bytes} bytes")
    except httpx.InvalidURL as e:
        raise MalformedInputError(f"invalid URL {url}: {e}") from e
    except httpx.HTTPError as e:
        logger.debug(f"Request to {url} failed: {e!r}")
        raise NetworkFailureError(f"request to {url} failed: {e}") from e

    try:
        data = json.loads(bytes(content))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolViolationError(f"failed to parse JSON from {url}: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolViolationError(f"expected a JSON object from {url}, got {type(data).__name__}")

    return data
