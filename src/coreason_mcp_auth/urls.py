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
URL and scheme predicates shared by discovery, metadata validation and redirect URI checks.

Every HTTPS-or-loopback decision in the package goes through `require_https_except_loopback`,
so AS endpoints, CIMD redirect URIs and the configured redirect URL follow one rule.
"""

import ipaddress
from urllib.parse import ParseResult, urlparse

from coreason_mcp_auth.constants import LOOPBACK_HOSTS, SCHEME_HTTP, SCHEME_HTTPS
from coreason_mcp_auth.exceptions import (
    MalformedInputError,
    SchemeViolationError,
    SecurityPolicyViolationError,
)

__all__ = [
    "check_metadata_url_allowed",
    "derive_resource_uri",
    "is_absolute_http_url",
    "is_loopback_host",
    "parse_absolute_url",
    "require_https_except_loopback",
]


def _strip_port(host: str) -> str | None:
    """
    Returns the host name without brackets and port, or None if the port part is malformed.
    """
    if host.startswith("["):
        end = host.find("]")
        if end == -1:
            return None
        rest = host[end + 1 :]
        if rest and not (rest.startswith(":") and rest[1:].isdigit()):
            return None
        return host[1:end]

    # A single colon separates name and port; more than one means a bare IPv6 literal
    if host.count(":") == 1:
        name, _, port = host.partition(":")
        if not port.isdigit():
            return None
        return name

    return host


def is_loopback_host(host: str | None) -> bool:
    """
    Checks whether a host (optionally with port) names the local machine.

    Accepts `localhost`, `127.0.0.1`, `::1` and `0:0:0:0:0:0:0:1`, bare or bracketed,
    with or without a numeric port. Everything else is rejected.

    Args:
        host: A host or host:port string, e.g. `localhost:8765` or `[::1]:8080`.

    Returns:
        True if the host is a recognised loopback form.
    """
    if not host:
        return False
    name = _strip_port(host.strip())
    if name is None:
        return False
    return name.lower() in LOOPBACK_HOSTS


def parse_absolute_url(url: str, what: str = "URL") -> ParseResult:
    """
    Parses a URL and requires it to be absolute with a host.

    Raises:
        MalformedInputError: If the URL is empty, unparseable, relative or has no host.
    """
    if not url:
        raise MalformedInputError(f"{what} cannot be empty")

    try:
        parsed = urlparse(url)
        # Accessing .port validates it
        _ = parsed.port
    except ValueError as e:
        raise MalformedInputError(f"invalid {what}: {e}") from e

    if not parsed.scheme:
        raise MalformedInputError(f"{what} must be absolute: {url}")

    if not parsed.hostname:
        raise MalformedInputError(f"{what} missing host: {url}")

    return parsed


def is_absolute_http_url(url: str) -> bool:
    """Returns True for absolute http(s) URLs with a host."""
    try:
        parsed = parse_absolute_url(url)
    except MalformedInputError:
        return False
    return parsed.scheme.lower() in (SCHEME_HTTP, SCHEME_HTTPS)


def require_https_except_loopback(url: str, what: str = "URL") -> ParseResult:
    """
    Requires `https`, or `http` restricted to a loopback host.

    Args:
        url: The URL to check.
        what: Name used in error messages (e.g. "token_endpoint").

    Returns:
        The parsed URL.

    Raises:
        MalformedInputError: If the URL is not absolute or has no host.
        SchemeViolationError: If the scheme is not allowed for this host.
    """
    parsed = parse_absolute_url(url, what)
    scheme = parsed.scheme.lower()

    if scheme == SCHEME_HTTPS:
        return parsed

    if scheme == SCHEME_HTTP:
        if is_loopback_host(parsed.hostname):
            return parsed
        raise SchemeViolationError(
            f"{what} must use https scheme (http only allowed for loopback hosts): {url}"
        )

    raise SchemeViolationError(f"{what} must use http or https scheme: {url}")


def check_metadata_url_allowed(url: str) -> None:
    """
    Rejects server-supplied metadata URLs that point at internal resources.

    Applied to `resource_metadata` URLs taken from WWW-Authenticate challenges,
    which are attacker-influenced.

    Raises:
        MalformedInputError: If the URL is malformed.
        SchemeViolationError: If the scheme is not http(s).
        SecurityPolicyViolationError: If the host is loopback or a non-public IP literal.
    """
    parsed = parse_absolute_url(url, "metadata URL")
    if parsed.scheme.lower() not in (SCHEME_HTTP, SCHEME_HTTPS):
        raise SchemeViolationError(f"metadata URL must use http or https scheme, got: {parsed.scheme}")

    hostname = parsed.hostname or ""
    if is_loopback_host(hostname) or hostname.startswith("127."):
        raise SecurityPolicyViolationError("localhost URLs not allowed for metadata discovery")

    try:
        ip_obj = ipaddress.ip_address(hostname)
    except ValueError:
        # Not an IP literal
        return

    if (
        ip_obj.is_private
        or ip_obj.is_loopback
        or ip_obj.is_link_local
        or ip_obj.is_reserved
        or ip_obj.is_multicast
        or ip_obj.is_unspecified
    ):
        raise SecurityPolicyViolationError(f"non-public IP addresses not allowed for metadata discovery: {hostname}")


def derive_resource_uri(endpoint: str) -> str:
    """
    Derives the canonical RFC 8707 resource URI for a server endpoint.

    Lowercases scheme and host, drops default ports, query, fragment and userinfo,
    and removes a trailing slash unless the path is just "/".

    Examples:
        https://MCP.Example.Com:443/mcp -> https://mcp.example.com/mcp
        http://localhost:8090/mcp/ -> http://localhost:8090/mcp
    """
    parsed = parse_absolute_url(endpoint, "endpoint URL")
    scheme = parsed.scheme.lower()
    hostname = parsed.hostname or ""
    port = parsed.port

    host = f"[{hostname}]" if ":" in hostname else hostname
    default_port = (scheme == SCHEME_HTTPS and port == 443) or (scheme == SCHEME_HTTP and port == 80)
    if port is not None and not default_port:
        host = f"{host}:{port}"

    path = parsed.path
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/")

    return f"{scheme}://{host}{path}"
