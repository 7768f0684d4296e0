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
WWW-Authenticate challenge parsing (RFC 6750 Section 3, RFC 9728 Section 5.1).

Example header:

    Bearer resource_metadata="https://mcp.example.com/.well-known/oauth-protected-resource",
           scope="files:read", error="insufficient_scope"
"""

import httpx

from coreason_mcp_auth.exceptions import MalformedInputError
from coreason_mcp_auth.models import WWWAuthenticateChallenge

INSUFFICIENT_SCOPE = "insufficient_scope"


def _split_preserving_quotes(value: str, delimiter: str = ",") -> list[str]:
    """Splits on `delimiter` outside double quotes. Backslash escapes are kept verbatim."""
    parts: list[str] = []
    current: list[str] = []
    in_quotes = False
    escaped = False

    for ch in value:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            current.append(ch)
            escaped = True
        elif ch == '"':
            in_quotes = not in_quotes
            current.append(ch)
        elif ch == delimiter and not in_quotes:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)

    if current:
        parts.append("".join(current))
    return parts


def _parse_auth_params(params: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for part in _split_preserving_quotes(params):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
            value = value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
        if key:
            result[key] = value
    return result


def parse_www_authenticate(header: str) -> WWWAuthenticateChallenge:
    """
    Parses a WWW-Authenticate header value.

    Args:
        header: The raw header value.

    Returns:
        WWWAuthenticateChallenge: Scheme plus any resource_metadata, scope, error and
        error_description parameters.

    Raises:
        MalformedInputError: If the header is empty.
    """
    header = header.strip() if header else ""
    if not header:
        raise MalformedInputError("empty WWW-Authenticate header")

    scheme, _, rest = header.partition(" ")
    params = _parse_auth_params(rest) if rest else {}

    return WWWAuthenticateChallenge(
        scheme=scheme,
        resource_metadata_url=params.get("resource_metadata") or None,
        scopes=params.get("scope", "").split(),
        error=params.get("error") or None,
        error_description=params.get("error_description") or None,
    )


def detect_insufficient_scope(response: httpx.Response) -> WWWAuthenticateChallenge | None:
    """
    Returns the challenge if the response is a 403 with `error="insufficient_scope"`, else None.
    """
    if response.status_code != 403:
        return None

    header = response.headers.get("WWW-Authenticate")
    if not header:
        return None

    challenge = parse_www_authenticate(header)
    if challenge.error != INSUFFICIENT_SCOPE:
        return None
    return challenge
