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
Scope selection for authorization requests.
"""

from collections.abc import Iterable

from coreason_mcp_auth.config import OAuthConfig
from coreason_mcp_auth.models import (
    ProtectedResourceMetadata,
    ScopeSelectionMode,
    WWWAuthenticateChallenge,
)


def select_scopes(
    config: OAuthConfig,
    requested_scopes: list[str] | None = None,
    resource_metadata: ProtectedResourceMetadata | None = None,
    *,
    challenge: WWWAuthenticateChallenge | None = None,
) -> list[str]:
    """
    Chooses the scopes to request.

    Manual mode returns `requested_scopes` verbatim, or `config.scopes` when none are given.

    Auto mode trusts the server to know its own minimum: the scopes named by a
    WWW-Authenticate challenge, else the resource's `scopes_supported`. If neither
    names any scope the result is empty and the scope parameter should be omitted.
    Scopes are never invented.
    """
    if config.scope_selection_mode == ScopeSelectionMode.MANUAL:
        if requested_scopes is None:
            return list(config.scopes)
        return list(requested_scopes)

    if challenge is not None and challenge.scopes:
        return list(challenge.scopes)

    if resource_metadata is not None and resource_metadata.scopes_supported:
        return list(resource_metadata.scopes_supported)

    return []


def merge_scopes(existing: Iterable[str], new: Iterable[str]) -> list[str]:
    """Order-preserving union. Existing scopes come first."""
    merged: list[str] = []
    for scope in [*existing, *new]:
        if scope and scope not in merged:
            merged.append(scope)
    return merged
