# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_mcp_auth

import os
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from coreason_mcp_auth.constants import ALLOW_INSECURE_ENV_VAR

Handler = Callable[[httpx.Request], httpx.Response]
Route = httpx.Response | Handler


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Removes the insecure-mode toggle and any OAuth settings from the environment,
    so tests never depend on the developer's shell.
    """
    monkeypatch.delenv(ALLOW_INSECURE_ENV_VAR, raising=False)
    for key in list(os.environ):
        if key.upper().startswith("COREASON_MCP_OAUTH_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def as_metadata_doc() -> dict[str, Any]:
    return {
        "issuer": "https://auth.example.com",
        "authorization_endpoint": "https://auth.example.com/authorize",
        "token_endpoint": "https://auth.example.com/token",
        "registration_endpoint": "https://auth.example.com/register",
        "code_challenge_methods_supported": ["S256"],
    }


@pytest.fixture
def pr_metadata_doc() -> dict[str, Any]:
    return {
        "resource": "https://mcp.example.com",
        "authorization_servers": ["https://auth.example.com"],
        "scopes_supported": ["files:read", "files:write"],
    }


@pytest.fixture
def routed_client() -> Callable[[dict[str, Route]], httpx.AsyncClient]:
    """
    Factory for AsyncClients backed by an httpx.MockTransport that serves responses by
    URL (query ignored). Unknown URLs get a 404. Every request is appended to
    `client.requested` for assertions.
    """

    def _make(routes: dict[str, Route]) -> httpx.AsyncClient:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            key = str(request.url.copy_with(query=None))
            requested.append(key)
            route = routes.get(key)
            if route is None:
                return httpx.Response(404, json={"error": "not_found"})
            if callable(route):
                return route(request)
            return route

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client.requested = requested  # type: ignore[attr-defined]
        return client

    return _make
