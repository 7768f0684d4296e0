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
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from coreason_mcp_auth.config import DEFAULT_REDIRECT_URL, DEFAULT_SCOPES, OAuthConfig
from coreason_mcp_auth.models import ScopeSelectionMode


def test_defaults() -> None:
    config = OAuthConfig()
    assert config.enabled is False
    assert config.client_id is None
    assert config.scopes == DEFAULT_SCOPES
    assert config.redirect_url == DEFAULT_REDIRECT_URL
    assert config.scope_selection_mode == ScopeSelectionMode.AUTO
    assert config.authorization_timeout == 300.0
    assert config.http_timeout == 10.0
    assert config.enable_step_up_auth is True
    assert config.step_up_max_retries == 2
    assert config.strict_resource_check is False


def test_default_scopes_are_not_shared() -> None:
    first = OAuthConfig()
    first.scopes.append("extra")
    assert OAuthConfig().scopes == DEFAULT_SCOPES


def test_config_loading() -> None:
    """Test loading configuration from environment variables."""
    with patch.dict(
        os.environ,
        {
            "COREASON_MCP_OAUTH_ENABLED": "true",
            "COREASON_MCP_OAUTH_CLIENT_ID": "client-1",
            "COREASON_MCP_OAUTH_SCOPES": '["files:read"]',
            "COREASON_MCP_OAUTH_SCOPE_SELECTION_MODE": "manual",
            "COREASON_MCP_OAUTH_REGISTRATION_TOKEN": "initial-access-token",
        },
    ):
        config = OAuthConfig()
        assert config.enabled is True
        assert config.client_id == "client-1"
        assert config.scopes == ["files:read"]
        assert config.scope_selection_mode == ScopeSelectionMode.MANUAL
        assert config.registration_token is not None
        assert config.registration_token.get_secret_value() == "initial-access-token"


def test_config_case_insensitive() -> None:
    """Test that environment variables are case-insensitive."""
    with patch.dict(os.environ, {"coreason_mcp_oauth_client_id": "lower"}):
        assert OAuthConfig().client_id == "lower"


def test_secrets_are_masked() -> None:
    config = OAuthConfig(client_secret="s3cret", registration_token="t0ken")
    dumped = repr(config)
    assert "s3cret" not in dumped
    assert "t0ken" not in dumped


@pytest.mark.parametrize(
    "url",
    [
        "http://localhost:8765/callback",
        "http://127.0.0.1/cb",
        "http://[::1]:9000/cb",
        "https://app.example.com/callback",
    ],
)
def test_redirect_url_accepted(url: str) -> None:
    assert OAuthConfig(redirect_url=url).redirect_url == url


@pytest.mark.parametrize(
    "url",
    [
        "http://app.example.com/callback",
        "ftp://localhost/callback",
        "/callback",
        "",
    ],
)
def test_redirect_url_rejected(url: str) -> None:
    with pytest.raises(ValidationError):
        OAuthConfig(redirect_url=url)


def test_client_id_metadata_url_validated() -> None:
    with pytest.raises(ValidationError) as exc:
        OAuthConfig(client_id_metadata_url="http://app.example.com/client.json")
    assert "https" in str(exc.value)


def test_client_id_metadata_url_requires_path() -> None:
    with pytest.raises(ValidationError):
        OAuthConfig(client_id_metadata_url="https://app.example.com/")


def test_empty_client_id_metadata_url_is_none() -> None:
    assert OAuthConfig(client_id_metadata_url="").client_id_metadata_url is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"authorization_timeout": 0},
        {"authorization_timeout": -1},
        {"http_timeout": 0},
        {"step_up_max_retries": 0},
        {"scope_selection_mode": "sometimes"},
    ],
)
def test_invalid_values_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        OAuthConfig(**kwargs)
