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
OAuth 2.1 discovery and validation for clients of protected MCP servers.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .as_metadata import discover_as_metadata
from .challenge import parse_www_authenticate
from .config import OAuthConfig
from .exceptions import CoreasonMcpAuthError, DiscoveryError, SecurityPolicyViolationError
from .manager import AuthorizationManager, TokenExchanger
from .models import AuthorizationPlan, AuthorizationServerMetadata, ProtectedResourceMetadata, TokenResponse
from .resource_metadata import discover_protected_resource_metadata

__all__ = [
    "AuthorizationManager",
    "AuthorizationPlan",
    "AuthorizationServerMetadata",
    "CoreasonMcpAuthError",
    "DiscoveryError",
    "OAuthConfig",
    "ProtectedResourceMetadata",
    "SecurityPolicyViolationError",
    "TokenExchanger",
    "TokenResponse",
    "discover_as_metadata",
    "discover_protected_resource_metadata",
    "parse_www_authenticate",
]
