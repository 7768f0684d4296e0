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
Custom exceptions for the coreason-mcp-auth package.
"""


class CoreasonMcpAuthError(Exception):
    """Base exception for all coreason-mcp-auth errors."""


class MalformedInputError(CoreasonMcpAuthError):
    """Raised when a URL cannot be parsed, is relative, or has no host."""


class SchemeViolationError(CoreasonMcpAuthError):
    """Raised when a URL uses plain HTTP on a non-loopback host, or an unsupported scheme."""


class NetworkFailureError(CoreasonMcpAuthError):
    """Raised on connection, timeout or TLS failures."""


class ProtocolViolationError(CoreasonMcpAuthError):
    """
    Raised when a server response breaks the expected protocol
    (status, content type, JSON shape or required fields).
    """


class OversizedResponseError(ProtocolViolationError):
    """Raised when an HTTP response is too large."""


class SecurityPolicyViolationError(CoreasonMcpAuthError):
    """
    Raised when a security requirement is not met (missing PKCE support,
    CIMD mismatch, credentials over plaintext). Never downgraded automatically.
    """


class DiscoveryError(CoreasonMcpAuthError):
    """Raised when a discovery procedure fails as a whole. The cause is chained."""


class AuthorizationTimeoutError(CoreasonMcpAuthError):
    """Raised when the token exchange does not finish within the authorization timeout."""


class StepUpError(CoreasonMcpAuthError):
    """Raised when step-up authorization cannot be performed."""
