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
Protocol constants shared across the coreason-mcp-auth package.
"""

SCHEME_HTTP = "http"
SCHEME_HTTPS = "https"

# RFC 7636: the only challenge method we accept
PKCE_METHOD_S256 = "S256"

USER_AGENT = "coreason-mcp-auth/0.1.0"
ACCEPT_JSON = "application/json"
FORM_URLENCODED = "application/x-www-form-urlencoded"

# Body caps. A body that reaches the cap is rejected.
MAX_METADATA_SIZE = 1024 * 1024
MAX_CLIENT_METADATA_SIZE = 100 * 1024

METADATA_REQUEST_TIMEOUT = 10.0

# Escape hatch for non-compliant servers (testing only)
ALLOW_INSECURE_ENV_VAR = "COREASON_MCP_ALLOW_INSECURE"
ALLOW_INSECURE_VALUE = "true"

WELL_KNOWN_OAUTH_AS = ".well-known/oauth-authorization-server"
WELL_KNOWN_OPENID = ".well-known/openid-configuration"
WELL_KNOWN_PROTECTED_RESOURCE = ".well-known/oauth-protected-resource"

# Loopback host literals, brackets already stripped
LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "0:0:0:0:0:0:0:1"})

# RFC 7591 registration endpoint paths, used when no endpoint is bound
REGISTRATION_PATHS = (
    "/register",
    "/registration",
    "/oauth/register",
    "/oauth2/register",
    "/connect/register",
    "/oauth/registration",
    "/oauth2/registration",
    "/connect/registration",
    "/.well-known/openid-registration",
)

CLIENT_NAME = "coreason-mcp-auth"
CLIENT_URI = "https://github.com/CoReason-AI/coreason_mcp_auth"
