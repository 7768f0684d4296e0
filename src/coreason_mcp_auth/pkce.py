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
PKCE enforcement and parameter generation (RFC 7636).

Authorization servers must advertise S256 in `code_challenge_methods_supported`.
Absence of the field counts as no support.
"""

import os

from authlib.common.security import generate_token
from authlib.oauth2.rfc7636 import create_s256_code_challenge
from pydantic import SecretStr

from coreason_mcp_auth.constants import (
    ALLOW_INSECURE_ENV_VAR,
    ALLOW_INSECURE_VALUE,
    PKCE_METHOD_S256,
)
from coreason_mcp_auth.exceptions import SecurityPolicyViolationError
from coreason_mcp_auth.models import AuthorizationServerMetadata, PKCEParameters
from coreason_mcp_auth.utils.logger import LoggerProtocol, get_logger

# RFC 7636 Section 4.1 allows 43-128 characters; use the maximum
CODE_VERIFIER_LENGTH = 128
STATE_LENGTH = 32


def insecure_mode_allowed() -> bool:
    """True only if the escape-hatch variable holds the exact expected literal."""
    return os.environ.get(ALLOW_INSECURE_ENV_VAR) == ALLOW_INSECURE_VALUE


def validate_pkce_support(
    metadata: AuthorizationServerMetadata,
    skip_validation: bool = False,
    log: LoggerProtocol | None = None,
) -> None:
    """
    Verifies that the authorization server advertises the S256 PKCE method.

    Args:
        metadata: Validated authorization server metadata.
        skip_validation: Skip the check. Only honoured when COREASON_MCP_ALLOW_INSECURE=true.
        log: Optional injected logger.

    Raises:
        SecurityPolicyViolationError: If PKCE or S256 is not advertised, or the skip is
            requested without the environment toggle.
    """
    log = get_logger(log)

    if skip_validation:
        if not insecure_mode_allowed():
            raise SecurityPolicyViolationError(
                f"PKCE validation skip requires {ALLOW_INSECURE_ENV_VAR}={ALLOW_INSECURE_VALUE} "
                "environment variable for safety"
            )
        log.warning("SECURITY WARNING: PKCE validation is disabled. This should only be used for testing!")
        return

    methods = metadata.code_challenge_methods
    if not methods:
        raise SecurityPolicyViolationError(
            f"authorization server {metadata.issuer} does not advertise PKCE support "
            "(code_challenge_methods_supported missing or empty)"
        )

    if PKCE_METHOD_S256 not in methods:
        raise SecurityPolicyViolationError(
            f"authorization server {metadata.issuer} does not support the S256 PKCE method "
            f"(only: {methods}) - S256 is required"
        )


def generate_pkce_parameters() -> PKCEParameters:
    """
    Generates a fresh code verifier, its S256 challenge and a CSRF state value.
    """
    code_verifier = generate_token(CODE_VERIFIER_LENGTH)
    return PKCEParameters(
        code_verifier=SecretStr(code_verifier),
        code_challenge=create_s256_code_challenge(code_verifier),
        code_challenge_method=PKCE_METHOD_S256,
        state=generate_token(STATE_LENGTH),
    )
