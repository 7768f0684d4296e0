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
Client identification strategy selection.
"""

from coreason_mcp_auth.config import OAuthConfig
from coreason_mcp_auth.models import ClientIdentity, ClientIdStrategy


def resolve_client_identity(config: OAuthConfig) -> ClientIdentity:
    """
    Decides how this client identifies itself to the authorization server.

    Precedence:
        1. A pre-registered `client_id` always wins.
        2. `client_id_metadata_url`, unless CIMD is disabled. The URL is the client_id.
        3. Otherwise an empty client_id: the caller must attempt Dynamic Client Registration.

    No I/O is performed and no registration is attempted here.
    """
    if config.client_id:
        return ClientIdentity(client_id=config.client_id, strategy=ClientIdStrategy.PRE_REGISTERED)

    if config.client_id_metadata_url and not config.disable_cimd:
        return ClientIdentity(client_id=config.client_id_metadata_url, strategy=ClientIdStrategy.CIMD)

    return ClientIdentity(client_id="", strategy=ClientIdStrategy.DYNAMIC_REGISTRATION)
