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
AuthorizationManager component for orchestrating discovery before an OAuth 2.1 flow.
"""

from typing import Any, Protocol

import anyio
import httpx
from opentelemetry import trace
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.trace import Status, StatusCode

from coreason_mcp_auth.as_metadata import discover_as_metadata
from coreason_mcp_auth.cimd import supports_client_id_metadata, validate_cimd_consistency
from coreason_mcp_auth.client_id import resolve_client_identity
from coreason_mcp_auth.config import OAuthConfig
from coreason_mcp_auth.exceptions import AuthorizationTimeoutError, CoreasonMcpAuthError, DiscoveryError
from coreason_mcp_auth.middleware import build_oauth_transport, default_transport
from coreason_mcp_auth.models import (
    AuthorizationPlan,
    AuthorizationServerMetadata,
    ClientIdentity,
    ClientIdStrategy,
    TokenResponse,
    WWWAuthenticateChallenge,
)
from coreason_mcp_auth.pkce import generate_pkce_parameters, validate_pkce_support
from coreason_mcp_auth.resource_metadata import (
    discover_protected_resource_metadata,
    select_authorization_server,
)
from coreason_mcp_auth.scopes import select_scopes
from coreason_mcp_auth.stepup import Reauthorizer, StepUpTransport
from coreason_mcp_auth.transport import DEFAULT_HEADERS, create_ssl_context
from coreason_mcp_auth.urls import derive_resource_uri
from coreason_mcp_auth.utils.logger import LoggerProtocol, get_logger

tracer = trace.get_tracer(__name__)


class TokenExchanger(Protocol):
    """
    The interactive part of the flow: opens the browser, receives the callback and
    exchanges the code. Requests to the authorization server must go through `client`
    so the resource indicator and registration token are applied.
    """

    async def __call__(self, plan: AuthorizationPlan, client: httpx.AsyncClient) -> TokenResponse: ...


class AuthorizationManager:
    """
    Async orchestrator (The Core).
    Handles resources via async context manager.
    """

    def __init__(
        self,
        config: OAuthConfig,
        client: httpx.AsyncClient | None = None,
        log: LoggerProtocol | None = None,
    ) -> None:
        """
        Initialize the AuthorizationManager.

        Args:
            config: The OAuth configuration.
            client: External async client (optional). If not provided, a TLS 1.2+ client is created.
            log: Optional injected logger.
        """
        self.config = config
        self._log = get_logger(log)
        self._internal_client = client is None

        if client:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                verify=create_ssl_context(),
                timeout=self.config.http_timeout,
                headers=DEFAULT_HEADERS,
                follow_redirects=False,
            )

        # Instrument the client for distributed tracing
        HTTPXClientInstrumentor().instrument_client(self._client)

    async def __aenter__(self) -> "AuthorizationManager":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def _resolve_client(self, as_metadata: AuthorizationServerMetadata) -> ClientIdentity:
        identity = resolve_client_identity(self.config)

        if identity.strategy == ClientIdStrategy.CIMD:
            if not supports_client_id_metadata(as_metadata):
                self._log.warning(
                    f"Authorization server {as_metadata.issuer} does not advertise "
                    "client_id_metadata_document_supported, falling back to dynamic client registration"
                )
                identity = ClientIdentity(strategy=ClientIdStrategy.DYNAMIC_REGISTRATION)
            else:
                await validate_cimd_consistency(
                    identity.client_id, client=self._client, timeout=self.config.http_timeout, log=self._log
                )

        if identity.requires_registration and not as_metadata.registration_endpoint:
            raise DiscoveryError(
                f"no client_id available and authorization server {as_metadata.issuer} "
                "does not advertise a registration_endpoint"
            )

        self._log.info(f"Client identification strategy: {identity.strategy}")
        return identity

    def _resource_uri(self, server_url: str) -> str | None:
        if self.config.skip_resource_param:
            return None
        return self.config.resource_uri or derive_resource_uri(server_url)

    async def prepare_authorization(
        self, server_url: str, challenge: WWWAuthenticateChallenge | None = None
    ) -> AuthorizationPlan:
        """
        Runs every discovery and validation step needed before the user is sent to the
        authorization server.

        Order: protected resource metadata, authorization server selection, AS metadata,
        PKCE check, client identification, scope selection, resource URI, PKCE parameters.

        Args:
            server_url: The protected MCP server URL.
            challenge: The WWW-Authenticate challenge from a 401 response, if any.

        Returns:
            AuthorizationPlan: Everything the token exchanger needs.

        Raises:
            DiscoveryError: If metadata cannot be discovered, or registration is required
                but the authorization server has no registration endpoint.
            SecurityPolicyViolationError: If PKCE S256 is not supported or the CIMD
                document is inconsistent.
            MalformedInputError: If the server URL is malformed.
            SchemeViolationError: If a URL uses a forbidden scheme.
        """
        with tracer.start_as_current_span("prepare_authorization") as span:
            span.set_attribute("mcp.server_url", server_url)
            try:
                resource_metadata = await discover_protected_resource_metadata(
                    server_url,
                    challenge=challenge,
                    client=self._client,
                    timeout=self.config.http_timeout,
                    strict_resource_check=self.config.strict_resource_check,
                    log=self._log,
                )
                auth_server_url = select_authorization_server(
                    resource_metadata, self.config.preferred_auth_server
                )
                span.set_attribute("oauth.auth_server_url", auth_server_url)

                as_metadata = await discover_as_metadata(
                    auth_server_url, client=self._client, timeout=self.config.http_timeout, log=self._log
                )
                validate_pkce_support(as_metadata, self.config.skip_pkce_validation, log=self._log)

                identity = await self._resolve_client(as_metadata)
                scopes = select_scopes(self.config, None, resource_metadata, challenge=challenge)
                resource_uri = self._resource_uri(server_url)
            except CoreasonMcpAuthError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            span.set_attribute("oauth.client_strategy", str(identity.strategy))
            span.set_status(Status(StatusCode.OK))

            return AuthorizationPlan(
                server_url=server_url,
                auth_server_url=auth_server_url,
                resource_metadata=resource_metadata,
                as_metadata=as_metadata,
                client=identity,
                scopes=scopes,
                resource_uri=resource_uri,
                redirect_url=self.config.redirect_url,
                pkce=generate_pkce_parameters(),
            )

    def build_http_client(
        self, plan: AuthorizationPlan, base: httpx.AsyncBaseTransport | None = None
    ) -> httpx.AsyncClient:
        """
        Returns a client for talking to the planned authorization server, with the resource
        indicator and registration token middleware applied. The caller owns the client.
        """
        transport = build_oauth_transport(self.config, plan, base=base, log=self._log)
        return httpx.AsyncClient(
            transport=transport,
            timeout=self.config.http_timeout,
            headers=DEFAULT_HEADERS,
            follow_redirects=False,
        )

    def build_step_up_client(
        self,
        reauthorize: Reauthorizer,
        *,
        base: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.AsyncClient:
        """
        Returns a client for calling the MCP server that re-authorizes and replays requests
        rejected with `insufficient_scope`. The caller owns the client.
        """
        transport = StepUpTransport(
            base or default_transport(),
            reauthorize,
            max_retries=self.config.step_up_max_retries,
            enabled=self.config.enable_step_up_auth,
            log=self._log,
        )
        return httpx.AsyncClient(transport=transport, timeout=self.config.http_timeout, headers=headers)

    async def authorize(
        self,
        server_url: str,
        exchanger: TokenExchanger,
        challenge: WWWAuthenticateChallenge | None = None,
    ) -> TokenResponse:
        """
        Prepares the authorization and hands it to `exchanger` under the authorization timeout.

        Raises:
            AuthorizationTimeoutError: If the exchange does not finish within
                `config.authorization_timeout` seconds.
        """
        plan = await self.prepare_authorization(server_url, challenge)

        async with self.build_http_client(plan) as oauth_client:
            try:
                with anyio.fail_after(self.config.authorization_timeout):
                    return await exchanger(plan, oauth_client)
            except TimeoutError as e:
                raise AuthorizationTimeoutError(
                    f"authorization did not complete within {self.config.authorization_timeout} seconds"
                ) from e
