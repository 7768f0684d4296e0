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
HTTPX transport decorators for OAuth traffic.

`ResourceIndicatorTransport` adds the RFC 8707 `resource` parameter so issued tokens are
audience-restricted to the MCP server. `RegistrationTokenTransport` attaches an initial
access token to Dynamic Client Registration requests (RFC 7591 Section 3).

Both only rewrite the outgoing request. The caller's request object is never mutated and
responses are forwarded untouched.
"""

from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode

import httpx
from pydantic import SecretStr

from coreason_mcp_auth.constants import FORM_URLENCODED, REGISTRATION_PATHS, SCHEME_HTTPS
from coreason_mcp_auth.exceptions import MalformedInputError, SecurityPolicyViolationError
from coreason_mcp_auth.transport import create_ssl_context
from coreason_mcp_auth.urls import derive_resource_uri
from coreason_mcp_auth.utils.logger import LoggerProtocol, get_logger

if TYPE_CHECKING:
    from coreason_mcp_auth.config import OAuthConfig
    from coreason_mcp_auth.models import AuthorizationPlan

RESOURCE_PARAM = "resource"


def default_transport() -> httpx.AsyncHTTPTransport:
    """The base transport used when none is supplied: certificate-verified, TLS 1.2+."""
    return httpx.AsyncHTTPTransport(verify=create_ssl_context())


def is_registration_path(path: str) -> bool:
    """
    Matches well-known DCR endpoint paths exactly or as a trailing path segment.

    `/api/v1/oauth/register` matches; `/preregister` and `/registration-webhook` do not.
    """
    path = path.lower()
    if path != "/":
        path = path.rstrip("/")
    return any(path == pattern or path.endswith(pattern) for pattern in REGISTRATION_PATHS)


def is_registration_request(request: httpx.Request, registration_endpoint: str | None = None) -> bool:
    """
    True for a POST to the registration endpoint.

    When the endpoint is known from AS metadata only that URL matches; otherwise the
    well-known path patterns are used.
    """
    if request.method != "POST":
        return False

    if registration_endpoint:
        try:
            return derive_resource_uri(str(request.url)) == derive_resource_uri(registration_endpoint)
        except MalformedInputError:
            return False

    return is_registration_path(request.url.path)


def _is_form_request(request: httpx.Request) -> bool:
    content_type = request.headers.get("Content-Type", "")
    return content_type.split(";", 1)[0].strip().lower() == FORM_URLENCODED


class ResourceIndicatorTransport(httpx.AsyncBaseTransport):
    """
    Sets `resource=<resource_uri>` on every request.

    Form-encoded bodies (token requests) carry it in the body; every other request
    carries it in the query string. An existing value is overwritten.

    Args:
        resource_uri: The canonical resource URI of the MCP server.
        transport: The wrapped transport. Defaults to a TLS 1.2+ HTTP transport.
        include_registration: Also decorate Dynamic Client Registration requests.
        skip: Forward everything unchanged.
        log: Optional injected logger.
    """

    def __init__(
        self,
        resource_uri: str,
        transport: httpx.AsyncBaseTransport | None = None,
        *,
        include_registration: bool = True,
        skip: bool = False,
        registration_endpoint: str | None = None,
        log: LoggerProtocol | None = None,
    ) -> None:
        self.resource_uri = resource_uri
        self._transport = transport or default_transport()
        self.include_registration = include_registration
        self.skip = skip
        self.registration_endpoint = registration_endpoint
        self._log = get_logger(log)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if self.skip or not self.resource_uri:
            return await self._transport.handle_async_request(request)

        if not self.include_registration and is_registration_request(request, self.registration_endpoint):
            return await self._transport.handle_async_request(request)

        if _is_form_request(request):
            try:
                outgoing = await self._with_form_resource(request)
            except UnicodeDecodeError as e:
                self._log.warning(
                    f"Failed to add resource parameter to {request.method} {request.url.path}, "
                    f"form body is not valid UTF-8: {e}"
                )
                return await self._transport.handle_async_request(request)
        else:
            outgoing = httpx.Request(
                request.method,
                request.url.copy_set_param(RESOURCE_PARAM, self.resource_uri),
                headers=request.headers,
                stream=request.stream,
                extensions=request.extensions,
            )

        self._log.debug(f"Added resource parameter to {request.method} {request.url.path}: {self.resource_uri}")
        return await self._transport.handle_async_request(outgoing)

    async def _with_form_resource(self, request: httpx.Request) -> httpx.Request:
        body = await request.aread()
        pairs = [
            (key, value)
            for key, value in parse_qsl(body.decode("utf-8"), keep_blank_values=True)
            if key != RESOURCE_PARAM
        ]
        pairs.append((RESOURCE_PARAM, self.resource_uri))

        headers = request.headers.copy()
        # Recomputed from the new body
        headers.pop("Content-Length", None)

        return httpx.Request(
            request.method,
            request.url,
            headers=headers,
            content=urlencode(pairs).encode("utf-8"),
            extensions=request.extensions,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()


class RegistrationTokenTransport(httpx.AsyncBaseTransport):
    """
    Attaches `Authorization: Bearer <token>` to Dynamic Client Registration requests.

    Args:
        token: The initial access token issued by the authorization server.
        transport: The wrapped transport. Defaults to a TLS 1.2+ HTTP transport.
        registration_endpoint: Restrict injection to this exact endpoint.
        log: Optional injected logger.

    Raises (per request):
        SecurityPolicyViolationError: If the registration request is plain HTTP, or
            already carries an Authorization header.
    """

    def __init__(
        self,
        token: SecretStr | str,
        transport: httpx.AsyncBaseTransport | None = None,
        *,
        registration_endpoint: str | None = None,
        log: LoggerProtocol | None = None,
    ) -> None:
        self._token = token if isinstance(token, SecretStr) else SecretStr(token)
        self._transport = transport or default_transport()
        self.registration_endpoint = registration_endpoint
        self._log = get_logger(log)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        token = self._token.get_secret_value()
        if not token or not is_registration_request(request, self.registration_endpoint):
            return await self._transport.handle_async_request(request)

        if request.url.scheme != SCHEME_HTTPS:
            self._log.error(f"Registration token can only be sent over HTTPS, got {request.url.scheme}")
            raise SecurityPolicyViolationError(
                f"registration token can only be sent over HTTPS, refusing to send over {request.url.scheme}"
            )

        if "Authorization" in request.headers:
            self._log.warning("Authorization header already present on registration request, refusing to overwrite")
            raise SecurityPolicyViolationError(
                "authorization header already present, refusing to overwrite (potential credential conflict)"
            )

        headers = request.headers.copy()
        headers["Authorization"] = f"Bearer {token}"
        outgoing = httpx.Request(
            request.method,
            request.url,
            headers=headers,
            stream=request.stream,
            extensions=request.extensions,
        )

        self._log.info(f"Injecting registration access token for DCR request to {request.url.path}")
        return await self._transport.handle_async_request(outgoing)

    async def aclose(self) -> None:
        await self._transport.aclose()


def build_oauth_transport(
    config: "OAuthConfig",
    plan: "AuthorizationPlan",
    base: httpx.AsyncBaseTransport | None = None,
    log: LoggerProtocol | None = None,
) -> httpx.AsyncBaseTransport:
    """
    Composes the middleware for one authorization server.

    The registration token is bound to the AS's `registration_endpoint` when it is known.
    The resource indicator is applied unless disabled or no resource URI was derived.
    """
    transport = base or default_transport()

    if config.registration_token is not None:
        transport = RegistrationTokenTransport(
            config.registration_token,
            transport,
            registration_endpoint=plan.registration_endpoint,
            log=log,
        )

    if plan.resource_uri and not config.skip_resource_param:
        transport = ResourceIndicatorTransport(
            plan.resource_uri,
            transport,
            registration_endpoint=plan.registration_endpoint,
            log=log,
        )

    return transport
