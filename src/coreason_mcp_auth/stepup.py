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
Step-up authorization for `insufficient_scope` responses (RFC 6750 Section 3.1).

When a protected MCP server answers 403 with `error="insufficient_scope"` and names the
scopes it needs, the request is re-authorized with those scopes and replayed, up to a
bounded number of attempts per host and method.
"""

from collections.abc import Awaitable, Callable

import httpx

from coreason_mcp_auth.challenge import detect_insufficient_scope
from coreason_mcp_auth.exceptions import CoreasonMcpAuthError, MalformedInputError, StepUpError
from coreason_mcp_auth.scopes import merge_scopes
from coreason_mcp_auth.utils.logger import LoggerProtocol, get_logger

DEFAULT_MAX_RETRIES = 2

Reauthorizer = Callable[[list[str]], Awaitable[str | None]]


class ScopeRetryTracker:
    """
    Counts step-up attempts per `host:method`.
    """

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        self.max_retries = max_retries if max_retries > 0 else DEFAULT_MAX_RETRIES
        self._attempts: dict[str, int] = {}

    @staticmethod
    def _key(resource: str, operation: str) -> str:
        return f"{resource}:{operation}"

    def should_retry(self, resource: str, operation: str) -> bool:
        """Consumes one attempt if the budget allows it."""
        key = self._key(resource, operation)
        if self._attempts.get(key, 0) >= self.max_retries:
            return False
        self._attempts[key] = self._attempts.get(key, 0) + 1
        return True

    def reset(self, resource: str, operation: str) -> None:
        self._attempts.pop(self._key(resource, operation), None)

    def attempts(self, resource: str, operation: str) -> int:
        return self._attempts.get(self._key(resource, operation), 0)


class StepUpTransport(httpx.AsyncBaseTransport):
    """
    Re-authorizes and replays requests rejected with `insufficient_scope`.

    Args:
        transport: The wrapped transport.
        reauthorize: Async callback receiving every scope stepped up to so far on the host,
            newly required ones last. It may return a new access token, which is then
            sent as the Bearer token on the replay.
        max_retries: Step-up attempts allowed per host and method.
        enabled: Forward everything unchanged when False.
        log: Optional injected logger.

    Raises (per request):
        StepUpError: If the budget is exhausted, the challenge names no scopes, or the
            re-authorization fails.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        reauthorize: Reauthorizer,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        enabled: bool = True,
        log: LoggerProtocol | None = None,
    ) -> None:
        self._transport = transport
        self._reauthorize = reauthorize
        self.enabled = enabled
        self.tracker = ScopeRetryTracker(max_retries)
        self._log = get_logger(log)
        self._scopes: dict[str, list[str]] = {}

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if not self.enabled:
            return await self._transport.handle_async_request(request)

        # Buffer the body so the request can be replayed
        await request.aread()

        resource = request.url.host
        operation = request.method
        current = request

        while True:
            response = await self._transport.handle_async_request(current)

            try:
                challenge = detect_insufficient_scope(response)
            except MalformedInputError as e:
                self._log.warning(f"Error detecting insufficient_scope: {e}")
                return response

            if challenge is None:
                if 200 <= response.status_code < 300:
                    self.tracker.reset(resource, operation)
                return response

            self._log.warning(f"Insufficient scope detected for {request.method} {request.url.path}")
            if challenge.error_description:
                self._log.info(f"Server message: {challenge.error_description}")

            await response.aclose()

            if not self.tracker.should_retry(resource, operation):
                attempts = self.tracker.attempts(resource, operation)
                self._log.error(
                    f"Max retries ({self.tracker.max_retries}) exceeded for step-up authorization "
                    f"on {request.method} {request.url.path}"
                )
                raise StepUpError(
                    f"max step-up authorization retries ({self.tracker.max_retries}) exceeded for "
                    f"{request.method} {request.url.path} (attempts: {attempts})"
                )

            if not challenge.scopes:
                raise StepUpError("insufficient_scope error without scope parameter")

            self._log.info(
                f"Step-up authorization attempt {self.tracker.attempts(resource, operation)}/"
                f"{self.tracker.max_retries}, required scopes: {challenge.scopes}"
            )

            scopes = merge_scopes(self._scopes.get(resource, []), challenge.scopes)
            self._scopes[resource] = scopes

            try:
                token = await self._reauthorize(list(scopes))
            except CoreasonMcpAuthError as e:
                raise StepUpError(f"step-up re-authorization failed: {e}") from e

            headers = request.headers.copy()
            if token:
                headers["Authorization"] = f"Bearer {token}"
            current = httpx.Request(
                request.method,
                request.url,
                headers=headers,
                stream=request.stream,
                extensions=request.extensions,
            )

    async def aclose(self) -> None:
        await self._transport.aclose()
