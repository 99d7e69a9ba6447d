# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
HTTPX transports that attach tenant credentials to outbound API requests.
"""

import json
from typing import Any, Protocol

import httpx

from tenant_auth.exceptions import DiscoveryError, OversizedResponseError, TokenExpiredError
from tenant_auth.models import Token
from tenant_auth.utils.logger import logger

TENANT_HEADER = "X-Tenant-ID"
DEFAULT_MAX_BYTES = 1_000_000


class TokenRefresher(Protocol):
    async def refresh_token(self, timeout: float | None = None) -> Token: ...


class BorrowedTransport(httpx.AsyncBaseTransport):
    """
    Delegates to a transport owned elsewhere. Closing it leaves the wrapped transport open.
    """

    def __init__(self, base: httpx.AsyncBaseTransport) -> None:
        self.base = base

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self.base.handle_async_request(request)

    async def aclose(self) -> None:
        pass


class _HeaderInjectingTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        base: httpx.AsyncBaseTransport | None = None,
        token: Token | None = None,
        tenant_id: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._owns_base = base is None
        self.base = base if base is not None else httpx.AsyncHTTPTransport()
        self.token = token
        self.tenant_id = tenant_id
        self.headers = dict(headers or {})

    def _clone(self, request: httpx.Request, **body: Any) -> httpx.Request:
        """
        Returns a copy of `request` with authentication and custom headers applied.
        The caller's request is never modified.
        """
        headers = request.headers.copy()
        if self.token is not None and self.token.access_token.get_secret_value():
            headers["Authorization"] = self.token.authorization_header()
        if self.tenant_id:
            headers[TENANT_HEADER] = self.tenant_id
        for name, value in self.headers.items():
            headers[name] = value
        return httpx.Request(
            request.method,
            request.url,
            headers=headers,
            extensions=dict(request.extensions),
            **body,
        )

    async def aclose(self) -> None:
        if self._owns_base:
            await self.base.aclose()


class AuthenticatedTransport(_HeaderInjectingTransport):
    """
    Adds the bearer token, tenant header and custom headers to every request.

    When no base transport is given a default `httpx.AsyncHTTPTransport` is
    created and closed together with this wrapper. Injected base transports
    are left open for their owner to close.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self.base.handle_async_request(self._clone(request, stream=request.stream))


class RetryTransport(_HeaderInjectingTransport):
    """
    Like `AuthenticatedTransport`, but refreshes the token and replays the
    request when the server reports it as expired.

    At most `max_retries + 1` attempts are made. A final 401 is returned to the
    caller unchanged.
    """

    def __init__(
        self,
        base: httpx.AsyncBaseTransport | None = None,
        auth_client: TokenRefresher | None = None,
        token: Token | None = None,
        tenant_id: str | None = None,
        headers: dict[str, str] | None = None,
        max_retries: int = 3,
    ) -> None:
        super().__init__(base, token, tenant_id, headers)
        self.auth_client = auth_client
        self.max_retries = max_retries

    @staticmethod
    def is_token_expired(response: httpx.Response) -> bool:
        challenge = response.headers.get("WWW-Authenticate")
        if challenge is None:
            # A bare 401 is treated as expiry.
            return True
        challenge = challenge.lower()
        return "invalid_token" in challenge or "token_expired" in challenge

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        # Buffered so the body can be replayed after a refresh.
        body = await request.aread()

        attempt = 0
        while True:
            response = await self.base.handle_async_request(self._clone(request, content=body))
            if response.status_code != 401 or self.auth_client is None:
                return response
            if attempt >= self.max_retries or not self.is_token_expired(response):
                return response

            await response.aclose()
            logger.debug(f"Access token rejected for {request.url.host}, refreshing (attempt {attempt + 1})")
            try:
                self.token = await self.auth_client.refresh_token()
            except Exception as e:
                raise TokenExpiredError("failed to refresh expired token", e) from e
            attempt += 1


async def safe_json_fetch(
    client: httpx.AsyncClient,
    url: str,
    max_bytes: int = DEFAULT_MAX_BYTES,
    headers: dict[str, str] | None = None,
    timeout: float | None = None,
) -> Any:
    """
    Fetches a JSON document without reading more than `max_bytes` of body.

    Args:
        client: The client to issue the GET with.
        url: The document URL.
        max_bytes: Upper bound on the response body size.
        headers: Extra request headers.
        timeout: Overrides the client timeout for this request.

    Returns:
        Any: The decoded JSON value.

    Raises:
        OversizedResponseError: If the body exceeds `max_bytes`.
        DiscoveryError: For non-2xx status, transport failures and invalid JSON.
    """
    try:
        async with client.stream(
            "GET", url, headers=headers, timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT
        ) as response:
            response.raise_for_status()

            content_length = response.headers.get("Content-Length")
            if content_length is not None and content_length.isdigit() and int(content_length) > max_bytes:
                raise OversizedResponseError(f"Response Content-Length {content_length} exceeds limit")

            chunks = bytearray()
            async for chunk in response.aiter_bytes():
                chunks.extend(chunk)
                if len(chunks) > max_bytes:
                    raise OversizedResponseError(f"Response body exceeds limit of {max_bytes} bytes")
    except httpx.HTTPStatusError as e:
        raise DiscoveryError(f"Failed to fetch {url}: HTTP {e.response.status_code}", e).with_context(
            "status_code", e.response.status_code
        ) from e
    except httpx.HTTPError as e:
        raise DiscoveryError(f"Failed to fetch {url}", e) from e

    try:
        return json.loads(bytes(chunks))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DiscoveryError(f"Invalid JSON response from {url}", e) from e
