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
Tests for the authenticated and retrying transports.
"""

import json
from collections.abc import Callable

import httpx
import pytest
from pydantic import SecretStr

from tenant_auth.exceptions import CredentialsError, TokenExpiredError
from tenant_auth.models import Token
from tenant_auth.transport import AuthenticatedTransport, BorrowedTransport, RetryTransport

API_URL = "https://iam-api.retailsvc.com"


def _token(value: str) -> Token:
    return Token(access_token=SecretStr(value))


class ClosingMockTransport(httpx.MockTransport):
    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        super().__init__(handler)
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


class FakeRefresher:
    def __init__(self, tokens: list[str] | None = None, error: Exception | None = None) -> None:
        self.tokens = list(tokens or [])
        self.error = error
        self.calls = 0

    async def refresh_token(self, timeout: float | None = None) -> Token:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return _token(self.tokens.pop(0))


class ApiServer:
    """Answers 401 until the expected token is presented."""

    def __init__(self, accepted: str, challenge: str | None = None) -> None:
        self.accepted = accepted
        self.challenge = challenge
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("Authorization") == f"Bearer {self.accepted}":
            return httpx.Response(200, json={"ok": True})
        headers = {"WWW-Authenticate": self.challenge} if self.challenge is not None else {}
        return httpx.Response(401, headers=headers)


@pytest.mark.asyncio
async def test_authenticated_transport_injects_headers() -> None:
    server = ApiServer(accepted="tok-1")
    transport = AuthenticatedTransport(
        base=httpx.MockTransport(server),
        token=_token("tok-1"),
        tenant_id="acme",
        headers={"X-Request-Source": "batch"},
    )
    async with httpx.AsyncClient(transport=transport, base_url=API_URL) as client:
        request = client.build_request("GET", "/v1/roles", headers={"Accept": "application/json"})
        response = await client.send(request)

    assert response.status_code == 200
    sent = server.requests[0]
    assert sent.headers["Authorization"] == "Bearer tok-1"
    assert sent.headers["X-Tenant-ID"] == "acme"
    assert sent.headers["X-Request-Source"] == "batch"
    assert sent.headers["Accept"] == "application/json"
    # The caller's request is left untouched.
    assert "Authorization" not in request.headers
    assert "X-Tenant-ID" not in request.headers


@pytest.mark.asyncio
@pytest.mark.parametrize(("token_type", "expected"), [("bearer", "Bearer tok-1"), ("MAC", "MAC tok-1")])
async def test_authorization_header_follows_token_type(token_type: str, expected: str) -> None:
    server = ApiServer(accepted="tok-1")
    token = Token(access_token=SecretStr("tok-1"), token_type=token_type)
    transport = AuthenticatedTransport(base=httpx.MockTransport(server), token=token)
    async with httpx.AsyncClient(transport=transport, base_url=API_URL) as client:
        await client.get("/v1/roles")

    assert server.requests[0].headers["Authorization"] == expected


@pytest.mark.asyncio
async def test_authenticated_transport_without_token() -> None:
    server = ApiServer(accepted="tok-1")
    transport = AuthenticatedTransport(base=httpx.MockTransport(server), tenant_id="acme")
    async with httpx.AsyncClient(transport=transport, base_url=API_URL) as client:
        response = await client.get("/v1/roles")

    assert response.status_code == 401
    assert "Authorization" not in server.requests[0].headers


@pytest.mark.asyncio
async def test_authenticated_transport_forwards_body() -> None:
    bodies: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content)
        return httpx.Response(201)

    transport = AuthenticatedTransport(base=httpx.MockTransport(handler), token=_token("tok-1"))
    async with httpx.AsyncClient(transport=transport, base_url=API_URL) as client:
        await client.post("/v1/groups", json={"name": "ops"})

    assert [json.loads(body) for body in bodies] == [{"name": "ops"}]


@pytest.mark.asyncio
async def test_injected_base_transport_is_not_closed() -> None:
    base = ClosingMockTransport(lambda _: httpx.Response(200))
    async with httpx.AsyncClient(transport=AuthenticatedTransport(base=base)) as client:
        await client.get(API_URL)
    assert not base.closed


def test_default_base_transport_is_owned() -> None:
    transport = AuthenticatedTransport()
    assert isinstance(transport.base, httpx.AsyncHTTPTransport)
    assert transport._owns_base


@pytest.mark.asyncio
async def test_borrowed_transport_does_not_close_base() -> None:
    base = ClosingMockTransport(lambda _: httpx.Response(204))
    async with httpx.AsyncClient(transport=BorrowedTransport(base)) as client:
        assert (await client.get(API_URL)).status_code == 204
    assert not base.closed


@pytest.mark.asyncio
async def test_retry_transport_refreshes_on_401() -> None:
    server = ApiServer(accepted="tok-2")
    refresher = FakeRefresher(["tok-2"])
    transport = RetryTransport(
        base=httpx.MockTransport(server),
        auth_client=refresher,
        token=_token("tok-1"),
        tenant_id="acme",
        max_retries=3,
    )
    async with httpx.AsyncClient(transport=transport, base_url=API_URL) as client:
        response = await client.post("/v1/groups", json={"name": "ops"})

    assert response.status_code == 200
    assert refresher.calls == 1
    assert len(server.requests) == 2
    assert [r.headers["Authorization"] for r in server.requests] == ["Bearer tok-1", "Bearer tok-2"]
    # The body is replayed on the retry.
    assert json.loads(server.requests[1].content) == {"name": "ops"}
    assert transport.token is not None
    assert transport.token.access_token.get_secret_value() == "tok-2"


@pytest.mark.asyncio
@pytest.mark.parametrize("challenge", ['Bearer error="invalid_token"', 'Bearer error="TOKEN_EXPIRED"'])
async def test_retry_transport_expiry_challenges(challenge: str) -> None:
    server = ApiServer(accepted="tok-2", challenge=challenge)
    refresher = FakeRefresher(["tok-2"])
    transport = RetryTransport(base=httpx.MockTransport(server), auth_client=refresher, token=_token("tok-1"))
    async with httpx.AsyncClient(transport=transport, base_url=API_URL) as client:
        response = await client.get("/v1/roles")

    assert response.status_code == 200
    assert refresher.calls == 1


@pytest.mark.asyncio
async def test_retry_transport_ignores_other_challenges() -> None:
    server = ApiServer(accepted="tok-2", challenge='Bearer error="insufficient_scope"')
    refresher = FakeRefresher(["tok-2"])
    transport = RetryTransport(base=httpx.MockTransport(server), auth_client=refresher, token=_token("tok-1"))
    async with httpx.AsyncClient(transport=transport, base_url=API_URL) as client:
        response = await client.get("/v1/roles")

    assert response.status_code == 401
    assert refresher.calls == 0
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_retry_transport_returns_final_401() -> None:
    server = ApiServer(accepted="never")
    refresher = FakeRefresher(["tok-2", "tok-3"])
    transport = RetryTransport(
        base=httpx.MockTransport(server), auth_client=refresher, token=_token("tok-1"), max_retries=2
    )
    async with httpx.AsyncClient(transport=transport, base_url=API_URL) as client:
        response = await client.get("/v1/roles")

    assert response.status_code == 401
    assert refresher.calls == 2
    assert len(server.requests) == 3


@pytest.mark.asyncio
async def test_retry_transport_zero_retries() -> None:
    server = ApiServer(accepted="tok-2")
    refresher = FakeRefresher(["tok-2"])
    transport = RetryTransport(
        base=httpx.MockTransport(server), auth_client=refresher, token=_token("tok-1"), max_retries=0
    )
    async with httpx.AsyncClient(transport=transport, base_url=API_URL) as client:
        response = await client.get("/v1/roles")

    assert response.status_code == 401
    assert refresher.calls == 0


@pytest.mark.asyncio
async def test_retry_transport_refresh_failure() -> None:
    server = ApiServer(accepted="tok-2")
    refresher = FakeRefresher(error=CredentialsError("invalid client"))
    transport = RetryTransport(base=httpx.MockTransport(server), auth_client=refresher, token=_token("tok-1"))
    async with httpx.AsyncClient(transport=transport, base_url=API_URL) as client:
        with pytest.raises(TokenExpiredError) as exc_info:
            await client.get("/v1/roles")

    assert isinstance(exc_info.value.__cause__, CredentialsError)


@pytest.mark.asyncio
async def test_retry_transport_passes_non_401_through() -> None:
    refresher = FakeRefresher(["tok-2"])
    transport = RetryTransport(
        base=httpx.MockTransport(lambda _: httpx.Response(403)), auth_client=refresher, token=_token("tok-1")
    )
    async with httpx.AsyncClient(transport=transport, base_url=API_URL) as client:
        assert (await client.get("/v1/roles")).status_code == 403
    assert refresher.calls == 0
