# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qsl

import httpx
import pytest

from tenant_auth.config import AuthConfig

GOOD_SECRET = "Zq8vR2mLw9Kp4tX"
TOKEN_URL = "https://auth.example.com/oauth2/token"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays and advances the fake clock instead of waiting."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        self.clock.advance(delay)


def token_response(access_token: str = "tok-1", expires_in: int | None = 3600, **extra: Any) -> httpx.Response:
    body: dict[str, Any] = {"access_token": access_token, "token_type": "Bearer", **extra}
    if expires_in is not None:
        body["expires_in"] = expires_in
    return httpx.Response(200, json=body)


def form_body(request: httpx.Request) -> dict[str, str]:
    return dict(parse_qsl(request.content.decode()))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def make_config() -> Callable[..., AuthConfig]:
    def _make(**overrides: Any) -> AuthConfig:
        values: dict[str, Any] = {
            "tenant_id": "acme-prod",
            "client_id": "acme-client-01",
            "client_secret": GOOD_SECRET,
            "token_url": TOKEN_URL,
        }
        values.update(overrides)
        return AuthConfig(**values)

    return _make
