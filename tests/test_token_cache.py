# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import threading

from pydantic import SecretStr

from tenant_auth.models import Token
from tenant_auth.token_cache import ReadWriteLock, TokenCache, compute_integrity_tag

from .conftest import FakeClock


def _token(clock: FakeClock, value: str = "tok-1", ttl: float | None = 3600) -> Token:
    expiry = None if ttl is None else clock() + ttl
    return Token(access_token=SecretStr(value), expiry=expiry)


def test_empty_cache_returns_none(clock: FakeClock) -> None:
    cache = TokenCache(clock)
    assert cache.get_valid() is None
    assert not cache.stats().has_token


def test_set_and_get_returns_copy(clock: FakeClock) -> None:
    cache = TokenCache(clock)
    token = _token(clock)
    cache.set(token)

    cached = cache.get_valid()
    assert cached is not None
    assert cached is not token
    assert cached.access_token.get_secret_value() == "tok-1"

    # Mutating the returned copy must not affect the cache.
    cached.access_token = SecretStr("changed")
    again = cache.get_valid()
    assert again is not None
    assert again.access_token.get_secret_value() == "tok-1"


def test_token_within_leeway_is_not_returned(clock: FakeClock) -> None:
    cache = TokenCache(clock)
    cache.set(_token(clock, ttl=60))
    clock.advance(49)
    assert cache.get_valid() is not None
    clock.advance(1)
    assert cache.get_valid() is None


def test_token_without_expiry_stays_valid(clock: FakeClock) -> None:
    cache = TokenCache(clock)
    cache.set(_token(clock, ttl=None))
    clock.advance(10**9)
    assert cache.get_valid() is not None


def test_corrupted_entry_is_rejected(clock: FakeClock) -> None:
    cache = TokenCache(clock)
    cache.set(_token(clock))
    assert cache._token is not None
    cache._token = cache._token.model_copy(update={"access_token": SecretStr("forged")})
    assert cache.get_valid() is None


def test_integrity_tag_covers_type_and_expiry(clock: FakeClock) -> None:
    token = _token(clock)
    tag = compute_integrity_tag(token)
    assert compute_integrity_tag(token.model_copy(update={"token_type": "MAC"})) != tag
    assert compute_integrity_tag(token.model_copy(update={"expiry": (token.expiry or 0) + 1})) != tag
    assert compute_integrity_tag(token.model_copy()) == tag


def test_stats_and_touch(clock: FakeClock) -> None:
    cache = TokenCache(clock)
    cache.set(_token(clock, "tok-1"))
    created = clock()
    clock.advance(5)
    cache.touch()
    cache.set(_token(clock, "tok-2"))

    stats = cache.stats()
    assert stats.has_token
    assert stats.refresh_count == 2
    assert stats.created_at == created + 5
    assert stats.last_used_at == created + 5


def test_clear(clock: FakeClock) -> None:
    cache = TokenCache(clock)
    cache.set(_token(clock))
    cache.clear()
    assert cache.get_valid() is None
    assert not cache.stats().has_token
    assert cache.stats().refresh_count == 1


def test_concurrent_readers_and_writers_see_complete_tokens(clock: FakeClock) -> None:
    cache = TokenCache(clock)
    cache.set(_token(clock, "tok-0"))
    seen: list[str] = []
    failures: list[str] = []

    def reader() -> None:
        for _ in range(200):
            token = cache.get_valid()
            if token is None:
                failures.append("missing")
            else:
                seen.append(token.access_token.get_secret_value())

    def writer(n: int) -> None:
        for i in range(50):
            cache.set(_token(clock, f"tok-{n}-{i}"))

    threads = [threading.Thread(target=reader) for _ in range(4)]
    threads += [threading.Thread(target=writer, args=(n,)) for n in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert failures == []
    assert all(value.startswith("tok-") for value in seen)
    assert cache.stats().refresh_count == 101


def test_read_write_lock_excludes_writer_during_read() -> None:
    lock = ReadWriteLock()
    events: list[str] = []

    with lock.read():
        writer = threading.Thread(target=lambda: _write(lock, events))
        writer.start()
        writer.join(timeout=0.05)
        events.append("read-done")
    writer.join()

    assert events == ["read-done", "write"]


def _write(lock: ReadWriteLock, events: list[str]) -> None:
    with lock.write():
        events.append("write")
