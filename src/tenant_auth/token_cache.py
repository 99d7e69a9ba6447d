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
Thread-safe in-memory cache for a single OAuth2 token.
"""

import hashlib
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from pydantic import BaseModel, ConfigDict

from tenant_auth.models import Token


class ReadWriteLock:
    """
    Many concurrent readers or one exclusive writer.

    Writers are preferred: once a writer is waiting, new readers block until it is done.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def compute_integrity_tag(token: Token) -> str:
    """
    SHA-256 over the fields that matter for use of the token.

    Detects accidental corruption of the cached value. Not a security control.
    """
    digest = hashlib.sha256()
    digest.update(token.access_token.get_secret_value().encode())
    digest.update(b"\x00")
    digest.update(token.token_type.encode())
    digest.update(b"\x00")
    digest.update(repr(token.expiry).encode())
    return digest.hexdigest()


class CacheStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    created_at: float | None
    last_used_at: float | None
    refresh_count: int
    has_token: bool


class TokenCache:
    """
    Holds at most one token together with usage metadata.

    Readers always receive either None or a complete copy of the cached token.

    Attributes:
        created_at (float | None): When the current token was stored.
        last_used_at (float | None): When the cached token was last handed out.
        refresh_count (int): How many tokens have been stored over the cache lifetime.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = ReadWriteLock()
        self._token: Token | None = None
        self._tag: str | None = None
        self.created_at: float | None = None
        self.last_used_at: float | None = None
        self.refresh_count = 0

    def get_valid(self) -> Token | None:
        """
        Returns a copy of the cached token, or None if absent, expired or corrupted.
        """
        with self._lock.read():
            token = self._token
            if token is None:
                return None
            if compute_integrity_tag(token) != self._tag:
                return None
            if not token.is_valid(self._clock()):
                return None
            return token.model_copy()

    def set(self, token: Token) -> None:
        with self._lock.write():
            self._token = token.model_copy()
            self._tag = compute_integrity_tag(self._token)
            self.created_at = self._clock()
            self.refresh_count += 1

    def touch(self) -> None:
        with self._lock.write():
            self.last_used_at = self._clock()

    def clear(self) -> None:
        with self._lock.write():
            self._token = None
            self._tag = None

    def stats(self) -> CacheStats:
        with self._lock.read():
            return CacheStats(
                created_at=self.created_at,
                last_used_at=self.last_used_at,
                refresh_count=self.refresh_count,
                has_token=self._token is not None,
            )
