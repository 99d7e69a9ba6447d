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
Error classification and retry policy for token acquisition.
"""

import json
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime

import httpx
from authlib.common.errors import AuthlibBaseError

from tenant_auth.exceptions import (
    AuthError,
    AuthErrorKind,
    CredentialsError,
    NetworkError,
    ServerError,
)

DEFAULT_RETRY_AFTER = 60.0

CREDENTIAL_ERRORS: tuple[tuple[str, str], ...] = (
    ("invalid_client", "OAuth2 client authentication failed - check client_id and client_secret"),
    ("unauthorized_client", "OAuth2 client is not authorized for the client_credentials grant"),
    ("invalid_grant", "OAuth2 grant type not supported or invalid"),
    ("invalid_scope", "requested OAuth2 scopes are invalid or not authorized"),
)
SERVER_MARKERS = ("temporarily_unavailable", "server_error")
NETWORK_MARKERS = ("timeout", "timed out", "connection")


def parse_retry_after(value: str | None, clock: Callable[[], float] = time.time) -> float:
    """
    Parses a Retry-After header value into seconds.

    Accepts delta-seconds or an HTTP date. Missing or unparseable values
    fall back to `DEFAULT_RETRY_AFTER`.
    """
    if not value:
        return DEFAULT_RETRY_AFTER
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER
    return max(when.timestamp() - clock(), 0.0)


def classify_oauth_error_text(text: str, cause: BaseException | None = None) -> AuthError:
    """
    Maps OAuth2 error text to the error taxonomy by well-known substrings.

    Unrecognised errors are classified as credential failures.
    """
    lowered = text.lower()
    for marker, message in CREDENTIAL_ERRORS:
        if marker in lowered:
            return CredentialsError(message, cause).with_context("oauth_error", marker)
    if any(marker in lowered for marker in SERVER_MARKERS):
        return ServerError("OAuth2 server temporarily unavailable", cause)
    if any(marker in lowered for marker in NETWORK_MARKERS):
        return NetworkError("network error during OAuth2 token acquisition", cause)
    return CredentialsError("OAuth2 authentication failed", cause)


def _oauth_error_code(response: httpx.Response) -> str:
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return ""
    if isinstance(body, dict):
        return str(body.get("error") or "")
    return ""


def classify_status(response: httpx.Response, cause: BaseException | None = None) -> AuthError:
    """
    Classifies a non-2xx token endpoint response.
    """
    status = response.status_code
    if status == 429:
        return ServerError(
            "OAuth2 server is rate limiting token requests",
            cause,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        ).with_context("status_code", status)
    if status >= 500:
        retry_after = response.headers.get("Retry-After")
        return ServerError(
            f"OAuth2 server returned status {status}",
            cause,
            retry_after=parse_retry_after(retry_after) if retry_after else None,
        ).with_context("status_code", status)

    code = _oauth_error_code(response)
    error = classify_oauth_error_text(code or f"status {status}", cause)
    return error.with_context("status_code", status)


def classify_token_response(response: httpx.Response) -> httpx.Response:
    """
    Authlib `access_token_response` compliance hook.

    Raises a classified AuthError for any non-2xx token endpoint response so
    that the status code drives retry decisions before the body is parsed.
    """
    if response.is_success:
        return response
    raise classify_status(response)


def classify_token_error(exc: BaseException) -> AuthError:
    """
    Maps a raw transport or OAuth2 library error to the error taxonomy.

    Args:
        exc: The exception raised while acquiring a token.

    Returns:
        AuthError: The classified error, wrapping `exc` as its cause.
    """
    if isinstance(exc, AuthError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return NetworkError("timeout during OAuth2 token acquisition", exc)
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response, exc)
    if isinstance(exc, httpx.TransportError):
        return NetworkError("network error during OAuth2 token acquisition", exc)
    if isinstance(exc, AuthlibBaseError):
        return classify_oauth_error_text(f"{exc.error} {exc.description or ''}", exc)
    if isinstance(exc, ValueError):
        return CredentialsError("server returned a malformed token response", exc)
    return classify_oauth_error_text(str(exc), exc)


@dataclass
class RetryPolicy:
    """
    Exponential backoff policy for token acquisition.

    Attributes:
        max_attempts (int): Total attempts, including the first.
        base_delay (float): Delay in seconds before the second attempt.
        max_delay (float): Upper bound for any single delay.
        multiplier (float): Growth factor per attempt.
        jitter (bool): Adds up to ±10% random jitter to each delay.
        retryable_kinds (frozenset[AuthErrorKind]): Error kinds eligible for retry.
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    retryable_kinds: frozenset[AuthErrorKind] = field(
        default_factory=lambda: frozenset(
            {AuthErrorKind.NETWORK, AuthErrorKind.SERVER, AuthErrorKind.TOKEN_EXPIRED}
        )
    )

    @classmethod
    def for_max_retries(cls, max_retries: int, **kwargs: object) -> "RetryPolicy":
        return cls(max_attempts=max_retries + 1, **kwargs)  # type: ignore[arg-type]

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """
        Returns True if another attempt should follow the failed zero-based `attempt`.
        """
        if attempt + 1 >= self.max_attempts:
            return False
        if not isinstance(error, AuthError):
            return False
        return error.kind in self.retryable_kinds and error.retryable

    def get_delay(self, attempt: int, error: BaseException | None = None) -> float:
        """
        Returns the delay in seconds after the failed zero-based `attempt`.

        A server-provided Retry-After takes precedence over the computed backoff.
        """
        if isinstance(error, AuthError) and error.retry_after:
            return error.retry_after

        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)
        if self.jitter:
            delay += delay * 0.1 * random.uniform(-1.0, 1.0)
        return max(delay, 0.0)
