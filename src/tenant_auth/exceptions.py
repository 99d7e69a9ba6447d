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
Custom exceptions for the tenant-auth package.

Every failure surfaced by the package is an `AuthError` carrying one of a closed
set of kinds. Messages and context never contain client secrets or access tokens.
"""

from enum import StrEnum
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_FIELDS = frozenset(
    {
        "client_secret",
        "access_token",
        "refresh_token",
        "bearer_token",
        "api_key",
        "private_key",
        "password",
        "secret",
        "token",
    }
)


class AuthErrorKind(StrEnum):
    CONFIGURATION = "configuration"
    CONFIG_VALIDATION = "config_validation"
    CREDENTIALS = "credentials"
    DISCOVERY = "discovery"
    NETWORK = "network"
    SERVER = "server"
    TOKEN_EXPIRED = "token_expired"


_LABELS = {
    AuthErrorKind.CONFIGURATION: "Configuration Error",
    AuthErrorKind.CONFIG_VALIDATION: "Configuration Error",
    AuthErrorKind.CREDENTIALS: "Credentials Error",
    AuthErrorKind.DISCOVERY: "Discovery Error",
    AuthErrorKind.NETWORK: "Network Error",
    AuthErrorKind.SERVER: "Server Error",
    AuthErrorKind.TOKEN_EXPIRED: "Token Expired Error",
}

_ERROR_CODES = {
    AuthErrorKind.CONFIGURATION: "invalid_request",
    AuthErrorKind.CONFIG_VALIDATION: "invalid_request",
    AuthErrorKind.CREDENTIALS: "invalid_client",
    AuthErrorKind.DISCOVERY: "discovery_failed",
    AuthErrorKind.NETWORK: "network_error",
    AuthErrorKind.SERVER: "server_error",
    AuthErrorKind.TOKEN_EXPIRED: "token_expired",
}

_GUIDANCE = {
    AuthErrorKind.CONFIGURATION: (
        "Review the client configuration. Ensure all required parameters are set and URLs are valid HTTPS endpoints."
    ),
    AuthErrorKind.CONFIG_VALIDATION: "Correct the reported configuration field and construct the client again.",
    AuthErrorKind.CREDENTIALS: (
        "Verify client_id and client_secret. Check that the OAuth2 client is enabled for the requested scopes."
    ),
    AuthErrorKind.DISCOVERY: (
        "Check that the discovery endpoint is reachable and serves a valid document, or configure token_url."
    ),
    AuthErrorKind.NETWORK: "Check network connectivity, DNS resolution and firewall rules for the auth endpoints.",
    AuthErrorKind.SERVER: "The authorization server is unavailable or throttling requests. Try again later.",
    AuthErrorKind.TOKEN_EXPIRED: "The token could not be refreshed after the server rejected it. Re-check credentials.",
}


def is_sensitive_field(field: str) -> bool:
    """Returns True if the named configuration field holds secret material."""
    return field.lower() in SENSITIVE_FIELDS


class AuthError(Exception):
    """
    Base exception for all tenant-auth errors.

    Attributes:
        kind (AuthErrorKind): Classification used for retry decisions and remediation.
        message (str): Human-readable description. Never contains secrets.
        cause (BaseException | None): The wrapped lower-level error, if any.
        retryable (bool): Whether the failed operation may be retried.
        retry_after (float | None): Server-requested delay in seconds before retrying.
        context (dict[str, Any]): Extra non-sensitive debugging information.
    """

    kind: AuthErrorKind = AuthErrorKind.CONFIGURATION
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        *,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.cause = cause
        self.retryable = self.default_retryable if retryable is None else retryable
        self.retry_after = retry_after
        self.context: dict[str, Any] = dict(context or {})
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        label = _LABELS[self.kind]
        if self.cause is not None:
            return f"{label}: {self.message} (caused by: {self.cause})"
        return f"{label}: {self.message}"

    @property
    def error_code(self) -> str:
        return _ERROR_CODES[self.kind]

    @property
    def troubleshooting_guidance(self) -> str:
        return _GUIDANCE[self.kind]

    def with_context(self, key: str, value: Any) -> "AuthError":
        """Attaches a context entry, redacting values of sensitive keys."""
        self.context[key] = REDACTED if is_sensitive_field(key) else value
        return self


class ConfigurationError(AuthError):
    """Raised when the client configuration is missing or unusable. Never retried."""

    kind = AuthErrorKind.CONFIGURATION


class ConfigValidationError(ConfigurationError):
    """
    Raised when a specific configuration field violates a constraint.

    Attributes:
        field (str): The offending configuration field.
        constraint (str): The rule that was violated.
        guidance (str): How to correct the value.
        value (Any): The offending value, redacted for sensitive fields.
        errors (list[Any]): Every field error found during validation.
    """

    kind = AuthErrorKind.CONFIG_VALIDATION

    def __init__(
        self,
        field: str,
        constraint: str,
        guidance: str = "",
        value: Any = None,
        errors: list[Any] | None = None,
    ) -> None:
        self.field = field
        self.constraint = constraint
        self.guidance = guidance
        self.value = REDACTED if is_sensitive_field(field) else value
        self.errors = list(errors or [])
        message = f"invalid {field}: {constraint}"
        if guidance:
            message = f"{message}. Suggestion: {guidance}"
        super().__init__(message, context={"field": field})


class CredentialsError(AuthError):
    """Raised when the server rejects the client or returns an unusable token. Never retried."""

    kind = AuthErrorKind.CREDENTIALS


class DiscoveryError(AuthError):
    """Raised when the discovery endpoint is unreachable or serves an invalid document."""

    kind = AuthErrorKind.DISCOVERY


class OversizedResponseError(DiscoveryError):
    """Raised when an HTTP response is too large."""


class NetworkError(AuthError):
    """
    Raised for timeouts, connection failures, and deadlines that expire while waiting.

    `cancelled` is True when the caller's own deadline ended the operation, as opposed
    to a transport-level timeout reported by the HTTP stack.
    """

    kind = AuthErrorKind.NETWORK
    default_retryable = True

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        *,
        cancelled: bool = False,
        **kwargs: Any,
    ) -> None:
        self.cancelled = cancelled
        if cancelled:
            kwargs.setdefault("retryable", False)
        super().__init__(message, cause, **kwargs)


class ServerError(AuthError):
    """Raised for 5xx, throttling and temporarily-unavailable responses from the auth server."""

    kind = AuthErrorKind.SERVER
    default_retryable = True


class TokenExpiredError(AuthError):
    """Raised when a rejected token could not be refreshed."""

    kind = AuthErrorKind.TOKEN_EXPIRED
    default_retryable = True
