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
Field-level validation of AuthConfig with corrective guidance.
"""

import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

from tenant_auth.config import AuthConfig
from tenant_auth.exceptions import REDACTED, ConfigValidationError, is_sensitive_field
from tenant_auth.resolver import KNOWN_ENVIRONMENTS
from tenant_auth.utils.logger import logger

MANAGED_HEADERS = frozenset({"authorization", "content-type", "user-agent", "host", "content-length"})
WEAK_SECRET_PATTERNS = ("password", "secret", "123456", "qwerty", "admin", "test", "demo")


@dataclass(frozen=True)
class ValidationRules:
    tenant_id_pattern: re.Pattern[str] = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9\-]{1,62}[a-zA-Z0-9]$")
    client_id_pattern: re.Pattern[str] = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9\-_]{6,126}[a-zA-Z0-9]$")
    min_client_secret_len: int = 8
    max_client_secret_len: int = 256
    recommended_min_timeout: float = 5.0
    recommended_max_timeout: float = 300.0
    recommended_max_retries: int = 10
    standard_scopes: tuple[str, ...] = (
        "iam:read",
        "iam:write",
        "iam:admin",
        "roles:read",
        "roles:write",
        "groups:read",
        "groups:write",
        "bindings:read",
        "bindings:write",
    )


@dataclass(frozen=True)
class ConfigFieldError:
    field: str
    rule: str
    message: str
    suggestion: str = ""
    value: str = ""


@dataclass(frozen=True)
class ConfigFieldWarning:
    field: str
    message: str
    suggestion: str = ""


@dataclass
class ConfigValidationResult:
    errors: list[ConfigFieldError] = field(default_factory=list)
    warnings: list[ConfigFieldWarning] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, field_name: str, rule: str, message: str, suggestion: str = "", value: str = "") -> None:
        if value and is_sensitive_field(field_name):
            value = REDACTED
        self.errors.append(ConfigFieldError(field_name, rule, message, suggestion, value))

    def warn(self, field_name: str, message: str, suggestion: str = "") -> None:
        self.warnings.append(ConfigFieldWarning(field_name, message, suggestion))

    def raise_for_errors(self) -> None:
        """
        Raises:
            ConfigValidationError: For the first error, carrying all of them.
        """
        if not self.errors:
            return
        first = self.errors[0]
        raise ConfigValidationError(
            first.field,
            first.message,
            first.suggestion,
            value=first.value or None,
            errors=self.errors,
        )


def sanitize_value(value: str) -> str:
    """
    Masks a value for safe display, keeping two characters at each end of longer values.
    """
    if len(value) <= 8:
        return "*" * len(value)
    return value[:2] + "*" * (len(value) - 4) + value[-2:]


def _has_sequential_chars(s: str) -> bool:
    return any(ord(s[i + 1]) == ord(s[i]) + 1 and ord(s[i + 2]) == ord(s[i]) + 2 for i in range(len(s) - 2))


def _has_repeated_chars(s: str, threshold: int) -> bool:
    counts: dict[str, int] = {}
    for char in s:
        counts[char] = counts.get(char, 0) + 1
        if counts[char] >= threshold:
            return True
    return False


def is_weak_secret(secret: str) -> bool:
    lowered = secret.lower()
    if any(pattern in lowered for pattern in WEAK_SECRET_PATTERNS):
        return True
    return _has_sequential_chars(secret) or _has_repeated_chars(secret, 4)


def _validate_url(url: str, field_name: str, mock_mode: bool, result: ConfigValidationResult) -> None:
    parsed = urlparse(url)
    if not parsed.scheme:
        result.error(
            field_name, "url_scheme", "URL must include a scheme (e.g., https://)", "Add https:// prefix to the URL", url
        )
        return
    if not parsed.netloc:
        result.error(field_name, "url_host", "URL must include a host", "Provide a valid hostname or IP address", url)
        return
    allowed = ("https", "http") if mock_mode else ("https",)
    if parsed.scheme not in allowed:
        result.error(
            field_name,
            "url_scheme_whitelist",
            f"URL scheme must be one of: {', '.join(allowed)}",
            "Use HTTPS for secure communication, or enable mock_mode for local mock servers",
            url,
        )


def validate_auth_config(config: AuthConfig, rules: ValidationRules | None = None) -> ConfigValidationResult:
    """
    Validates every field of the configuration and returns all findings.

    Args:
        config: The configuration to check.
        rules: Validation rules. Defaults to `ValidationRules()`.

    Returns:
        ConfigValidationResult: Errors (blocking) and warnings (advisory).
    """
    rules = rules or ValidationRules()
    result = ConfigValidationResult()

    # tenant_id
    if not config.tenant_id:
        result.error(
            "tenant_id", "required", "Tenant ID is required", "Provide a valid tenant identifier for your organization"
        )
    elif not rules.tenant_id_pattern.match(config.tenant_id):
        result.error(
            "tenant_id",
            "pattern",
            "Tenant ID format is invalid",
            "Use alphanumeric characters with hyphens, 3-64 characters long",
            sanitize_value(config.tenant_id),
        )

    # client_id
    if not config.client_id:
        result.error(
            "client_id", "required", "OAuth2 client ID is required", "Obtain a client ID from your OAuth2 provider"
        )
    elif not rules.client_id_pattern.match(config.client_id):
        result.warn(
            "client_id",
            "Client ID format is unusual",
            "Client IDs are usually alphanumeric with hyphens or underscores, 8-128 characters long",
        )

    # client_secret
    secret = config.client_secret.get_secret_value()
    if not secret:
        result.error(
            "client_secret",
            "required",
            "OAuth2 client secret is required",
            "Obtain a client secret from your OAuth2 provider",
            REDACTED,
        )
    else:
        if len(secret) < rules.min_client_secret_len:
            result.error(
                "client_secret",
                "min_length",
                f"Client secret must be at least {rules.min_client_secret_len} characters long",
                "Use a longer, more secure client secret",
                REDACTED,
            )
        if len(secret) > rules.max_client_secret_len:
            result.error(
                "client_secret",
                "max_length",
                f"Client secret must be no more than {rules.max_client_secret_len} characters long",
                "",
                REDACTED,
            )
        if is_weak_secret(secret):
            result.warn(
                "client_secret",
                "Client secret appears to be weak or follows a common pattern",
                "Use a cryptographically strong, randomly generated client secret",
            )

    # URLs
    if config.base_url:
        _validate_url(config.base_url, "base_url", config.mock_mode, result)
    if config.token_url:
        _validate_url(config.token_url, "token_url", config.mock_mode, result)
    if config.api_url:
        _validate_url(config.api_url, "api_url", config.mock_mode, result)

    # scopes
    for scope in config.scopes:
        if not scope.strip():
            result.error(
                "scopes", "empty_scope", "Empty scope is not allowed", "Remove empty scopes or provide valid scope names"
            )
        elif scope not in rules.standard_scopes:
            result.warn(
                "scopes",
                f"Scope '{scope}' is not in the standard list",
                f"Consider using standard scopes: {', '.join(rules.standard_scopes)}",
            )

    # timeout
    if config.timeout <= 0:
        result.error(
            "timeout",
            "positive",
            "Timeout must be greater than 0",
            "Use a positive timeout in seconds",
            str(config.timeout),
        )
    elif not rules.recommended_min_timeout <= config.timeout <= rules.recommended_max_timeout:
        result.warn(
            "timeout",
            f"Timeout of {config.timeout}s is outside the recommended range",
            f"Use between {rules.recommended_min_timeout:g}s and {rules.recommended_max_timeout:g}s",
        )

    # max_retries
    if config.max_retries < 0:
        result.error(
            "max_retries",
            "min_retries",
            "Maximum retries cannot be negative",
            "Use 0 for no retries or a positive number for retry attempts",
            str(config.max_retries),
        )
    elif config.max_retries > rules.recommended_max_retries:
        result.warn(
            "max_retries",
            f"High retry count ({config.max_retries}) may cause long delays",
            f"Consider using a lower retry count (max recommended: {rules.recommended_max_retries})",
        )

    # custom_headers
    for name, value in config.custom_headers.items():
        if name.lower() in MANAGED_HEADERS:
            result.warn(
                "custom_headers",
                f"Custom header '{name}' may conflict with automatically set headers",
                "Avoid setting headers that are managed by the client",
            )
        if not value:
            result.warn(
                "custom_headers",
                f"Custom header '{name}' has empty value",
                "Remove headers with empty values or provide meaningful values",
            )

    # environment
    if config.environment and config.environment.lower() not in KNOWN_ENVIRONMENTS:
        result.error(
            "environment",
            "one_of",
            f"Environment must be one of: {', '.join(KNOWN_ENVIRONMENTS)}",
            "Leave environment unset to infer it from tenant_id",
            config.environment,
        )

    # cross-field
    if config.disable_discovery and not config.token_url:
        result.error(
            "disable_discovery",
            "logical_consistency",
            "Discovery disabled but no explicit token_url provided",
            "Enable discovery or provide an explicit token_url",
        )
    if config.base_url and config.token_url:
        result.warn(
            "base_url,token_url",
            "Both base_url and token_url are provided, token_url will take precedence",
            "Consider using only one method for clarity",
        )

    for warning in result.warnings:
        logger.warning(f"Configuration warning [{warning.field}] {warning.message}")

    return result
