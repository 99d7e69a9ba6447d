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
Endpoint resolution from tenant identifier and environment.
"""

from typing import Protocol
from urllib.parse import urlparse

from tenant_auth.exceptions import ConfigurationError
from tenant_auth.models import EndpointInfo, EndpointMapping

PRODUCTION = "production"

ENVIRONMENT_ENDPOINTS: dict[str, EndpointMapping] = {
    PRODUCTION: EndpointMapping(
        auth_base_url="https://auth.retailsvc.com",
        api_base_url="https://iam-api.retailsvc.com",
    ),
    "test": EndpointMapping(
        auth_base_url="https://auth.retailsvc-test.com",
        api_base_url="https://iam-api.retailsvc-test.com",
    ),
    "dev": EndpointMapping(
        auth_base_url="https://auth.retailsvc-dev.com",
        api_base_url="https://iam-api.retailsvc-dev.com",
    ),
    "staging": EndpointMapping(
        auth_base_url="https://auth.retailsvc-staging.com",
        api_base_url="https://iam-api.retailsvc-staging.com",
    ),
}
ENVIRONMENT_ENDPOINTS["development"] = ENVIRONMENT_ENDPOINTS["dev"]

KNOWN_ENVIRONMENTS = tuple(ENVIRONMENT_ENDPOINTS)

TEST_ENVIRONMENTS = frozenset({"test", "dev", "development", "staging"})

# Ordered: the first class with a matching marker wins.
TENANT_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("test", ("test", "tst")),
    ("dev", ("dev", "development")),
    ("staging", ("staging", "stage", "stg")),
)


def infer_environment(tenant_id: str) -> str:
    """
    Infers the environment from naming conventions in the tenant identifier.

    Matching is a case-insensitive substring test. Tenants without a marker
    resolve to production.
    """
    tenant = tenant_id.lower()
    for environment, markers in TENANT_MARKERS:
        if any(marker in tenant for marker in markers):
            return environment
    return PRODUCTION


def is_https_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme == "https" and bool(parsed.netloc)


class EndpointResolver(Protocol):
    """Maps a tenant (and optional environment) to auth and API base URLs."""

    def resolve(self, tenant_id: str, environment: str | None = None) -> EndpointMapping: ...

    def effective_environment(self, tenant_id: str, environment: str | None = None) -> str: ...

    def is_test_environment(self, tenant_id: str, environment: str | None = None) -> bool: ...

    def validate_endpoints(self, tenant_id: str, environment: str | None = None) -> None: ...

    def endpoint_info(self, tenant_id: str, environment: str | None = None) -> EndpointInfo: ...


class RuleBasedEndpointResolver:
    """
    Resolves endpoints from a fixed environment table.

    An explicit environment is lower-cased and used as-is; otherwise the
    environment is inferred from the tenant identifier.
    """

    def __init__(self, endpoints: dict[str, EndpointMapping] | None = None) -> None:
        self.endpoints = endpoints or ENVIRONMENT_ENDPOINTS

    def effective_environment(self, tenant_id: str, environment: str | None = None) -> str:
        if environment:
            return environment.lower()
        return infer_environment(tenant_id)

    def resolve(self, tenant_id: str, environment: str | None = None) -> EndpointMapping:
        """
        Args:
            tenant_id: The tenant identifier.
            environment: Explicit environment name, overriding inference.

        Returns:
            EndpointMapping: The auth and API base URLs.

        Raises:
            ConfigurationError: If the effective environment is not recognised.
        """
        effective = self.effective_environment(tenant_id, environment)
        mapping = self.endpoints.get(effective)
        if mapping is None:
            raise ConfigurationError(f"unsupported environment: {effective}").with_context("tenant_id", tenant_id)
        return mapping

    def is_test_environment(self, tenant_id: str, environment: str | None = None) -> bool:
        return self.effective_environment(tenant_id, environment) in TEST_ENVIRONMENTS

    def validate_endpoints(self, tenant_id: str, environment: str | None = None) -> None:
        mapping = self.resolve(tenant_id, environment)
        for name, url in (("auth", mapping.default_token_url), ("API", mapping.api_base_url)):
            if not is_https_url(url):
                raise ConfigurationError(f"resolved {name} URL is not a valid HTTPS URL: {url}")

    def endpoint_info(self, tenant_id: str, environment: str | None = None) -> EndpointInfo:
        mapping = self.resolve(tenant_id, environment)
        return EndpointInfo(
            tenant_id=tenant_id,
            environment=environment,
            effective_environment=self.effective_environment(tenant_id, environment),
            auth_url=mapping.default_token_url,
            api_url=mapping.api_base_url,
            is_test_environment=self.is_test_environment(tenant_id, environment),
        )


class OverrideEndpointResolver:
    """
    Prefers explicitly configured URLs and falls back to another resolver for the rest.

    Overrides must be HTTPS. In mock mode plain HTTP is accepted as well, for
    local mock servers.
    """

    def __init__(
        self,
        fallback: EndpointResolver,
        auth_url: str | None = None,
        api_url: str | None = None,
        mock_mode: bool = False,
    ) -> None:
        self.fallback = fallback
        self.auth_url = auth_url
        self.api_url = api_url
        self.mock_mode = mock_mode

    def _check_override(self, name: str, url: str) -> str:
        parsed = urlparse(url)
        allowed = ("https", "http") if self.mock_mode else ("https",)
        if parsed.scheme not in allowed or not parsed.netloc:
            kind = "HTTP(S)" if self.mock_mode else "HTTPS"
            raise ConfigurationError(f"custom {name} URL is not a valid {kind} URL: {url}")
        return url.rstrip("/")

    def effective_environment(self, tenant_id: str, environment: str | None = None) -> str:
        return self.fallback.effective_environment(tenant_id, environment)

    def resolve(self, tenant_id: str, environment: str | None = None) -> EndpointMapping:
        if self.auth_url and self.api_url:
            return EndpointMapping(
                auth_base_url=self._check_override("auth", self.auth_url),
                api_base_url=self._check_override("API", self.api_url),
            )

        base = self.fallback.resolve(tenant_id, environment)
        return EndpointMapping(
            auth_base_url=self._check_override("auth", self.auth_url) if self.auth_url else base.auth_base_url,
            api_base_url=self._check_override("API", self.api_url) if self.api_url else base.api_base_url,
        )

    def is_test_environment(self, tenant_id: str, environment: str | None = None) -> bool:
        return self.fallback.is_test_environment(tenant_id, environment)

    def validate_endpoints(self, tenant_id: str, environment: str | None = None) -> None:
        self.resolve(tenant_id, environment)
        if not self.auth_url or not self.api_url:
            self.fallback.validate_endpoints(tenant_id, environment)

    def endpoint_info(self, tenant_id: str, environment: str | None = None) -> EndpointInfo:
        mapping = self.resolve(tenant_id, environment)
        return EndpointInfo(
            tenant_id=tenant_id,
            environment=environment,
            effective_environment=self.effective_environment(tenant_id, environment),
            auth_url=mapping.default_token_url,
            api_url=mapping.api_base_url,
            is_test_environment=self.is_test_environment(tenant_id, environment),
        )
