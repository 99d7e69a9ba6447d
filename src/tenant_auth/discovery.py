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
OIDC discovery client for locating the token endpoint.
"""

import time
from collections.abc import Callable

import httpx
from opentelemetry import trace
from pydantic import ValidationError

from tenant_auth.exceptions import ConfigurationError, DiscoveryError
from tenant_auth.models import DiscoveryDocument, is_absolute_http_url
from tenant_auth.transport import DEFAULT_MAX_BYTES, safe_json_fetch
from tenant_auth.utils.logger import logger

DISCOVERY_PATH = "/.well-known/openid-configuration"
DEFAULT_CACHE_TTL = 3600.0

tracer = trace.get_tracer(__name__)


def build_discovery_url(base_url: str) -> str:
    return base_url.rstrip("/") + DISCOVERY_PATH


class DiscoveryClient:
    """
    Fetches and caches the authorization server's OIDC discovery document.

    Attributes:
        base_url (str): The authorization server base URL.
        client (httpx.AsyncClient): The async HTTP client to use for requests.
        timeout (float): Per-request timeout in seconds.
        cache_ttl (float): How long a valid document is reused, in seconds.
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient,
        timeout: float = 30.0,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.time,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self.base_url = base_url
        self.client = client
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.max_bytes = max_bytes
        self._clock = clock
        self._cache: dict[str, tuple[DiscoveryDocument, float]] = {}

    async def fetch_discovery(self, base_url: str | None = None) -> DiscoveryDocument:
        """
        Returns the discovery document, from cache when still fresh.

        Args:
            base_url: Overrides the configured base URL for this lookup.

        Returns:
            DiscoveryDocument: A document that passed `validate_metadata`.

        Raises:
            DiscoveryError: If the endpoint is unreachable, answers non-2xx, or serves
                malformed, oversized or invalid metadata.
        """
        url = build_discovery_url(base_url or self.base_url)

        cached = self._cache.get(url)
        if cached is not None and self._clock() < cached[1]:
            return cached[0]

        with tracer.start_as_current_span("fetch_discovery") as span:
            span.set_attribute("discovery.url", url)
            logger.debug(f"Fetching OIDC discovery document from {url}")

            data = await safe_json_fetch(
                self.client,
                url,
                max_bytes=self.max_bytes,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )

            if not isinstance(data, dict):
                raise DiscoveryError(f"invalid discovery response from {url}: expected a JSON object")
            try:
                document = DiscoveryDocument(**data)
                document.validate_metadata()
            except (ValidationError, ValueError) as e:
                raise DiscoveryError(f"invalid discovery response: {e}", e).with_context("url", url) from e

        self._cache[url] = (document, self._clock() + self.cache_ttl)
        logger.info(f"Discovered token endpoint {document.token_endpoint} for issuer {document.issuer}")
        return document

    async def get_token_endpoint(self, fallback_url: str | None = None) -> str:
        """
        Returns the discovered token endpoint, or `fallback_url` if discovery fails.

        Raises:
            ConfigurationError: If discovery fails and `fallback_url` is not a valid URL.
            DiscoveryError: If discovery fails and no fallback was given.
        """
        try:
            document = await self.fetch_discovery()
        except DiscoveryError as e:
            if not fallback_url:
                raise DiscoveryError("discovery failed and no fallback token URL provided", e) from e
            if not is_absolute_http_url(fallback_url):
                raise ConfigurationError(f"fallback token URL is not a valid URL: {fallback_url}", e) from e
            logger.warning(f"OIDC discovery failed, using fallback token URL {fallback_url}: {e}")
            return fallback_url
        return document.token_endpoint

    async def get_supported_scopes(self) -> list[str] | None:
        document = await self.fetch_discovery()
        return document.scopes_supported

    async def validate_scopes(self, requested: list[str]) -> list[str]:
        """
        Reports requested scopes the server does not advertise.

        Advisory only: discovery failures and servers that omit `scopes_supported`
        yield an empty result.

        Returns:
            list[str]: The unsupported scopes, in request order.
        """
        try:
            supported = await self.get_supported_scopes()
        except DiscoveryError as e:
            logger.debug(f"Skipping scope validation: {e}")
            return []
        if not supported:
            return []

        unsupported = [scope for scope in requested if scope not in supported]
        if unsupported:
            logger.warning(f"Scopes not advertised by the authorization server: {', '.join(unsupported)}")
        return unsupported

    def clear_cache(self) -> None:
        self._cache.clear()
