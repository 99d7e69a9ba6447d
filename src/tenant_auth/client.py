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
AuthClient component: tenant-aware OAuth2 client-credentials token acquisition.
"""

import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import anyio
import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from opentelemetry import trace
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from pydantic import SecretStr

from tenant_auth.config import AuthConfig
from tenant_auth.discovery import DiscoveryClient
from tenant_auth.exceptions import AuthError, ConfigurationError, CredentialsError, NetworkError
from tenant_auth.models import EndpointInfo, EndpointMapping, Token
from tenant_auth.resolver import EndpointResolver, OverrideEndpointResolver, RuleBasedEndpointResolver
from tenant_auth.retry import RetryPolicy, classify_token_error, classify_token_response
from tenant_auth.token_cache import CacheStats, TokenCache
from tenant_auth.transport import AuthenticatedTransport, BorrowedTransport, RetryTransport
from tenant_auth.utils.logger import logger
from tenant_auth.validation import validate_auth_config

T = TypeVar("T")

POOL_LIMITS = httpx.Limits(max_connections=100, max_keepalive_connections=10, keepalive_expiry=90.0)

tracer = trace.get_tracer(__name__)


class AuthClient:
    """
    Acquires, caches and refreshes OAuth2 client-credentials tokens for one tenant,
    and builds HTTP clients that attach them to API requests.

    Handles resources via async context manager.

    Attributes:
        config (AuthConfig): The client's own copy of the configuration.
        resolver (EndpointResolver): Maps the tenant to auth and API base URLs.
        retry_policy (RetryPolicy): Backoff policy for token acquisition.
        discovery (DiscoveryClient | None): OIDC discovery client, None when discovery is disabled.
        cache (TokenCache): The token cache.
    """

    def __init__(
        self,
        config: AuthConfig,
        *,
        resolver: EndpointResolver | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = anyio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the AuthClient.

        Args:
            config: The configuration. Validated eagerly.
            resolver: Endpoint resolver. Defaults to rule-based resolution with the
                configured URL overrides applied.
            transport: Base HTTP transport for all traffic. Defaults to a pooled
                `httpx.AsyncHTTPTransport` owned by this client.
            retry_policy: Token acquisition backoff. Defaults to `config.max_retries` retries.
            sleep: Awaitable sleep used between attempts.
            clock: Returns the current time in epoch seconds.

        Raises:
            ConfigValidationError: If a configuration field is invalid.
            ConfigurationError: If the tenant's endpoints cannot be resolved.
        """
        validate_auth_config(config).raise_for_errors()

        self.config = config.model_copy()
        self._sleep = sleep
        self._clock = clock

        self.resolver: EndpointResolver = resolver or OverrideEndpointResolver(
            RuleBasedEndpointResolver(),
            auth_url=config.base_url,
            api_url=config.api_url,
            mock_mode=config.mock_mode,
        )
        self._endpoints = self.resolver.resolve(config.tenant_id, config.environment)
        self.retry_policy = retry_policy or RetryPolicy.for_max_retries(config.max_retries)

        self._owns_transport = transport is None
        self._transport: httpx.AsyncBaseTransport = transport or httpx.AsyncHTTPTransport(limits=POOL_LIMITS)

        self._http = httpx.AsyncClient(transport=BorrowedTransport(self._transport), timeout=config.timeout)
        HTTPXClientInstrumentor().instrument_client(self._http)

        self.discovery: DiscoveryClient | None = None
        if not config.disable_discovery:
            self.discovery = DiscoveryClient(
                config.base_url or self._endpoints.auth_base_url,
                self._http,
                timeout=config.timeout,
                clock=clock,
            )

        self.cache = TokenCache(clock)
        self._oauth: AsyncOAuth2Client | None = None
        self._token_endpoint: str | None = None
        self._lock: anyio.Lock | None = None
        self._closed = False

        logger.info(
            f"Auth client initialized for tenant {config.tenant_id} "
            f"(environment: {self.resolver.effective_environment(config.tenant_id, config.environment)})"
        )

    async def __aenter__(self) -> "AuthClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def endpoints(self) -> EndpointMapping:
        return self._endpoints

    @property
    def token_endpoint(self) -> str | None:
        """The resolved token endpoint, or None before the first acquisition."""
        return self._token_endpoint

    @property
    def is_test_environment(self) -> bool:
        return self.resolver.is_test_environment(self.config.tenant_id, self.config.environment)

    @property
    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    @property
    def closed(self) -> bool:
        return self._closed

    def endpoint_info(self) -> EndpointInfo:
        return self.resolver.endpoint_info(self.config.tenant_id, self.config.environment)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConfigurationError("auth client is closed")

    async def _with_deadline(self, func: Callable[[], Awaitable[T]], timeout: float | None) -> T:
        if timeout is None:
            return await func()
        try:
            with anyio.fail_after(timeout):
                return await func()
        except TimeoutError as e:
            raise NetworkError(
                f"token acquisition did not complete within {timeout}s", e, cancelled=True
            ).with_context("tenant_id", self.config.tenant_id) from e

    async def get_token(self, timeout: float | None = None) -> Token:
        """
        Returns a valid access token, fetching a new one only when the cache holds none.

        Args:
            timeout: Overall deadline in seconds, covering lock waits, requests and backoff.

        Returns:
            Token: A copy of the valid token.

        Raises:
            ConfigurationError: If the client is closed or no token endpoint can be determined.
            DiscoveryError: If the token endpoint cannot be discovered.
            CredentialsError: If the server rejects the client or returns an unusable token.
            NetworkError: On network failures after retries, or when `timeout` expires.
            ServerError: On server failures after retries.
        """
        self._ensure_open()

        # Check 1: No lock
        token = self.cache.get_valid()
        if token is not None:
            self.cache.touch()
            return token

        return await self._with_deadline(lambda: self._acquire(force=False), timeout)

    async def refresh_token(self, timeout: float | None = None) -> Token:
        """
        Discards the cached token and fetches a new one.

        Raises:
            The same errors as `get_token`.
        """
        self._ensure_open()
        self.cache.clear()
        return await self._with_deadline(lambda: self._acquire(force=True), timeout)

    def validate_token(self, token: Token | None) -> bool:
        """Returns True if `token` is present, non-empty and outside the expiry leeway."""
        return token is not None and token.is_valid(self._clock())

    async def _acquire(self, force: bool) -> Token:
        if self._lock is None:
            self._lock = anyio.Lock()

        async with self._lock:
            self._ensure_open()

            # Check 2: Another caller may have populated the cache while we waited
            if not force:
                token = self.cache.get_valid()
                if token is not None:
                    self.cache.touch()
                    return token

            with tracer.start_as_current_span("acquire_token") as span:
                span.set_attribute("tenant_auth.tenant_id", self.config.tenant_id)
                span.set_attribute("tenant_auth.client_id", self.config.client_id)
                endpoint = await self._resolve_token_endpoint()
                span.set_attribute("tenant_auth.token_endpoint", endpoint)
                token = await self._acquire_with_retry(endpoint)

            # close() may have run while the request was in flight
            self._ensure_open()
            self.cache.set(token)
            self.cache.touch()
            logger.info(f"Acquired access token for tenant {self.config.tenant_id} (client {self.config.client_id})")
            return token

    async def _resolve_token_endpoint(self) -> str:
        if self._token_endpoint is not None:
            return self._token_endpoint

        if self.config.token_url:
            endpoint = self.config.token_url
        elif self.discovery is not None:
            endpoint = await self.discovery.get_token_endpoint()
            await self.discovery.validate_scopes(self.config.scopes)
        else:
            raise ConfigurationError("no token endpoint available: set token_url or enable discovery")

        self._token_endpoint = endpoint
        logger.debug(f"Using token endpoint {endpoint} for tenant {self.config.tenant_id}")
        return endpoint

    def _token_source(self) -> AsyncOAuth2Client:
        self._ensure_open()
        if self._oauth is None:
            self._oauth = AsyncOAuth2Client(
                client_id=self.config.client_id,
                client_secret=self.config.client_secret.get_secret_value(),
                token_endpoint_auth_method="client_secret_post",
                scope=self.config.scope_string,
                timeout=self.config.timeout,
                transport=BorrowedTransport(self._transport),
            )
            self._oauth.register_compliance_hook("access_token_response", classify_token_response)
        return self._oauth

    async def _fetch_token(self, endpoint: str) -> Token:
        oauth = self._token_source()
        try:
            data = await oauth.fetch_token(endpoint, grant_type="client_credentials")
            token = Token.from_response(data, self._clock())
        except (AuthlibBaseError, httpx.HTTPError, ValueError) as e:
            raise classify_token_error(e) from e

        if not token.is_valid(self._clock()):
            raise CredentialsError("server returned an invalid token")
        return token

    async def _acquire_with_retry(self, endpoint: str) -> Token:
        attempt = 0
        while True:
            self._ensure_open()
            try:
                return await self._fetch_token(endpoint)
            except AuthError as e:
                if not self.retry_policy.should_retry(e, attempt):
                    logger.error(f"Token acquisition failed for tenant {self.config.tenant_id}: {e}")
                    raise
                delay = self.retry_policy.get_delay(attempt, e)
                logger.warning(
                    f"Token acquisition attempt {attempt + 1}/{self.retry_policy.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                await self._sleep(delay)
                self._ensure_open()
                attempt += 1

    async def http_client(self, timeout: float | None = None) -> httpx.AsyncClient:
        """
        Returns an HTTP client for the tenant's API that sends the current token.

        The returned client borrows this client's connection pool; closing it does
        not affect the AuthClient.

        Args:
            timeout: Deadline for acquiring the token.
        """
        token = await self.get_token(timeout)
        transport = AuthenticatedTransport(
            base=self._transport,
            token=token,
            tenant_id=self.config.tenant_id,
            headers=self.config.custom_headers,
        )
        return httpx.AsyncClient(transport=transport, base_url=self._endpoints.api_base_url, timeout=self.config.timeout)

    async def http_client_with_retry(self, timeout: float | None = None) -> httpx.AsyncClient:
        """
        Like `http_client`, but refreshes the token and replays a request when the
        API rejects the token with 401.
        """
        token = await self.get_token(timeout)
        transport = RetryTransport(
            base=self._transport,
            auth_client=self,
            token=token,
            tenant_id=self.config.tenant_id,
            headers=self.config.custom_headers,
            max_retries=self.config.max_retries,
        )
        return httpx.AsyncClient(transport=transport, base_url=self._endpoints.api_base_url, timeout=self.config.timeout)

    async def close(self) -> None:
        """
        Clears cached credentials and closes HTTP resources. Idempotent.

        After closing, `get_token` and `refresh_token` raise ConfigurationError.
        """
        if self._closed:
            return
        self._closed = True

        self.cache.clear()
        if self.discovery is not None:
            self.discovery.clear_cache()
        self.config = self.config.model_copy(update={"client_secret": SecretStr("")})

        if self._oauth is not None:
            await self._oauth.aclose()
            self._oauth = None
        await self._http.aclose()
        if self._owns_transport:
            await self._transport.aclose()

        logger.debug(f"Auth client closed for tenant {self.config.tenant_id}")
