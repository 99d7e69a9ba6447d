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
Data models for the tenant-auth package.
"""

from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, SecretStr

# Tokens this close to expiry are treated as already expired.
EXPIRY_LEEWAY = 10.0

TOKEN_PATH = "/oauth2/token"


class Token(BaseModel):
    """
    An OAuth2 bearer token issued by the client-credentials grant.

    The access token is a `SecretStr` so it never appears in reprs or logs.

    Attributes:
        access_token (SecretStr): The opaque bearer token.
        token_type (str): The token type, normally "Bearer".
        expiry (float | None): Absolute expiry as epoch seconds. None means the server set no expiry.
        scope (str | None): The scopes granted by the server, if reported.
    """

    access_token: SecretStr
    token_type: str = "Bearer"
    expiry: float | None = None
    scope: str | None = None

    def is_valid(self, now: float) -> bool:
        """
        Returns True if the token is non-empty and not within `EXPIRY_LEEWAY` seconds of expiry.
        """
        if not self.access_token.get_secret_value():
            return False
        if self.expiry is None:
            return True
        return now < self.expiry - EXPIRY_LEEWAY

    def authorization_header(self) -> str:
        # Servers treat the scheme case-insensitively but many proxies expect "Bearer".
        scheme = "Bearer" if self.token_type.lower() == "bearer" else self.token_type
        return f"{scheme} {self.access_token.get_secret_value()}"

    @classmethod
    def from_response(cls, data: Mapping[str, Any], now: float) -> "Token":
        """
        Builds a Token from an OAuth2 token endpoint response.

        `expires_in` is interpreted relative to `now`; an absolute `expires_at`
        (as added by Authlib) is used only when `expires_in` is absent.

        Args:
            data: The decoded token response.
            now: The current time in epoch seconds.

        Returns:
            Token: The parsed token. `access_token` may be empty; callers validate it.
        """
        expiry: float | None = None
        expires_in = data.get("expires_in")
        expires_at = data.get("expires_at")
        if expires_in is not None:
            expiry = now + float(expires_in)
        elif expires_at is not None:
            expiry = float(expires_at)

        return cls(
            access_token=SecretStr(str(data.get("access_token") or "")),
            token_type=str(data.get("token_type") or "Bearer"),
            expiry=expiry,
            scope=data.get("scope"),
        )


class EndpointMapping(BaseModel):
    """
    Base URLs for one (tenant, environment) pair.
    """

    model_config = ConfigDict(frozen=True)

    auth_base_url: str
    api_base_url: str

    @property
    def default_token_url(self) -> str:
        return self.auth_base_url.rstrip("/") + TOKEN_PATH


class EndpointInfo(BaseModel):
    """
    Detailed endpoint resolution information, suitable for diagnostics output.

    `auth_url` is the default token URL under the resolved auth base.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    environment: str | None = None
    effective_environment: str
    auth_url: str
    api_url: str
    is_test_environment: bool

    def __str__(self) -> str:
        return (
            f"EndpointInfo(tenant_id={self.tenant_id}, environment={self.environment} -> "
            f"{self.effective_environment}, auth_url={self.auth_url}, api_url={self.api_url}, "
            f"is_test={self.is_test_environment})"
        )


def is_absolute_http_url(value: str) -> bool:
    """Returns True for absolute http(s) URLs with a host."""
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class DiscoveryDocument(BaseModel):
    """
    OIDC Configuration from .well-known/openid-configuration.

    Fields are optional at parse time so that `validate_metadata` can report
    exactly which requirement a document fails.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str = Field(default="", description="The OIDC issuer URL.")
    token_endpoint: str = Field(default="", description="The token endpoint URL.")
    authorization_endpoint: str | None = None
    jwks_uri: str | None = None
    grant_types_supported: list[str] | None = None
    token_endpoint_auth_methods_supported: list[str] | None = None
    response_types_supported: list[str] | None = None
    scopes_supported: list[str] | None = None

    def validate_metadata(self) -> None:
        """
        Checks the document can be used for the client-credentials grant.

        An absent or empty `grant_types_supported` is treated as unknown and accepted,
        since minimal discovery servers omit it.

        Raises:
            ValueError: Describing the first requirement the document fails.
        """
        if not self.issuer:
            raise ValueError("missing required field: issuer")
        if not is_absolute_http_url(self.issuer):
            raise ValueError("invalid issuer URL")
        if not self.token_endpoint:
            raise ValueError("missing required field: token_endpoint")
        if not is_absolute_http_url(self.token_endpoint):
            raise ValueError("invalid token_endpoint URL")
        if self.grant_types_supported and "client_credentials" not in self.grant_types_supported:
            raise ValueError("client_credentials grant type not supported")
