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
Configuration for the tenant-auth package.
"""

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SCOPES = ("iam:read", "iam:write")
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3


class AuthConfig(BaseSettings):
    """
    Configuration settings for the OAuth2 client-credentials client.

    Values may be passed as keyword arguments or read from `TENANT_AUTH_*`
    environment variables (lists and maps as JSON). Constraint checking with
    field-level guidance happens in `tenant_auth.validation` when an
    `AuthClient` is constructed.

    Attributes:
        tenant_id (str): The tenant identifier. Also drives environment inference.
        client_id (str): The OAuth2 client ID.
        client_secret (SecretStr): The OAuth2 client secret.
        base_url (str | None): Authorization server base URL used for OIDC discovery.
        token_url (str | None): Explicit token endpoint. Bypasses discovery.
        scopes (list[str]): Requested scopes. Defaults to `DEFAULT_SCOPES` when empty.
        timeout (float): Timeout in seconds for every network operation.
        max_retries (int): Retries after the first token attempt, and 401 refresh cycles per request.
        disable_discovery (bool): Never contact the discovery endpoint.
        custom_headers (dict[str, str]): Extra headers added to every outbound API request.
        environment (str | None): Explicit environment name. Inferred from tenant_id when unset.
        api_url (str | None): Explicit API base URL.
        mock_mode (bool): Accept plain-HTTP URLs, for local mock servers only.
    """

    model_config = SettingsConfigDict(
        env_prefix="TENANT_AUTH_",
        case_sensitive=False,
        frozen=True,
    )

    tenant_id: str
    client_id: str
    client_secret: SecretStr
    base_url: str | None = None
    token_url: str | None = None
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    timeout: float = Field(default=DEFAULT_TIMEOUT, description="Timeout in seconds for all network operations.")
    max_retries: int = DEFAULT_MAX_RETRIES
    disable_discovery: bool = False
    custom_headers: dict[str, str] = Field(default_factory=dict)
    environment: str | None = None
    api_url: str | None = None
    mock_mode: bool = False

    @field_validator("scopes", mode="after")
    @classmethod
    def default_scopes(cls, v: list[str]) -> list[str]:
        """
        Falls back to the minimal default scope set when none are configured.
        """
        return v if v else list(DEFAULT_SCOPES)

    @field_validator("base_url", "token_url", "api_url", "environment", mode="before")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        """
        Treats empty strings (common with unset environment variables) as not configured.
        """
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def scope_string(self) -> str:
        return " ".join(self.scopes)
