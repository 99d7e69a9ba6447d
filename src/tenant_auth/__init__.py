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
Tenant-aware OAuth2 client-credentials authentication for IAM API clients.
"""

__version__ = "0.1.0"

from .client import AuthClient
from .config import AuthConfig
from .discovery import DiscoveryClient
from .exceptions import (
    AuthError,
    AuthErrorKind,
    ConfigurationError,
    ConfigValidationError,
    CredentialsError,
    DiscoveryError,
    NetworkError,
    OversizedResponseError,
    ServerError,
    TokenExpiredError,
)
from .models import DiscoveryDocument, EndpointInfo, EndpointMapping, Token
from .resolver import EndpointResolver, OverrideEndpointResolver, RuleBasedEndpointResolver
from .retry import RetryPolicy
from .token_cache import TokenCache
from .transport import AuthenticatedTransport, RetryTransport
from .validation import ConfigValidationResult, validate_auth_config

__all__ = [
    "AuthClient",
    "AuthConfig",
    "AuthError",
    "AuthErrorKind",
    "AuthenticatedTransport",
    "ConfigValidationError",
    "ConfigValidationResult",
    "ConfigurationError",
    "CredentialsError",
    "DiscoveryClient",
    "DiscoveryDocument",
    "DiscoveryError",
    "EndpointInfo",
    "EndpointMapping",
    "EndpointResolver",
    "NetworkError",
    "OverrideEndpointResolver",
    "OversizedResponseError",
    "RetryPolicy",
    "RetryTransport",
    "RuleBasedEndpointResolver",
    "ServerError",
    "Token",
    "TokenCache",
    "TokenExpiredError",
    "validate_auth_config",
]
