# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import pytest
from pydantic import SecretStr, ValidationError

from tenant_auth.models import DiscoveryDocument, EndpointInfo, EndpointMapping, Token, is_absolute_http_url

NOW = 1_700_000_000.0


def test_token_from_response_expires_in() -> None:
    token = Token.from_response({"access_token": "abc", "token_type": "bearer", "expires_in": 3600}, NOW)
    assert token.expiry == NOW + 3600
    assert token.token_type == "bearer"
    assert token.scope is None


def test_token_from_response_prefers_expires_in_over_expires_at() -> None:
    token = Token.from_response({"access_token": "abc", "expires_in": 60, "expires_at": NOW + 9999}, NOW)
    assert token.expiry == NOW + 60


def test_token_from_response_expires_at_only() -> None:
    token = Token.from_response({"access_token": "abc", "expires_at": NOW + 120, "scope": "iam:read"}, NOW)
    assert token.expiry == NOW + 120
    assert token.scope == "iam:read"


def test_token_from_response_without_expiry() -> None:
    token = Token.from_response({"access_token": "abc"}, NOW)
    assert token.expiry is None
    assert token.token_type == "Bearer"
    assert token.is_valid(NOW + 10**9)


def test_token_empty_access_token_is_invalid() -> None:
    assert not Token.from_response({"access_token": ""}, NOW).is_valid(NOW)
    assert not Token.from_response({}, NOW).is_valid(NOW)


def test_token_leeway() -> None:
    token = Token(access_token=SecretStr("abc"), expiry=NOW + 30)
    assert token.is_valid(NOW + 19)
    assert not token.is_valid(NOW + 20)


def test_authorization_header_normalises_bearer() -> None:
    assert Token(access_token=SecretStr("abc"), token_type="bearer").authorization_header() == "Bearer abc"
    assert Token(access_token=SecretStr("abc"), token_type="MAC").authorization_header() == "MAC abc"


def test_token_repr_hides_secret() -> None:
    token = Token(access_token=SecretStr("super-secret-token"))
    assert "super-secret-token" not in repr(token)
    assert "super-secret-token" not in str(token)


def test_endpoint_mapping_default_token_url() -> None:
    mapping = EndpointMapping(auth_base_url="https://auth.retailsvc.com/", api_base_url="https://iam-api.retailsvc.com")
    assert mapping.default_token_url == "https://auth.retailsvc.com/oauth2/token"
    with pytest.raises(ValidationError):
        mapping.auth_base_url = "https://other"  # type: ignore[misc]


def test_endpoint_info_str() -> None:
    info = EndpointInfo(
        tenant_id="acme-test-01",
        environment=None,
        effective_environment="test",
        auth_url="https://auth.retailsvc-test.com/oauth2/token",
        api_url="https://iam-api.retailsvc-test.com",
        is_test_environment=True,
    )
    text = str(info)
    assert "acme-test-01" in text
    assert "None -> test" in text
    assert "is_test=True" in text


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("https://auth.example.com", True),
        ("http://localhost:8080/path", True),
        ("ftp://auth.example.com", False),
        ("/oauth2/token", False),
        ("not a url", False),
        ("", False),
    ],
)
def test_is_absolute_http_url(value: str, expected: bool) -> None:
    assert is_absolute_http_url(value) is expected


def test_discovery_document_ignores_unknown_fields() -> None:
    document = DiscoveryDocument(
        issuer="https://auth.example.com",
        token_endpoint="https://auth.example.com/oauth2/token",
        unknown_extension=True,  # type: ignore[call-arg]
    )
    document.validate_metadata()
    assert not hasattr(document, "unknown_extension")
