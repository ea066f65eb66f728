"""Tests for the identity provider REST client."""

from unittest.mock import MagicMock, patch

import pytest

from auth_provider import IdentityProvider
from errors import AuthProviderError


def provider_response(status, body):
    response = MagicMock()
    response.status_code = status
    response.content = b"{}"
    response.json.return_value = body
    return response


@pytest.fixture
def provider():
    return IdentityProvider(api_key="web-key", base_url="https://auth.example.com/v1/", timeout=5)


def test_sign_in_parses_account(provider):
    body = {"localId": "u1", "email": "a@b.c", "idToken": "tok", "refreshToken": "ref", "expiresIn": "3600"}
    with patch("auth_provider.requests.post", return_value=provider_response(200, body)) as post:
        user = provider.sign_in_with_password("a@b.c", "secret1")

    assert user.uid == "u1"
    assert user.id_token == "tok"
    assert user.expires_in == 3600
    args, kwargs = post.call_args
    assert args[0] == "https://auth.example.com/v1/accounts:signInWithPassword"
    assert kwargs["params"] == {"key": "web-key"}
    assert kwargs["json"] == {"email": "a@b.c", "password": "secret1", "returnSecureToken": True}
    assert kwargs["timeout"] == 5


def test_error_code_is_mapped(provider):
    body = {"error": {"code": 400, "message": "EMAIL_EXISTS"}}
    with patch("auth_provider.requests.post", return_value=provider_response(400, body)):
        with pytest.raises(AuthProviderError) as exc:
            provider.sign_up("a@b.c", "secret1")

    assert exc.value.code == "EMAIL_EXISTS"
    assert exc.value.message == "An account with this email already exists"
    assert exc.value.status_code == 400


def test_error_with_detail_suffix(provider):
    body = {"error": {"message": "WEAK_PASSWORD : Password should be at least 6 characters"}}
    with patch("auth_provider.requests.post", return_value=provider_response(400, body)):
        with pytest.raises(AuthProviderError) as exc:
            provider.sign_up("a@b.c", "123")
    assert exc.value.code == "WEAK_PASSWORD"


def test_bad_credentials_are_unauthorized(provider):
    body = {"error": {"message": "INVALID_LOGIN_CREDENTIALS"}}
    with patch("auth_provider.requests.post", return_value=provider_response(400, body)):
        with pytest.raises(AuthProviderError) as exc:
            provider.sign_in_with_password("a@b.c", "nope")
    assert exc.value.status_code == 401


def test_password_reset_request(provider):
    with patch("auth_provider.requests.post", return_value=provider_response(200, {"email": "a@b.c"})) as post:
        provider.send_password_reset("a@b.c")
    assert post.call_args[1]["json"] == {"requestType": "PASSWORD_RESET", "email": "a@b.c"}


def test_update_only_sends_given_fields(provider):
    with patch("auth_provider.requests.post", return_value=provider_response(200, {})) as post:
        provider.update_account("tok", display_name="Alice")
    assert post.call_args[1]["json"] == {"idToken": "tok", "returnSecureToken": False, "displayName": "Alice"}


def test_google_sign_in_post_body(provider):
    body = {"localId": "g1", "idToken": "tok", "email": "g@gmail.com", "displayName": "G"}
    with patch("auth_provider.requests.post", return_value=provider_response(200, body)) as post:
        user = provider.sign_in_with_idp("google-token")
    assert post.call_args[1]["json"]["postBody"] == "id_token=google-token&providerId=google.com"
    assert user.display_name == "G"


def test_missing_api_key_fails_without_request():
    provider = IdentityProvider(base_url="https://auth.example.com/v1")
    provider.api_key = None
    with patch("auth_provider.requests.post") as post:
        with pytest.raises(AuthProviderError):
            provider.sign_in_with_password("a@b.c", "secret1")
    post.assert_not_called()
