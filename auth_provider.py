"""
Hosted identity provider client.

Talks to the provider's REST API (Identity Toolkit wire format). Only
requests/responses live here; profile mirroring is done by session.py.

Endpoints used:
    - accounts:signUp              create an email/password account
    - accounts:signInWithPassword  password sign-in / re-authentication
    - accounts:signInWithIdp       federated (Google) sign-in
    - accounts:sendOobCode         password reset email
    - accounts:update              change password / display name / photo
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from config import get_settings
from errors import AuthProviderError

logger = logging.getLogger(__name__)

# Provider error codes -> messages shown to end users
ERROR_MESSAGES = {
    "EMAIL_EXISTS": "An account with this email already exists",
    "EMAIL_NOT_FOUND": "No account found with this email",
    "INVALID_PASSWORD": "Incorrect password",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password",
    "USER_DISABLED": "This account has been disabled",
    "WEAK_PASSWORD": "Password should be at least 6 characters",
    "INVALID_EMAIL": "Invalid email address",
    "INVALID_ID_TOKEN": "Session expired, please sign in again",
    "TOKEN_EXPIRED": "Session expired, please sign in again",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts, try again later",
}


@dataclass
class AuthUser:
    uid: str
    email: Optional[str]
    id_token: str
    refresh_token: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    expires_in: int = 3600

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "AuthUser":
        return cls(
            uid=data["localId"],
            email=data.get("email"),
            id_token=data["idToken"],
            refresh_token=data.get("refreshToken"),
            display_name=data.get("displayName") or None,
            photo_url=data.get("photoUrl") or None,
            expires_in=int(data.get("expiresIn", 3600)),
        )


class IdentityProvider:

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: Optional[int] = None):
        settings = get_settings()
        self.api_key = api_key or settings.auth_api_key
        self.base_url = (base_url or settings.auth_base_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise AuthProviderError("Authentication provider is not configured", "CONFIGURATION_NOT_FOUND")
        url = f"{self.base_url}/accounts:{endpoint}"
        response = requests.post(url, params={"key": self.api_key}, json=payload, timeout=self.timeout)
        data = response.json() if response.content else {}
        if response.status_code >= 400:
            # "WEAK_PASSWORD : Password should be at least 6 characters" -> WEAK_PASSWORD
            raw = (data.get("error") or {}).get("message", "UNKNOWN_ERROR")
            code = raw.split(" ")[0]
            logger.warning(f"Identity provider {endpoint} failed: {raw}")
            raise AuthProviderError(ERROR_MESSAGES.get(code, raw), code)
        return data

    def sign_up(self, email: str, password: str) -> AuthUser:
        data = self._post("signUp", {"email": email, "password": password, "returnSecureToken": True})
        return AuthUser.from_response(data)

    def sign_in_with_password(self, email: str, password: str) -> AuthUser:
        data = self._post("signInWithPassword", {"email": email, "password": password, "returnSecureToken": True})
        return AuthUser.from_response(data)

    def sign_in_with_idp(self, id_token: str, provider_id: str = "google.com",
                         request_uri: str = "http://localhost") -> AuthUser:
        data = self._post("signInWithIdp", {
            "postBody": f"id_token={id_token}&providerId={provider_id}",
            "requestUri": request_uri,
            "returnSecureToken": True,
            "returnIdpCredential": True,
        })
        return AuthUser.from_response(data)

    def send_password_reset(self, email: str) -> None:
        self._post("sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})

    def update_account(self, id_token: str, password: Optional[str] = None,
                       display_name: Optional[str] = None, photo_url: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"idToken": id_token, "returnSecureToken": password is not None}
        if password is not None:
            payload["password"] = password
        if display_name is not None:
            payload["displayName"] = display_name
        if photo_url is not None:
            payload["photoUrl"] = photo_url
        return self._post("update", payload)

