"""
Session manager.

A SessionManager holds one signed-in identity and a mirror of its profile
document. Every operation returns {"success": bool, ...} with the
provider's message in "error" on failure, so callers can show it as is.

SessionRegistry keeps the live sessions of the process keyed by the
provider id token that the client sends back as a bearer token.
"""

import logging
import time
from dataclasses import replace
from typing import Any, Dict, Optional, Tuple

import requests

from auth_provider import AuthUser, IdentityProvider
from errors import BarterError
from profiles import ProfileService

logger = logging.getLogger(__name__)


class SessionManager:

    def __init__(self, auth: IdentityProvider, profiles: ProfileService):
        self.auth = auth
        self.profiles = profiles
        self.user: Optional[AuthUser] = None
        self.user_data: Optional[Dict[str, Any]] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def uid(self) -> Optional[str]:
        return self.user.uid if self.user else None

    def _on_auth_state_changed(self, user: Optional[AuthUser], additional_data: Optional[Dict[str, Any]] = None) -> None:
        self.user = user
        if user is None:
            self.user_data = None
            return
        result = self.profiles.get_profile(user.uid)
        if result["success"]:
            self.user_data = result["data"]
        else:
            self._create_user_profile(user, additional_data or {})

    def _create_user_profile(self, user: AuthUser, additional_data: Dict[str, Any]) -> None:
        email = user.email or ""
        profile = {
            "email": email or None,
            "full_name": user.display_name or additional_data.get("full_name") or "",
            "username": additional_data.get("username") or email.split("@")[0],
            "registration_no": additional_data.get("registration_no") or "",
            "phone_number": additional_data.get("phone_number") or "",
            "profile_picture": user.photo_url or additional_data.get("profile_picture") or None,
        }
        result = self.profiles.create_user_profile(user.uid, profile)
        if result["success"]:
            self.user_data = result["data"]
        else:
            logger.error(f"Could not create profile for {user.uid}: {result['error']}")
            self.user_data = None

    def _run(self, action) -> Dict[str, Any]:
        try:
            return action()
        except BarterError as e:
            return {"success": False, "error": e.message}
        except requests.RequestException as e:
            logger.error(f"Identity provider unreachable: {e}")
            return {"success": False, "error": "Authentication service unavailable"}

    def sign_up_with_email(self, email: str, password: str, **additional_data) -> Dict[str, Any]:
        def action():
            user = self.auth.sign_up(email, password)
            self._on_auth_state_changed(user, additional_data)
            logger.info(f"New account signed up: {user.uid}")
            return {"success": True, "user": user}
        return self._run(action)

    def sign_in_with_email(self, email: str, password: str) -> Dict[str, Any]:
        def action():
            user = self.auth.sign_in_with_password(email, password)
            self._on_auth_state_changed(user)
            return {"success": True, "user": user}
        return self._run(action)

    def sign_in_with_google(self, google_id_token: str) -> Dict[str, Any]:
        def action():
            user = self.auth.sign_in_with_idp(google_id_token, provider_id="google.com")
            self._on_auth_state_changed(user)
            return {"success": True, "user": user}
        return self._run(action)

    def reset_password(self, email: str) -> Dict[str, Any]:
        def action():
            self.auth.send_password_reset(email)
            return {"success": True}
        return self._run(action)

    def sign_out(self) -> Dict[str, Any]:
        self._on_auth_state_changed(None)
        return {"success": True}

    def update_user_profile(self, updated_data: Dict[str, Any]) -> Dict[str, Any]:
        if not self.user:
            return {"success": False, "error": "No user logged in"}

        def action():
            self.profiles.update_profile(self.user.uid, updated_data, id_token=self.user.id_token)
            refreshed = self.profiles.get_profile(self.user.uid)
            if refreshed["success"]:
                self.user_data = refreshed["data"]
            return {"success": True, "data": self.user_data}
        return self._run(action)


class SessionRegistry:
    """Live sessions keyed by id token, dropped once the token expires."""

    def __init__(self):
        self._sessions: Dict[str, Tuple[SessionManager, float]] = {}

    def _purge(self) -> None:
        now = time.time()
        for token in [t for t, (_, expires_at) in self._sessions.items() if expires_at <= now]:
            self._sessions.pop(token, None)

    def add(self, session: SessionManager) -> str:
        self._purge()
        token = session.user.id_token
        self._sessions[token] = (session, time.time() + session.user.expires_in)
        return token

    def get(self, token: str) -> Optional[SessionManager]:
        entry = self._sessions.get(token)
        if entry is None:
            return None
        session, expires_at = entry
        if expires_at <= time.time():
            self._sessions.pop(token, None)
            logger.info(f"Session for {session.uid} expired")
            return None
        return session

    def rekey(self, old_token: str, session: SessionManager, id_token: str,
              refresh_token: Optional[str] = None, expires_in: Optional[int] = None) -> str:
        """Move a session to the token the provider issued after a credential change."""
        self._sessions.pop(old_token, None)
        session.user = replace(
            session.user,
            id_token=id_token,
            refresh_token=refresh_token or session.user.refresh_token,
            expires_in=expires_in or session.user.expires_in,
        )
        return self.add(session)

    def remove(self, token: str) -> Optional[SessionManager]:
        entry = self._sessions.pop(token, None)
        return entry[0] if entry else None

    def clear(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)
