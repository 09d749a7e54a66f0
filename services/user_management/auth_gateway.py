"""
Auth gateway over the hosted Supabase auth service.

Holds the current user/session for one caller and exposes sign-up, sign-in,
sign-out and the `ensure_authenticated` guard used by the emergency flow.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from libs.supabase_client import SupabaseClient, SupabaseError

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when there is no authenticated user or the auth call failed."""

    def __init__(self, message: str = "User not authenticated", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthUser(BaseModel):
    id: str
    email: Optional[str] = None
    created_at: Optional[str] = None
    email_confirmed_at: Optional[str] = None
    last_sign_in_at: Optional[str] = None
    user_metadata: Dict[str, Any] = {}


class AuthSession(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    token_type: str = "bearer"
    user: AuthUser


def _parse_auth_payload(payload: Dict[str, Any]):
    """Supabase returns a session, or just the user while email confirmation is pending."""
    if payload.get("access_token"):
        session = AuthSession.model_validate(payload)
        return session.user, session
    if payload.get("id"):
        return AuthUser.model_validate(payload), None
    if payload.get("user"):
        return AuthUser.model_validate(payload["user"]), None
    return None, None


class AuthGateway:
    def __init__(
        self,
        client: Optional[SupabaseClient],
        profiles=None,
        access_token: Optional[str] = None,
        user: Optional[AuthUser] = None,
    ):
        """
        Args:
            client: Supabase API client
            profiles: object with `create_user_profile(user_id, full_name, phone_number)`
            access_token: token of an existing session to restore lazily
            user: caller already identified from a verified access token
        """
        self.client = client
        self.profiles = profiles
        self.access_token = access_token
        self.user: Optional[AuthUser] = user
        self.session: Optional[AuthSession] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def _set_session(self, user: Optional[AuthUser], session: Optional[AuthSession]):
        self.user = user
        self.session = session
        self.access_token = session.access_token if session else None

    async def sign_up(
        self, email: str, password: str, full_name: str, phone_number: str
    ) -> Dict[str, Any]:
        try:
            payload = await self.client.sign_up(
                email,
                password,
                data={"full_name": full_name, "phone_number": phone_number},
            )
        except SupabaseError as e:
            logger.error("Sign up error: %s", e.message)
            raise AuthenticationError(e.message, e.status_code) from e

        user, session = _parse_auth_payload(payload)
        if session:
            self._set_session(user, session)

        # Auth succeeded; a missing profile row is secondary
        if user and self.profiles is not None:
            try:
                await self.profiles.create_user_profile(user.id, full_name, phone_number)
            except Exception as e:
                logger.error("Failed to create user profile for %s: %s", user.id, e)

        return {"user": user, "session": session}

    async def sign_in(self, email: str, password: str) -> AuthSession:
        try:
            payload = await self.client.sign_in_with_password(email, password)
        except SupabaseError as e:
            logger.error("Sign in error: %s", e.message)
            raise AuthenticationError(e.message, e.status_code) from e

        user, session = _parse_auth_payload(payload)
        if session is None:
            raise AuthenticationError("Sign in did not return a session")
        self._set_session(user, session)
        return session

    async def sign_out(self) -> None:
        if self.access_token:
            try:
                await self.client.sign_out(self.access_token)
            except SupabaseError as e:
                logger.error("Sign out error: %s", e.message)
                raise AuthenticationError(e.message, e.status_code) from e
        self._set_session(None, None)

    async def get_session(self) -> Optional[AuthSession]:
        return self.session

    async def restore_session(self) -> Optional[AuthUser]:
        """Resolve the user behind `access_token`, if any."""
        if not self.access_token or self.client is None:
            return None
        try:
            payload = await self.client.get_user(self.access_token)
        except SupabaseError as e:
            logger.error("Error getting session: %s", e.message)
            raise AuthenticationError(e.message, e.status_code) from e

        self.user = AuthUser.model_validate(payload)
        return self.user

    async def ensure_authenticated(self) -> AuthUser:
        if self.user is None:
            await self.restore_session()
        if self.user is None:
            raise AuthenticationError("User not authenticated", 401)
        return self.user
