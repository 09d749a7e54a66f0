"""
Supabase API client for the Zicom Safety backend.
Talks to the hosted auth (GoTrue) REST API of a Supabase project.
Object storage lives in libs.supabase_storage.
"""

import logging
import os
from typing import Any, Dict, Optional

import httpx
from httpx import AsyncClient, Timeout

from libs.config import config

logger = logging.getLogger(__name__)


class SupabaseError(Exception):
    """Error returned by the Supabase API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SupabaseConfigError(SupabaseError):
    """Raised when the Supabase URL or anon key is missing."""


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        for key in ("error_description", "msg", "message", "error"):
            if payload.get(key):
                return str(payload[key])
    return str(payload)


class SupabaseClient:
    """Client for the Supabase auth API."""

    def __init__(
        self,
        url: Optional[str] = None,
        anon_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the Supabase client.

        Args:
            url: Project URL. If None, reads from SUPABASE_URL env var.
            anon_key: Project anon key. If None, reads from SUPABASE_ANON_KEY env var.
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.url = (url or os.getenv("SUPABASE_URL") or "").rstrip("/")
        self.anon_key = anon_key or os.getenv("SUPABASE_ANON_KEY")
        if not self.url or not self.anon_key:
            raise SupabaseConfigError(
                "Missing Supabase configuration. Please set SUPABASE_URL and "
                "SUPABASE_ANON_KEY in your .env file"
            )

        self.client = AsyncClient(
            base_url=self.url,
            timeout=Timeout(timeout),
            headers={"apikey": self.anon_key},
            transport=transport,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    def _auth_headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token or self.anon_key}"}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Supabase request error on {path}: {e}")
            raise SupabaseError(f"Supabase request failed: {e}") from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(
                f"Supabase API error on {path}: {response.status_code} - {message}"
            )
            raise SupabaseError(message, status_code=response.status_code)
        return response

    # ---------- Auth ----------

    async def sign_up(
        self, email: str, password: str, data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Create a user. Returns the session payload (or the bare user when
        email confirmation is pending)."""
        response = await self._request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": data or {}},
            headers=self._auth_headers(),
        )
        return response.json()

    async def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=self._auth_headers(),
        )
        return response.json()

    async def sign_out(self, access_token: str) -> None:
        await self._request(
            "POST", "/auth/v1/logout", headers=self._auth_headers(access_token)
        )

    async def get_user(self, access_token: str) -> Dict[str, Any]:
        response = await self._request(
            "GET", "/auth/v1/user", headers=self._auth_headers(access_token)
        )
        return response.json()


# Singleton instance
_supabase_client: Optional[SupabaseClient] = None


def get_supabase_client() -> SupabaseClient:
    """Get or create the Supabase client singleton"""
    global _supabase_client
    if _supabase_client is None:
        _supabase_client = SupabaseClient(
            url=config.SUPABASE_URL,
            anon_key=config.SUPABASE_ANON_KEY,
            timeout=config.SUPABASE_TIMEOUT,
        )
    return _supabase_client
