# pytest services/user_management/tests/test_auth_gateway.py -q

import json

import httpx
import pytest

from libs.supabase_client import SupabaseClient
from services.user_management.auth_gateway import AuthenticationError, AuthGateway, AuthUser

USER = {
    "id": "user-1",
    "email": "jane@example.com",
    "created_at": "2024-01-01T00:00:00Z",
    "user_metadata": {"full_name": "Jane Doe", "phone_number": "5551234567"},
}
SESSION = {
    "access_token": "access-abc",
    "refresh_token": "refresh-abc",
    "expires_in": 3600,
    "token_type": "bearer",
    "user": USER,
}


def _client(handler) -> SupabaseClient:
    return SupabaseClient(
        url="https://project.supabase.co",
        anon_key="anon-key",
        transport=httpx.MockTransport(handler),
    )


class FakeProfiles:
    def __init__(self, fail=False):
        self.created = []
        self.fail = fail

    async def create_user_profile(self, user_id, full_name, phone_number):
        if self.fail:
            raise RuntimeError("profiles table unavailable")
        self.created.append((user_id, full_name, phone_number))


# ----------------------------
# sign_up
# ----------------------------
@pytest.mark.asyncio
async def test_sign_up_stores_session_and_creates_profile():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=SESSION)

    profiles = FakeProfiles()
    gateway = AuthGateway(_client(handler), profiles=profiles)

    result = await gateway.sign_up("jane@example.com", "secret1", "Jane Doe", "5551234567")

    assert seen["path"] == "/auth/v1/signup"
    assert seen["body"]["data"] == {"full_name": "Jane Doe", "phone_number": "5551234567"}
    assert result["user"].id == "user-1"
    assert result["session"].access_token == "access-abc"
    assert gateway.is_authenticated
    assert profiles.created == [("user-1", "Jane Doe", "5551234567")]


@pytest.mark.asyncio
async def test_sign_up_pending_confirmation_returns_user_without_session():
    gateway = AuthGateway(_client(lambda r: httpx.Response(200, json=USER)), profiles=FakeProfiles())

    result = await gateway.sign_up("jane@example.com", "secret1", "Jane Doe", "5551234567")

    assert result["user"].id == "user-1"
    assert result["session"] is None
    assert gateway.is_authenticated is False


@pytest.mark.asyncio
async def test_profile_failure_does_not_fail_sign_up(caplog):
    gateway = AuthGateway(_client(lambda r: httpx.Response(200, json=SESSION)), profiles=FakeProfiles(fail=True))

    result = await gateway.sign_up("jane@example.com", "secret1", "Jane Doe", "5551234567")

    assert result["user"].id == "user-1"
    assert "Failed to create user profile" in caplog.text


@pytest.mark.asyncio
async def test_sign_up_error_is_wrapped():
    def handler(request):
        return httpx.Response(422, json={"msg": "User already registered"})

    gateway = AuthGateway(_client(handler))

    with pytest.raises(AuthenticationError) as exc:
        await gateway.sign_up("jane@example.com", "secret1", "Jane Doe", "5551234567")

    assert exc.value.message == "User already registered"
    assert exc.value.status_code == 422


# ----------------------------
# sign_in / sign_out / session
# ----------------------------
@pytest.mark.asyncio
async def test_sign_in_uses_password_grant():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["grant_type"] = request.url.params.get("grant_type")
        return httpx.Response(200, json=SESSION)

    gateway = AuthGateway(_client(handler))
    session = await gateway.sign_in("jane@example.com", "secret1")

    assert seen == {"path": "/auth/v1/token", "grant_type": "password"}
    assert session.user.email == "jane@example.com"
    assert await gateway.get_session() is session


@pytest.mark.asyncio
async def test_sign_in_bad_credentials():
    def handler(request):
        return httpx.Response(400, json={"error_description": "Invalid login credentials"})

    gateway = AuthGateway(_client(handler))

    with pytest.raises(AuthenticationError, match="Invalid login credentials"):
        await gateway.sign_in("jane@example.com", "wrong-password")
    assert gateway.is_authenticated is False


@pytest.mark.asyncio
async def test_sign_out_clears_session():
    calls = []

    def handler(request: httpx.Request):
        calls.append((request.url.path, request.headers.get("authorization")))
        if request.url.path == "/auth/v1/logout":
            return httpx.Response(204)
        return httpx.Response(200, json=SESSION)

    gateway = AuthGateway(_client(handler))
    await gateway.sign_in("jane@example.com", "secret1")
    await gateway.sign_out()

    assert calls[-1] == ("/auth/v1/logout", "Bearer access-abc")
    assert gateway.user is None
    assert await gateway.get_session() is None


@pytest.mark.asyncio
async def test_ensure_authenticated_restores_from_token():
    def handler(request: httpx.Request):
        assert request.headers["authorization"] == "Bearer token-xyz"
        return httpx.Response(200, json=USER)

    gateway = AuthGateway(_client(handler), access_token="token-xyz")

    user = await gateway.ensure_authenticated()

    assert user.id == "user-1"


@pytest.mark.asyncio
async def test_ensure_authenticated_without_user_raises():
    gateway = AuthGateway(None)

    with pytest.raises(AuthenticationError, match="User not authenticated"):
        await gateway.ensure_authenticated()


@pytest.mark.asyncio
async def test_preset_user_skips_network():
    gateway = AuthGateway(None, access_token="token", user=AuthUser(id="user-9"))

    assert (await gateway.ensure_authenticated()).id == "user-9"


@pytest.mark.asyncio
async def test_restore_with_rejected_token_raises():
    gateway = AuthGateway(
        _client(lambda r: httpx.Response(401, json={"msg": "invalid JWT"})),
        access_token="stale",
    )

    with pytest.raises(AuthenticationError) as exc:
        await gateway.ensure_authenticated()
    assert exc.value.status_code == 401
