# Run:
# uvicorn services.user_management.main:app --host 0.0.0.0 --port 20000 --reload
# Docs: http://127.0.0.1:20000/docs

import logging
from typing import Any, Dict, List, Literal, Optional

from dotenv import load_dotenv
from fastapi import Body, Depends, HTTPException, Path, Query, status
from pydantic import BaseModel, ConfigDict, ValidationError, model_validator
from pydantic.alias_generators import to_camel

# Load environment variables from .env file
load_dotenv()

from common.constants import APP_VERSION, PERMISSIONS_STORAGE_KEY
from common.emergency_status import PermissionKind
from libs.auth.supabase_verify import CurrentUser, get_current_user
from libs.db import AsyncSessionLocal
from libs.fastapi_service import FastAPIServiceFactory, ServiceAppConfig, configure_logging
from libs.supabase_client import SupabaseClient, SupabaseConfigError, get_supabase_client
from services.emergency.cloud import CloudService
from services.user_management.auth_gateway import (
    AuthenticationError,
    AuthGateway,
    AuthSession,
    AuthUser,
)
from services.user_management.permissions import (
    PermissionGateway,
    PermissionStatus,
    ReportedPermissionProvider,
)
from services.user_management.settings_store import (
    AppSettings,
    ContactLimitError,
    EmergencyContact,
    NewEmergencyContact,
    SettingsStorageError,
    SettingsStore,
    create_storage,
    user_settings_key,
)
from services.user_management.validation import validate_sign_in_form, validate_sign_up_form

configure_logging()
logger = logging.getLogger(__name__)

service_config = ServiceAppConfig(
    title="Zicom Safety User Management",
    description="Sign-up/sign-in, user settings, emergency contacts and device permissions.",
    service_name="user_management",
    version=APP_VERSION,
)

factory = FastAPIServiceFactory(service_config)
app = factory.create_app()

# Business metric: total user registrations
USER_SIGNUPS_TOTAL = factory.add_business_metric(
    "user_signups_total", "Total user sign ups"
)


# ========= Models =========


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _form_error(errors: Dict[str, str]) -> ValueError:
    return ValueError("; ".join(f"{field}: {message}" for field, message in errors.items()))


class SignUpRequest(_CamelModel):
    email: str
    password: str
    confirm_password: str
    full_name: str
    phone_number: str

    @model_validator(mode="after")
    def check_form(self):
        errors = validate_sign_up_form(
            self.email, self.password, self.confirm_password, self.full_name, self.phone_number
        )
        if errors:
            raise _form_error(errors)
        return self


class SignInRequest(_CamelModel):
    email: str
    password: str

    @model_validator(mode="after")
    def check_form(self):
        errors = validate_sign_in_form(self.email, self.password)
        if errors:
            raise _form_error(errors)
        return self


class SignUpResponse(BaseModel):
    user: Optional[AuthUser] = None
    session: Optional[AuthSession] = None


class SessionResponse(BaseModel):
    user: AuthUser


class ContactRemovedResponse(BaseModel):
    status: Literal["removed"]
    contact_id: str


class PermissionReport(BaseModel):
    """Grant states as seen by the device (granted / denied / undetermined)."""

    location: Optional[Literal["granted", "denied", "undetermined"]] = None
    camera: Optional[Literal["granted", "denied", "undetermined"]] = None
    microphone: Optional[Literal["granted", "denied", "undetermined"]] = None
    background_location: Optional[Literal["granted", "denied", "undetermined"]] = None


class PermissionRequestResponse(BaseModel):
    kind: PermissionKind
    granted: bool
    permissions: PermissionStatus


# ========= Dependencies =========


def get_supabase() -> SupabaseClient:
    try:
        return get_supabase_client()
    except SupabaseConfigError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message
        ) from e


def get_cloud_service() -> CloudService:
    return CloudService(AsyncSessionLocal)


def get_auth_gateway(
    client: SupabaseClient = Depends(get_supabase),
    cloud: CloudService = Depends(get_cloud_service),
) -> AuthGateway:
    return AuthGateway(client, profiles=cloud)


async def get_settings_store(user: CurrentUser = Depends(get_current_user)) -> SettingsStore:
    store = SettingsStore(create_storage(), user_settings_key(user.user_id))
    await store.load()
    return store


def get_permission_gateway(
    platform: Literal["web", "ios", "android"] = Query("web"),
    user: CurrentUser = Depends(get_current_user),
) -> PermissionGateway:
    provider = ReportedPermissionProvider(
        create_storage(),
        key=f"{PERMISSIONS_STORAGE_KEY}:{user.user_id}",
        platform=platform,
    )
    return PermissionGateway(provider)


def _auth_http_error(e: AuthenticationError, default_status: int) -> HTTPException:
    # No status (unreachable) or a 5xx means the auth service itself failed
    if e.status_code is None or e.status_code >= 500:
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return HTTPException(status_code=default_status, detail=e.message)


def _storage_http_error(e: SettingsStorageError, what: str = "settings") -> HTTPException:
    logger.error("Failed to save %s: %s", what, e)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to save {what}"
    )


# ========= Auth =========


@app.post("/v1/auth/signup", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(body: SignUpRequest, gateway: AuthGateway = Depends(get_auth_gateway)):
    try:
        result = await gateway.sign_up(
            body.email.strip(), body.password, body.full_name.strip(), body.phone_number.strip()
        )
    except AuthenticationError as e:
        raise _auth_http_error(e, status.HTTP_400_BAD_REQUEST) from e

    USER_SIGNUPS_TOTAL.inc()
    return SignUpResponse(**result)


@app.post("/v1/auth/login", response_model=AuthSession)
async def login(body: SignInRequest, gateway: AuthGateway = Depends(get_auth_gateway)):
    try:
        return await gateway.sign_in(body.email.strip(), body.password)
    except AuthenticationError as e:
        raise _auth_http_error(e, status.HTTP_401_UNAUTHORIZED) from e


@app.post("/v1/auth/logout")
async def logout(
    user: CurrentUser = Depends(get_current_user),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    gateway.access_token = user.access_token
    try:
        await gateway.sign_out()
    except AuthenticationError as e:
        raise _auth_http_error(e, status.HTTP_401_UNAUTHORIZED) from e
    return {"status": "signed_out"}


@app.get("/v1/auth/session", response_model=SessionResponse)
async def current_session(
    user: CurrentUser = Depends(get_current_user),
    gateway: AuthGateway = Depends(get_auth_gateway),
):
    gateway.access_token = user.access_token
    try:
        auth_user = await gateway.ensure_authenticated()
    except AuthenticationError as e:
        raise _auth_http_error(e, status.HTTP_401_UNAUTHORIZED) from e
    return SessionResponse(user=auth_user)


# ========= Settings =========


@app.get("/v1/users/me/settings", response_model=AppSettings)
async def get_settings(store: SettingsStore = Depends(get_settings_store)):
    return store.settings


@app.patch("/v1/users/me/settings", response_model=AppSettings)
async def update_settings(
    updates: Dict[str, Any] = Body(...),
    store: SettingsStore = Depends(get_settings_store),
):
    """Partial update; keys may be camelCase or snake_case."""
    try:
        return await store.save(updates)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from e
    except SettingsStorageError as e:
        raise _storage_http_error(e) from e


@app.post("/v1/users/me/onboarding/complete", response_model=AppSettings)
async def complete_onboarding(store: SettingsStore = Depends(get_settings_store)):
    try:
        return await store.complete_onboarding()
    except SettingsStorageError as e:
        raise _storage_http_error(e) from e


# ========= Emergency contacts =========


@app.get("/v1/users/me/contacts", response_model=List[EmergencyContact])
async def list_contacts(store: SettingsStore = Depends(get_settings_store)):
    return store.settings.emergency_contacts


@app.post(
    "/v1/users/me/contacts",
    response_model=EmergencyContact,
    status_code=status.HTTP_201_CREATED,
)
async def add_contact(
    body: NewEmergencyContact,
    store: SettingsStore = Depends(get_settings_store),
):
    try:
        return await store.add_emergency_contact(body)
    except ContactLimitError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except SettingsStorageError as e:
        raise _storage_http_error(e) from e


@app.delete("/v1/users/me/contacts/{contact_id}", response_model=ContactRemovedResponse)
async def remove_contact(
    contact_id: str = Path(...),
    store: SettingsStore = Depends(get_settings_store),
):
    if not any(c.id == contact_id for c in store.settings.emergency_contacts):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")
    try:
        await store.remove_emergency_contact(contact_id)
    except SettingsStorageError as e:
        raise _storage_http_error(e) from e
    return ContactRemovedResponse(status="removed", contact_id=contact_id)


# ========= Permissions =========


@app.get("/v1/users/me/permissions", response_model=PermissionStatus)
async def get_permissions(gateway: PermissionGateway = Depends(get_permission_gateway)):
    return await gateway.check_permissions()


@app.put("/v1/users/me/permissions", response_model=PermissionStatus)
async def report_permissions(
    body: PermissionReport,
    gateway: PermissionGateway = Depends(get_permission_gateway),
):
    """Record the grant states the device currently sees."""
    try:
        await gateway.provider.report(body.model_dump(exclude_none=True))
    except SettingsStorageError as e:
        raise _storage_http_error(e, "permissions") from e
    return await gateway.check_permissions()


@app.post("/v1/users/me/permissions/{kind}/request", response_model=PermissionRequestResponse)
async def request_permission(
    kind: PermissionKind,
    gateway: PermissionGateway = Depends(get_permission_gateway),
):
    granted = await gateway.request(kind)
    if granted is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{kind.value} permission cannot be requested",
        )
    return PermissionRequestResponse(kind=kind, granted=granted, permissions=gateway.permissions)
