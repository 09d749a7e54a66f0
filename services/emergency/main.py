# Run:
# uvicorn services.emergency.main:app --host 0.0.0.0 --port 20006 --reload
# Docs: http://127.0.0.1:20006/docs

import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, HTTPException, Path, Request, status

# Load environment variables from .env file
load_dotenv()

from common import storage
from common.constants import APP_VERSION, RECORDING_CONTENT_TYPE
from common.emergency_status import SequencerState
from libs.auth.supabase_verify import CurrentUser, get_current_user
from libs.config import config
from libs.db import AsyncSessionLocal
from libs.fastapi_service import FastAPIServiceFactory, ServiceAppConfig, configure_logging
from libs.supabase_client import SupabaseConfigError
from libs.supabase_storage import SupabaseStorage
from services.emergency.cloud import (
    CloudService,
    CloudServiceError,
    RecordNotFoundError,
)
from services.emergency.location import ReportedLocationProvider
from services.emergency.models import (
    DeviceInfo,
    EmergencyRecordOut,
    EmergencyRecordsResponse,
    EmergencyStatusResponse,
    RecordingUploadResponse,
    TriggerRequest,
    TriggerResponse,
)
from services.emergency.notifier import Notifier, RelaySmsChannel, TwilioSmsChannel
from services.emergency.sequencer import EmergencySequencer
from services.user_management.auth_gateway import AuthGateway, AuthUser
from services.user_management.settings_store import (
    SettingsStore,
    create_storage,
    user_settings_key,
)

configure_logging()
logger = logging.getLogger(__name__)

service_config = ServiceAppConfig(
    title="Zicom Safety Emergency Service",
    description="Emergency trigger/cancel/status, evidence upload and emergency history.",
    service_name="emergency",
    version=APP_VERSION,
)

factory = FastAPIServiceFactory(service_config)
app = factory.create_app()

# Business metrics: emergency usage
EMERGENCY_TRIGGERS_TOTAL = factory.add_business_metric(
    "emergency_triggers_total",
    "Total emergency triggers by outcome",
    ["outcome"],
)
EMERGENCY_CANCELLATIONS_TOTAL = factory.add_business_metric(
    "emergency_cancellations_total", "Total emergency cancellations"
)


# ========= Dependencies =========


def _optional_storage(access_token: Optional[str]) -> Optional[SupabaseStorage]:
    try:
        return SupabaseStorage(
            url=config.SUPABASE_URL,
            anon_key=config.SUPABASE_ANON_KEY,
            access_token=access_token,
        )
    except SupabaseConfigError as e:
        logger.warning("Object storage unavailable: %s", e.message)
        return None


def get_cloud_service(user: CurrentUser = Depends(get_current_user)) -> CloudService:
    return CloudService(
        AsyncSessionLocal,
        storage=_optional_storage(user.access_token),
    )


def get_notifier() -> Notifier:
    if config.SMS_CHANNEL == "twilio":
        return Notifier(TwilioSmsChannel())
    return Notifier(RelaySmsChannel(config.SMS_RELAY_URL, timeout=config.SMS_RELAY_TIMEOUT))


def get_auth_gateway(user: CurrentUser = Depends(get_current_user)) -> AuthGateway:
    # The bearer token is already verified; the gateway only carries the identity
    return AuthGateway(
        None,
        access_token=user.access_token,
        user=AuthUser(id=user.user_id, email=user.email),
    )


async def get_settings_store(user: CurrentUser = Depends(get_current_user)) -> SettingsStore:
    store = SettingsStore(create_storage(), user_settings_key(user.user_id))
    await store.load()
    return store


def get_sequencer(
    user: CurrentUser = Depends(get_current_user),
    auth: AuthGateway = Depends(get_auth_gateway),
    cloud: CloudService = Depends(get_cloud_service),
    notifier: Notifier = Depends(get_notifier),
) -> EmergencySequencer:
    sequencer = storage.emergency_sequencers.get(user.user_id)
    if sequencer is None:
        sequencer = EmergencySequencer(auth, cloud, notifier)
        storage.emergency_sequencers[user.user_id] = sequencer
    elif not sequencer.is_active:
        # Fresh collaborators carry the caller's current token
        sequencer.auth = auth
        sequencer.cloud = cloud
        sequencer.notifier = notifier
    return sequencer


def _status_response(sequencer: Optional[EmergencySequencer]) -> EmergencyStatusResponse:
    if sequencer is None:
        return EmergencyStatusResponse(state=SequencerState.IDLE, progress=0, is_active=False)
    return EmergencyStatusResponse(**sequencer.snapshot())


# ========= Emergency flow =========


@app.post("/v1/emergency/trigger", response_model=TriggerResponse)
async def trigger_emergency(
    request: Request,
    body: Optional[TriggerRequest] = None,
    sequencer: EmergencySequencer = Depends(get_sequencer),
    settings_store: SettingsStore = Depends(get_settings_store),
):
    """
    Run the emergency protocol for the caller.

    The sequence is awaited; the response carries the resulting state.
    `accepted` is false when an emergency is already in progress.
    """
    body = body or TriggerRequest()
    settings = settings_store.settings

    location_provider = None
    if settings.location_services:
        location_provider = ReportedLocationProvider(body.location)

    device_info = body.device_info or DeviceInfo(
        user_agent=request.headers.get("user-agent"), app_version=APP_VERSION
    )

    accepted = await sequencer.trigger(
        settings.emergency_contacts,
        location_provider=location_provider,
        device_info=device_info,
    )
    if accepted:
        EMERGENCY_TRIGGERS_TOTAL.labels(outcome=sequencer.state.value).inc()

    return TriggerResponse(accepted=accepted, **sequencer.snapshot())


@app.post("/v1/emergency/cancel", response_model=EmergencyStatusResponse)
async def cancel_emergency(user: CurrentUser = Depends(get_current_user)):
    sequencer = storage.emergency_sequencers.get(user.user_id)
    if sequencer is None or not await sequencer.cancel():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="No active emergency to cancel"
        )

    EMERGENCY_CANCELLATIONS_TOTAL.inc()
    return _status_response(sequencer)


@app.get("/v1/emergency/status", response_model=EmergencyStatusResponse)
async def emergency_status(user: CurrentUser = Depends(get_current_user)):
    return _status_response(storage.emergency_sequencers.get(user.user_id))


@app.post("/v1/emergency/{record_id}/recording", response_model=RecordingUploadResponse)
async def upload_recording(
    request: Request,
    record_id: str = Path(...),
    user: CurrentUser = Depends(get_current_user),
    cloud: CloudService = Depends(get_cloud_service),
):
    """Attach a clip (raw video/mp4 body) to one of the caller's emergency records."""
    content_type = request.headers.get("content-type", "")
    if content_type and not content_type.startswith(RECORDING_CONTENT_TYPE):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Recording must be {RECORDING_CONTENT_TYPE}",
        )

    data = await request.body()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty recording")

    try:
        record = await cloud.get_emergency_record(record_id)
        if record is None or record.user_id != user.user_id:
            raise RecordNotFoundError(f"Emergency record {record_id} not found")
        file_url = await cloud.upload_recording(record_id, user.user_id, data)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except CloudServiceError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    sequencer = storage.emergency_sequencers.get(user.user_id)
    if sequencer and sequencer.event and sequencer.event.id == record_id:
        await sequencer.handle_recording_complete(file_url)

    return RecordingUploadResponse(record_id=record_id, file_url=file_url)


@app.get("/v1/emergency/records", response_model=EmergencyRecordsResponse)
async def list_records(
    user: CurrentUser = Depends(get_current_user),
    cloud: CloudService = Depends(get_cloud_service),
):
    try:
        records = await cloud.list_emergency_records(user.user_id)
    except CloudServiceError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    return EmergencyRecordsResponse(
        user_id=user.user_id,
        records=[EmergencyRecordOut.model_validate(r, from_attributes=True) for r in records],
    )
