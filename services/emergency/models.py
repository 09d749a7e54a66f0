from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from common.emergency_status import EVENT_TRANSITIONS, EventStatus, SequencerState


class InvalidTransitionError(Exception):
    pass


class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None

    def maps_link(self) -> str:
        return f"https://maps.google.com/?q={self.latitude},{self.longitude}"


class DeviceInfo(BaseModel):
    platform: str = "server"
    user_agent: Optional[str] = None
    app_version: str = "1.0.0"


class EmergencyEvent(BaseModel):
    id: str
    timestamp: datetime
    location: Optional[Location] = None
    media_files: List[str] = []
    contacts_notified: List[str] = []
    status: EventStatus = EventStatus.ACTIVE

    def transition(self, status: EventStatus) -> None:
        if status not in EVENT_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Emergency event {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status


class RecordContact(BaseModel):
    name: str
    phone: str
    relationship: str = ""
    notified: bool = False
    notification_time: Optional[str] = None


class EmergencyRecordOut(BaseModel):
    id: str
    user_id: str
    user_name: Optional[str] = None
    user_phone: Optional[str] = None
    timestamp: datetime
    file_url: str = ""
    location: Optional[Dict[str, float]] = None
    device_info: Optional[Dict[str, Optional[str]]] = None
    emergency_contacts: List[RecordContact] = []
    status: EventStatus


# ========= API models =========


class TriggerRequest(BaseModel):
    location: Optional[Location] = None
    device_info: Optional[DeviceInfo] = None


class Alert(BaseModel):
    title: str
    message: str


class EmergencyStatusResponse(BaseModel):
    state: SequencerState
    progress: int
    is_active: bool
    event: Optional[EmergencyEvent] = None
    error: Optional[str] = None
    alert: Optional[Alert] = None


class TriggerResponse(EmergencyStatusResponse):
    accepted: bool


class RecordingUploadResponse(BaseModel):
    record_id: str
    file_url: str


class EmergencyRecordsResponse(BaseModel):
    user_id: str
    records: List[EmergencyRecordOut]
