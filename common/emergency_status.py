"""
Emergency Status Enums
Shared status enumerations for the emergency and SMS services.
"""

from enum import Enum


class EventStatus(str, Enum):
    """Lifecycle of one emergency event / record"""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SequencerState(str, Enum):
    """Steps of the emergency sequencer"""
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    LOCATING_DEVICE = "locating_device"
    CREATING_RECORD = "creating_record"
    RECORDING = "recording"
    UPLOADING = "uploading"
    NOTIFYING = "notifying"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class SMSStatus(str, Enum):
    """SMS delivery status values"""
    SENT = "sent"
    FAILED = "failed"


class PermissionKind(str, Enum):
    """Device permissions the app asks for"""
    LOCATION = "location"
    CAMERA = "camera"
    MICROPHONE = "microphone"
    NOTIFICATIONS = "notifications"


# States in which a trigger is considered in progress
ACTIVE_STATES = {
    SequencerState.AUTHENTICATING,
    SequencerState.LOCATING_DEVICE,
    SequencerState.CREATING_RECORD,
    SequencerState.RECORDING,
    SequencerState.UPLOADING,
    SequencerState.NOTIFYING,
    SequencerState.COMPLETED,
}

# Allowed event status transitions
EVENT_TRANSITIONS = {
    EventStatus.ACTIVE: {EventStatus.COMPLETED, EventStatus.CANCELLED},
    EventStatus.COMPLETED: set(),
    EventStatus.CANCELLED: set(),
}
