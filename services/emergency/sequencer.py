"""
Emergency sequencer.

Runs one emergency trigger as a strictly sequential state machine:

    idle -> authenticating -> locating_device -> creating_record
         -> recording -> uploading -> notifying -> completed

Location is best-effort; a failure in any other step ends in `failed` and
raises a user-facing alert. An auto-reset timer armed at trigger start
returns the sequencer to `idle` after EMERGENCY_RESET_SECONDS whatever the
outcome. `cancel()` marks the record cancelled and stops that timer; an
in-flight network call is not aborted, the trigger just stops advancing at
the next step boundary.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from common.constants import (
    EMERGENCY_ALERT_MESSAGE,
    EMERGENCY_ALERT_TITLE,
    EMERGENCY_RESET_SECONDS,
    PROGRESS_AUTHENTICATING,
    PROGRESS_COMPLETED,
    PROGRESS_CREATING_RECORD,
    PROGRESS_LOCATING,
    PROGRESS_NOTIFYING,
    PROGRESS_RECORDING,
)
from common.emergency_status import ACTIVE_STATES, EventStatus, SequencerState
from services.emergency.cloud import CloudService, RecordStateConflictError, UploadProgress
from services.emergency.location import LocationProvider
from services.emergency.models import Alert, DeviceInfo, EmergencyEvent, Location
from services.emergency.notifier import Notifier
from services.emergency.recorder import Recorder

logger = logging.getLogger(__name__)


class EmergencySequencer:
    def __init__(
        self,
        auth,
        cloud: CloudService,
        notifier: Notifier,
        recorder: Optional[Recorder] = None,
        location_provider: Optional[LocationProvider] = None,
        device_info: Optional[DeviceInfo] = None,
        reset_after: float = EMERGENCY_RESET_SECONDS,
        on_alert: Optional[Callable[[Alert], None]] = None,
    ):
        """
        Args:
            auth: object with `ensure_authenticated()` returning a user with `.id`
            cloud: row/storage facade
            notifier: contact notifier
            recorder: evidence recorder; the recording step is skipped without one
            location_provider: default device location source
            device_info: default device description stored on the record
            reset_after: auto-reset ceiling in seconds
            on_alert: called with the alert raised on failure
        """
        self.auth = auth
        self.cloud = cloud
        self.notifier = notifier
        self.recorder = recorder
        self.location_provider = location_provider
        self.device_info = device_info
        self.reset_after = reset_after
        self.on_alert = on_alert

        self.state = SequencerState.IDLE
        self.progress = 0
        self.event: Optional[EmergencyEvent] = None
        self.error: Optional[str] = None
        self.alert: Optional[Alert] = None
        self.upload_progress: Optional[UploadProgress] = None

        self._generation = 0
        self._cancelled_generations = set()
        self._reset_handle: Optional[asyncio.TimerHandle] = None

    # ---------- State helpers ----------

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def reset_pending(self) -> bool:
        return self._reset_handle is not None

    def snapshot(self) -> dict:
        return {
            "state": self.state,
            "progress": self.progress,
            "is_active": self.is_active,
            "event": self.event.model_copy(deep=True) if self.event else None,
            "error": self.error,
            "alert": self.alert,
        }

    def _enter(self, state: SequencerState, progress: Optional[int] = None) -> None:
        self.state = state
        if progress is not None:
            # never move backwards within one trigger
            self.progress = max(self.progress, progress)
        logger.info("Emergency sequencer -> %s (%s%%)", state.value, self.progress)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and generation not in self._cancelled_generations

    def _arm_reset_timer(self) -> None:
        self._clear_reset_timer()
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(self.reset_after, self._reset)

    def _clear_reset_timer(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _reset(self) -> None:
        self._reset_handle = None
        # bumping the generation stops a trigger that is still in flight
        self._generation += 1
        self.state = SequencerState.IDLE
        self.progress = 0
        self.event = None
        self.error = None
        self.alert = None
        self.upload_progress = None
        logger.info("Emergency sequencer reset to idle")

    def _raise_alert(self) -> None:
        self.alert = Alert(title=EMERGENCY_ALERT_TITLE, message=EMERGENCY_ALERT_MESSAGE)
        if self.on_alert:
            self.on_alert(self.alert)
        else:
            logger.warning("%s: %s", self.alert.title, self.alert.message)

    def _on_upload_progress(self, progress: UploadProgress) -> None:
        self.upload_progress = progress

    # ---------- Steps ----------

    async def _locate(self, provider: Optional[LocationProvider]) -> Optional[Location]:
        if provider is None:
            return None
        try:
            return await provider.get_current_position()
        except Exception as e:
            logger.error("Failed to get location: %s", e)
            return None

    async def _cancel_event(self, event: EmergencyEvent) -> bool:
        """
        Mark the event's record cancelled and mirror the outcome locally.

        Returns False when the row had already left `active`; the local event
        then follows the row's status instead.
        """
        try:
            await self.cloud.update_emergency_record(
                event.id,
                require_status=EventStatus.ACTIVE,
                status=EventStatus.CANCELLED,
            )
        except RecordStateConflictError as e:
            logger.warning("Emergency record %s was not cancelled: %s", event.id, e)
            if e.current_status and e.current_status != event.status.value:
                event.transition(EventStatus(e.current_status))
            return False
        except Exception as e:
            logger.error("Failed to update emergency record: %s", e)
        event.transition(EventStatus.CANCELLED)
        return True

    def _record_contacts(self, contacts: List, notified_ids: List[str]) -> List[dict]:
        notified_at = datetime.now(timezone.utc).isoformat()
        rows = []
        for c in contacts:
            notified = c.id in notified_ids
            rows.append(
                {
                    "name": c.name,
                    "phone": c.phone,
                    "relationship": c.relationship,
                    "notified": notified,
                    "notification_time": notified_at if notified else None,
                }
            )
        return rows

    # ---------- Public operations ----------

    async def trigger(
        self,
        contacts: Iterable,
        location_provider: Optional[LocationProvider] = None,
        device_info: Optional[DeviceInfo] = None,
    ) -> bool:
        """
        Run the emergency sequence for the given contacts.

        Returns False (and does nothing) when a trigger is already active.
        """
        if self.is_active:
            logger.info("Emergency already active, ignoring trigger")
            return False

        contacts = list(contacts)
        self._generation += 1
        generation = self._generation
        self.progress = 0
        self.event = None
        self.error = None
        self.alert = None
        self.upload_progress = None
        self._arm_reset_timer()

        try:
            self._enter(SequencerState.AUTHENTICATING, PROGRESS_AUTHENTICATING)
            user = await self.auth.ensure_authenticated()
            profile = await self.cloud.get_user_profile(user.id)
            user_name = profile.full_name if profile else None
            user_phone = profile.phone_number if profile else None
            if not self._is_current(generation):
                return True

            self._enter(SequencerState.LOCATING_DEVICE, PROGRESS_LOCATING)
            location = await self._locate(location_provider or self.location_provider)
            if not self._is_current(generation):
                return True

            self._enter(SequencerState.CREATING_RECORD, PROGRESS_CREATING_RECORD)
            record_id = await self.cloud.create_emergency_record(
                user.id,
                location,
                contacts,
                user_name=user_name,
                user_phone=user_phone,
                device_info=device_info or self.device_info,
            )
            event = EmergencyEvent(
                id=record_id,
                timestamp=datetime.now(timezone.utc),
                location=location,
            )
            if generation in self._cancelled_generations:
                # cancelled while the insert was in flight; a newer trigger
                # may already own self.event
                await self._cancel_event(event)
                if generation == self._generation:
                    self.event = event
                return True
            if generation != self._generation:
                return True
            self.event = event

            self._enter(SequencerState.RECORDING, PROGRESS_RECORDING)
            if self.recorder is not None:
                media_uri = await self.recorder.record()
                if not self._is_current(generation):
                    return True

                self._enter(SequencerState.UPLOADING)
                media_url = await self.cloud.upload_recording(
                    record_id, user.id, media_uri, on_progress=self._on_upload_progress
                )
                self.event.media_files.append(media_url)
                if not self._is_current(generation):
                    return True

            self._enter(SequencerState.NOTIFYING, PROGRESS_NOTIFYING)
            notified = await self.notifier.notify_contacts(contacts, self.event, user_name)
            self.event.contacts_notified = notified
            if not self._is_current(generation):
                return True

            await self.cloud.update_emergency_record(
                record_id,
                require_status=EventStatus.ACTIVE,
                status=EventStatus.COMPLETED,
                emergency_contacts=self._record_contacts(contacts, notified),
            )
            if not self._is_current(generation):
                return True
            self.event.transition(EventStatus.COMPLETED)
            self._enter(SequencerState.COMPLETED, PROGRESS_COMPLETED)

        except Exception as e:
            if not self._is_current(generation):
                logger.warning("Emergency step failed after cancel/reset: %s", e)
                return True
            logger.error("Emergency system error: %s", e)
            self.error = str(e)
            self._enter(SequencerState.FAILED)
            self._raise_alert()
        finally:
            self._cancelled_generations.discard(generation)

        return True

    async def cancel(self) -> bool:
        """
        Cancel the active trigger. Returns False when nothing is active.
        """
        if not self.is_active:
            return False

        self._clear_reset_timer()

        if self.state == SequencerState.COMPLETED:
            # nothing left to cancel; dismiss the finished trigger
            self._reset()
            return True

        self._cancelled_generations.add(self._generation)
        if self.event and self.event.status == EventStatus.ACTIVE:
            await self._cancel_event(self.event)

        self.state = SequencerState.CANCELLED
        logger.info("Emergency cancelled")
        return True

    async def handle_recording_complete(self, media_url: str) -> None:
        """Attach a clip uploaded outside the sequence to the current event."""
        if not self.event:
            return
        try:
            await self.cloud.update_emergency_record(self.event.id, file_url=media_url)
            self.event.media_files.append(media_url)
        except Exception as e:
            logger.error("Failed to update media files: %s", e)
