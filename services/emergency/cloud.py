"""
Cloud service facade for emergency evidence.

Pass-through wrappers over the hosted backend: emergency rows and user
profiles live in Postgres (SQLAlchemy async sessions), recordings go to the
Supabase storage bucket.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from common.constants import RECORDING_CONTENT_TYPE, RECORDINGS_BUCKET
from common.emergency_status import EventStatus
from libs.supabase_client import SupabaseError
from libs.supabase_storage import SupabaseStorage
from models.emergency import EmergencyRecord
from models.user_models import UserProfile
from services.emergency.models import DeviceInfo, Location

logger = logging.getLogger(__name__)

# Columns callers are allowed to patch
UPDATABLE_FIELDS = {"file_url", "status", "emergency_contacts", "location", "user_name", "user_phone"}


class CloudServiceError(Exception):
    """Raised when a row or storage operation fails."""


class RecordNotFoundError(CloudServiceError):
    pass


class RecordStateConflictError(CloudServiceError):
    """The record already left the status the caller expected."""

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status



@dataclass
class UploadProgress:
    loaded: int
    total: int
    percentage: float


class CloudService:
    def __init__(
        self,
        session_factory: Callable,
        storage: Optional[SupabaseStorage] = None,
        bucket: str = RECORDINGS_BUCKET,
    ):
        """
        Args:
            session_factory: callable returning an async context manager that
                yields an AsyncSession (e.g. libs.db.AsyncSessionLocal)
            storage: caller-scoped Supabase storage for recordings
            bucket: storage bucket for recordings
        """
        self.session_factory = session_factory
        self.storage = storage
        self.bucket = bucket

    async def _commit(self, session, action: str) -> None:
        try:
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("Failed to %s: %s", action, e)
            raise CloudServiceError(f"Failed to {action}") from e

    # ---------- Emergency records ----------

    async def create_emergency_record(
        self,
        user_id: str,
        location: Optional[Location] = None,
        contacts: Iterable = (),
        user_name: Optional[str] = None,
        user_phone: Optional[str] = None,
        device_info: Optional[DeviceInfo] = None,
    ) -> str:
        record = EmergencyRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            user_name=user_name,
            user_phone=user_phone,
            timestamp=datetime.now(timezone.utc),
            file_url="",
            location=(
                {"latitude": location.latitude, "longitude": location.longitude}
                if location
                else None
            ),
            device_info=(device_info or DeviceInfo()).model_dump(),
            emergency_contacts=[
                {
                    "name": c.name,
                    "phone": c.phone,
                    "relationship": c.relationship,
                    "notified": False,
                }
                for c in contacts
            ],
            status=EventStatus.ACTIVE.value,
        )

        async with self.session_factory() as session:
            session.add(record)
            await self._commit(session, "create emergency record")

        logger.info("Created emergency record %s for user %s", record.id, user_id)
        return record.id

    async def update_emergency_record(
        self,
        record_id: str,
        require_status: Optional[EventStatus] = None,
        **updates,
    ) -> EmergencyRecord:
        """
        Patch a record. With `require_status` the row is locked and only
        patched while it still has that status.
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        async with self.session_factory() as session:
            record = await session.get(
                EmergencyRecord, record_id, with_for_update=require_status is not None
            )
            if record is None:
                raise RecordNotFoundError(f"Emergency record {record_id} not found")
            if require_status is not None and record.status != require_status.value:
                raise RecordStateConflictError(
                    f"Emergency record {record_id} is {record.status}, expected {require_status.value}",
                    current_status=record.status,
                )

            for field, value in updates.items():
                if isinstance(value, EventStatus):
                    value = value.value
                setattr(record, field, value)
            await self._commit(session, "update emergency record")
        return record

    async def get_emergency_record(self, record_id: str) -> Optional[EmergencyRecord]:
        async with self.session_factory() as session:
            try:
                return await session.get(EmergencyRecord, record_id)
            except SQLAlchemyError as e:
                logger.error("Failed to fetch emergency record %s: %s", record_id, e)
                raise CloudServiceError("Failed to fetch emergency record") from e

    async def list_emergency_records(self, user_id: str) -> List[EmergencyRecord]:
        stmt = (
            select(EmergencyRecord)
            .where(EmergencyRecord.user_id == user_id)
            .order_by(EmergencyRecord.timestamp.desc())
        )
        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
            except SQLAlchemyError as e:
                logger.error("Failed to fetch emergency records: %s", e)
                raise CloudServiceError("Failed to fetch emergency records") from e
            return list(result.scalars().all())

    # ---------- Media ----------

    async def upload_recording(
        self,
        record_id: str,
        user_id: str,
        media: Union[bytes, str, Path],
        on_progress: Optional[Callable[[UploadProgress], None]] = None,
    ) -> str:
        """
        Upload a recording and attach its public URL to the record.

        Args:
            record_id: emergency record to patch
            user_id: owner; objects are stored under `{user_id}/`
            media: raw bytes or a local file path
            on_progress: called before and after the upload

        Returns:
            Public URL of the uploaded object
        """
        if self.storage is None:
            raise CloudServiceError("Object storage is not configured")

        if isinstance(media, (str, Path)):
            data = await asyncio.to_thread(Path(media).read_bytes)
        else:
            data = media

        path = f"{user_id}/{int(time.time() * 1000)}.mp4"
        total = len(data)
        if on_progress:
            on_progress(UploadProgress(loaded=0, total=total, percentage=0.0))

        try:
            await self.storage.upload_object(
                self.bucket,
                path,
                data,
                content_type=RECORDING_CONTENT_TYPE,
                upsert=False,
            )
        except SupabaseError as e:
            raise CloudServiceError(f"Failed to upload recording: {e.message}") from e

        if on_progress:
            on_progress(UploadProgress(loaded=total, total=total, percentage=100.0))

        public_url = await self.storage.get_public_url(self.bucket, path)
        await self.update_emergency_record(record_id, file_url=public_url)
        return public_url

    # ---------- Profiles ----------

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        async with self.session_factory() as session:
            try:
                return await session.get(UserProfile, user_id)
            except SQLAlchemyError as e:
                logger.error("Failed to fetch profile for %s: %s", user_id, e)
                raise CloudServiceError("Failed to fetch user profile") from e

    async def create_user_profile(
        self, user_id: str, full_name: str, phone_number: str
    ) -> UserProfile:
        profile = UserProfile(
            user_id=user_id,
            full_name=full_name,
            phone_number=phone_number,
            created_at=datetime.now(timezone.utc),
        )
        async with self.session_factory() as session:
            session.add(profile)
            await self._commit(session, "create user profile")
        return profile
