"""
Settings store: persists user preferences and the emergency contact list as
one JSON blob under a fixed storage key.

The blob is written through a small key/value storage adapter so the same
store works against device storage (a JSON file), Redis or plain memory.
"""

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from common import storage
from common.constants import (
    DEFAULT_POWER_BUTTON_SENSITIVITY,
    MAX_EMERGENCY_CONTACTS,
    POWER_BUTTON_SENSITIVITY_MAX,
    POWER_BUTTON_SENSITIVITY_MIN,
    SETTINGS_STORAGE_KEY,
)
from common.redis_client import RedisClient, get_redis_client
from libs.config import config

logger = logging.getLogger(__name__)


class SettingsStorageError(Exception):
    """Raised when the settings blob cannot be written."""


class ContactLimitError(Exception):
    """Raised when adding a contact would exceed the contact cap."""


# ========= Models =========


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NewEmergencyContact(_CamelModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    relationship: str = ""


class EmergencyContact(NewEmergencyContact):
    id: str


class AppSettings(_CamelModel):
    emergency_contacts: List[EmergencyContact] = Field(
        default_factory=list, max_length=MAX_EMERGENCY_CONTACTS
    )
    power_button_sensitivity: int = Field(
        DEFAULT_POWER_BUTTON_SENSITIVITY,
        ge=POWER_BUTTON_SENSITIVITY_MIN,
        le=POWER_BUTTON_SENSITIVITY_MAX,
    )
    background_monitoring: bool = True
    location_services: bool = True
    is_first_launch: bool = True

    @field_validator("emergency_contacts")
    @classmethod
    def unique_contact_ids(cls, contacts: List[EmergencyContact]) -> List[EmergencyContact]:
        seen = set()
        for contact in contacts:
            if contact.id in seen:
                raise ValueError(f"Duplicate emergency contact id: {contact.id}")
            seen.add(contact.id)
        return contacts

    def to_blob(self) -> str:
        return self.model_dump_json(by_alias=True)


# ========= Storage adapters =========


class KeyValueStorage:
    """Async string key/value storage (device storage analogue)."""

    async def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def remove_item(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = data if data is not None else {}

    async def get_item(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove_item(self, key: str) -> None:
        self.data.pop(key, None)


class FileStorage(KeyValueStorage):
    """One file per key inside a directory on local storage."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe_key = key.replace("/", "_").replace(":", "_")
        return self.directory / f"{safe_key}.json"

    def _read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(value, encoding="utf-8")

    async def get_item(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def set_item(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._write, key, value)
        except OSError as e:
            raise SettingsStorageError(f"Failed to write {key}: {e}") from e

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, missing_ok=True)


class RedisStorage(KeyValueStorage):
    """Blocking redis client calls run in a worker thread."""

    def __init__(self, client: Optional[RedisClient] = None):
        self.client = client or get_redis_client()

    async def get_item(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self.client.get, key)

    async def set_item(self, key: str, value: str) -> None:
        if not await asyncio.to_thread(self.client.set, key, value):
            raise SettingsStorageError(f"Failed to write {key} to Redis")

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self.client.delete, key)


# ========= Store =========


class SettingsStore:
    """Loads, merges and persists AppSettings for one storage key."""

    def __init__(self, storage: KeyValueStorage, key: str = SETTINGS_STORAGE_KEY):
        self.storage = storage
        self.key = key
        self.settings = AppSettings()
        self.is_loading = True

    async def load(self) -> AppSettings:
        """Read the saved blob. A missing or unreadable blob leaves the defaults."""
        try:
            saved = await self.storage.get_item(self.key)
            if saved:
                self.settings = AppSettings.model_validate(json.loads(saved))
        except (ValueError, ValidationError, OSError) as e:
            logger.error("Failed to load settings for %s: %s", self.key, e)
        finally:
            self.is_loading = False
        return self.settings

    async def save(self, updates: Optional[dict] = None, **fields) -> AppSettings:
        """
        Merge a partial update into the current settings and persist the blob.

        Accepts camelCase or snake_case field names. The in-memory settings
        only change once the write succeeded.
        """
        merged = self.settings.model_dump()
        incoming = AppSettings.model_validate(
            {**merged, **self._normalise(updates or {}), **self._normalise(fields)}
        )
        await self.storage.set_item(self.key, incoming.to_blob())
        self.settings = incoming
        return self.settings

    @staticmethod
    def _normalise(updates: dict) -> dict:
        by_alias = {
            field.alias: name for name, field in AppSettings.model_fields.items()
        }
        return {by_alias.get(k, k): v for k, v in updates.items()}

    async def add_emergency_contact(self, contact: NewEmergencyContact) -> EmergencyContact:
        contacts = list(self.settings.emergency_contacts)
        if len(contacts) >= MAX_EMERGENCY_CONTACTS:
            raise ContactLimitError(
                f"You can add up to {MAX_EMERGENCY_CONTACTS} emergency contacts"
            )

        new_contact = EmergencyContact(id=uuid.uuid4().hex, **contact.model_dump())
        contacts.append(new_contact)
        await self.save(emergency_contacts=contacts)
        return new_contact

    async def remove_emergency_contact(self, contact_id: str) -> bool:
        contacts = [c for c in self.settings.emergency_contacts if c.id != contact_id]
        removed = len(contacts) != len(self.settings.emergency_contacts)
        await self.save(emergency_contacts=contacts)
        return removed

    async def complete_onboarding(self) -> AppSettings:
        return await self.save(is_first_launch=False)


# ========= Backend selection =========


def create_storage(backend: Optional[str] = None) -> KeyValueStorage:
    """Build the key/value storage named by SETTINGS_BACKEND."""
    backend = (backend or config.SETTINGS_BACKEND).lower()
    if backend == "memory":
        return MemoryStorage(storage.device_storage)
    if backend == "file":
        return FileStorage(config.SETTINGS_DIR)
    if backend == "redis":
        return RedisStorage()
    raise ValueError(f"Unknown settings backend: {backend}")


def user_settings_key(user_id: str) -> str:
    return f"{SETTINGS_STORAGE_KEY}:{user_id}"
