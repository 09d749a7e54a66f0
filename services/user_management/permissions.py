"""
Permission gateway: queries and requests the OS permissions the emergency
flow depends on (location, camera, microphone).

The device side is reached through a PermissionProvider. The bundled
ReportedPermissionProvider keeps the grants that a device last reported to
the API, so the backend can tell whether a trigger will be able to record.
"""

import json
import logging
from typing import Dict, Optional

from pydantic import BaseModel

from common.constants import PERMISSIONS_STORAGE_KEY
from common.emergency_status import PermissionKind
from services.user_management.settings_store import KeyValueStorage

logger = logging.getLogger(__name__)

GRANTED = "granted"
DENIED = "denied"
UNDETERMINED = "undetermined"


class PermissionStatus(BaseModel):
    location: bool = False
    camera: bool = False
    microphone: bool = False
    notifications: bool = False


class PermissionProvider:
    """Device permission boundary."""

    platform: str = "web"

    async def get_status(self, kind: PermissionKind) -> str:
        raise NotImplementedError

    async def request(self, kind: PermissionKind) -> str:
        raise NotImplementedError

    async def request_background_location(self) -> str:
        raise NotImplementedError


class ReportedPermissionProvider(PermissionProvider):
    """Permission state as last reported by the device."""

    def __init__(self, storage: KeyValueStorage, key: str = PERMISSIONS_STORAGE_KEY, platform: str = "web"):
        self.storage = storage
        self.key = key
        self.platform = platform

    async def _load(self) -> Dict[str, str]:
        raw = await self.storage.get_item(self.key)
        return json.loads(raw) if raw else {}

    async def report(self, statuses: Dict[str, str]) -> None:
        current = await self._load()
        current.update(statuses)
        await self.storage.set_item(self.key, json.dumps(current))

    async def get_status(self, kind: PermissionKind) -> str:
        return (await self._load()).get(kind.value, UNDETERMINED)

    async def request(self, kind: PermissionKind) -> str:
        # The prompt itself happens on the device; answer with what it reported
        return await self.get_status(kind)

    async def request_background_location(self) -> str:
        return (await self._load()).get("background_location", UNDETERMINED)


class PermissionGateway:
    def __init__(self, provider: PermissionProvider):
        self.provider = provider
        self.permissions = PermissionStatus()

    @property
    def is_web(self) -> bool:
        return self.provider.platform == "web"

    async def check_permissions(self) -> PermissionStatus:
        try:
            location = await self.provider.get_status(PermissionKind.LOCATION)
            camera = await self.provider.get_status(PermissionKind.CAMERA)

            # Browsers grant the microphone together with the camera prompt
            microphone_granted = True
            if not self.is_web:
                microphone = await self.provider.get_status(PermissionKind.MICROPHONE)
                microphone_granted = microphone == GRANTED

            self.permissions = PermissionStatus(
                location=location == GRANTED,
                camera=camera == GRANTED,
                microphone=microphone_granted,
                notifications=True,
            )
        except Exception as e:
            logger.error("Error checking permissions: %s", e)
        return self.permissions

    async def _request(self, kind: PermissionKind) -> bool:
        try:
            status = await self.provider.request(kind)
            if kind == PermissionKind.LOCATION and status == GRANTED and not self.is_web:
                await self.provider.request_background_location()
            await self.check_permissions()
            return status == GRANTED
        except Exception as e:
            logger.error("Error requesting %s permission: %s", kind.value, e)
            return False

    async def request_location_permission(self) -> bool:
        return await self._request(PermissionKind.LOCATION)

    async def request_camera_permission(self) -> bool:
        return await self._request(PermissionKind.CAMERA)

    async def request_microphone_permission(self) -> bool:
        return await self._request(PermissionKind.MICROPHONE)

    async def request(self, kind: PermissionKind) -> Optional[bool]:
        handlers = {
            PermissionKind.LOCATION: self.request_location_permission,
            PermissionKind.CAMERA: self.request_camera_permission,
            PermissionKind.MICROPHONE: self.request_microphone_permission,
        }
        handler = handlers.get(kind)
        return await handler() if handler else None
