"""Device location providers used by the emergency sequencer."""

from typing import Optional

from services.emergency.models import Location


class LocationUnavailableError(Exception):
    pass


class LocationProvider:
    async def get_current_position(self) -> Location:
        raise NotImplementedError


class ReportedLocationProvider(LocationProvider):
    """Serves the GPS fix the device sent along with its trigger request."""

    def __init__(self, location: Optional[Location] = None):
        self.location = location

    async def get_current_position(self) -> Location:
        if self.location is None:
            raise LocationUnavailableError("Device did not report a location")
        return self.location
