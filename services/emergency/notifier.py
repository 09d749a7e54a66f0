"""
Emergency contact notifier.

Sends one SMS per contact, in priority order, through an SMS channel.
A failure for one contact is logged and the next contact is tried.
"""

import logging
from typing import Iterable, List, Optional

import httpx
from fastapi.concurrency import run_in_threadpool

from common.constants import APP_NAME
from common.emergency_status import SMSStatus
from libs.twilio_client import TwilioClient, TwilioConfigError, get_twilio_client
from services.emergency.models import EmergencyEvent

logger = logging.getLogger(__name__)


class SmsDeliveryError(Exception):
    pass


def build_alert_message(event: EmergencyEvent, user_name: Optional[str] = None) -> str:
    location_text = event.location.maps_link() if event.location else "Location unavailable"
    who = user_name or f"A {APP_NAME} user"
    timestamp = event.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")
    return (
        f"🚨 EMERGENCY ALERT from {APP_NAME} 🚨\n\n"
        f"{who} may need immediate assistance.\n\n"
        f"Time: {timestamp}\n"
        f"Location: {location_text}\n\n"
        "This is an automated emergency message. Please check on them immediately "
        "or contact emergency services if needed."
    )


# ========= Channels =========


class SmsChannel:
    """Base class for SMS senders"""

    async def is_available(self) -> bool:
        return True

    async def send(self, to_phone: str, message: str) -> Optional[str]:
        """Send one SMS. Returns a provider message id; raises SmsDeliveryError."""
        raise NotImplementedError("Channel must implement send()")


class RelaySmsChannel(SmsChannel):
    """Posts {to, message} to the SMS relay endpoint."""

    def __init__(self, relay_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.relay_url = relay_url
        self.timeout = timeout
        self.transport = transport

    async def send(self, to_phone: str, message: str) -> Optional[str]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.relay_url, json={"to": to_phone, "message": message}
                )
        except httpx.HTTPError as e:
            raise SmsDeliveryError(f"SMS relay unreachable: {e}") from e

        if response.status_code != 200:
            raise SmsDeliveryError(
                f"SMS relay returned {response.status_code}: {response.text}"
            )
        return response.json().get("messageId")


class TwilioSmsChannel(SmsChannel):
    """Sends directly through the Twilio API."""

    def __init__(self, client: Optional[TwilioClient] = None):
        self._client = client

    def _get_client(self) -> TwilioClient:
        if self._client is None:
            self._client = get_twilio_client()
        return self._client

    async def is_available(self) -> bool:
        try:
            self._get_client()
        except TwilioConfigError:
            return False
        return True

    async def send(self, to_phone: str, message: str) -> Optional[str]:
        result = await run_in_threadpool(self._get_client().send_sms, to_phone, message)
        if result["status"] != SMSStatus.SENT:
            raise SmsDeliveryError(result.get("error") or "Twilio rejected the message")
        return result["sid"]


# ========= Notifier =========


class Notifier:
    def __init__(self, channel: SmsChannel):
        self.channel = channel

    async def notify_contacts(
        self,
        contacts: Iterable,
        event: EmergencyEvent,
        user_name: Optional[str] = None,
    ) -> List[str]:
        """
        Alert every contact. Returns the ids of the contacts that were reached.
        """
        if not await self.channel.is_available():
            logger.warning("SMS not available on this device")
            return []

        message = build_alert_message(event, user_name)
        notified: List[str] = []
        for contact in contacts:
            try:
                message_id = await self.channel.send(contact.phone, message)
                notified.append(contact.id)
                logger.info("Notified %s (%s)", contact.name, message_id)
            except Exception as e:
                logger.error("Failed to notify %s: %s", contact.name, e)
        return notified
