"""
Twilio SMS Client
Sends emergency SMS alerts using the Twilio API
"""

import logging
import os
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from common.emergency_status import SMSStatus

logger = logging.getLogger(__name__)


class TwilioConfigError(ValueError):
    """Raised when Twilio credentials are missing."""


class TwilioClient:
    """Wrapper for the Twilio messaging service"""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_phone: Optional[str] = None,
    ):
        self.account_sid = account_sid or os.getenv("TWILIO_ACCOUNT_SID")
        self.auth_token = auth_token or os.getenv("TWILIO_AUTH_TOKEN")
        self.from_phone = from_phone or os.getenv("TWILIO_PHONE_NUMBER")

        if not all([self.account_sid, self.auth_token, self.from_phone]):
            raise TwilioConfigError(
                "Missing Twilio configuration. Please set TWILIO_ACCOUNT_SID, "
                "TWILIO_AUTH_TOKEN, and TWILIO_PHONE_NUMBER in your .env file"
            )

        self.client = Client(self.account_sid, self.auth_token)

    def send_sms(self, to_phone: str, message: str) -> dict:
        """
        Send an SMS message

        Args:
            to_phone: Recipient phone number (E.164 format, e.g., +1234567890)
            message: Message content

        Returns:
            dict with status, sid, message_status and any error information
        """
        try:
            msg = self.client.messages.create(
                body=message, from_=self.from_phone, to=to_phone
            )
            return {
                "status": SMSStatus.SENT.value,
                "sid": msg.sid,
                "to": msg.to,
                "message_status": msg.status,
                "error": None,
            }
        except TwilioRestException as e:
            logger.error("Twilio API error for %s: %s", to_phone, e)
            return {
                "status": SMSStatus.FAILED.value,
                "sid": None,
                "to": to_phone,
                "message_status": "failed",
                "error": str(e),
            }


# Singleton instance
_twilio_client: Optional[TwilioClient] = None


def get_twilio_client() -> TwilioClient:
    """Get or create the Twilio client singleton"""
    global _twilio_client
    if _twilio_client is None:
        _twilio_client = TwilioClient()
    return _twilio_client


def reset_twilio_client() -> None:
    """Drop the cached client so the next call re-reads the environment."""
    global _twilio_client
    _twilio_client = None
