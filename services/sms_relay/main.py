# Run:
# uvicorn services.sms_relay.main:app --host 0.0.0.0 --port 20001 --reload
# Docs: http://127.0.0.1:20001/docs

import logging

from dotenv import load_dotenv
from fastapi import Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse

# Load environment variables from .env file
load_dotenv()

from common.constants import APP_VERSION
from common.emergency_status import SMSStatus
from libs.fastapi_service import FastAPIServiceFactory, ServiceAppConfig, configure_logging
from libs.twilio_client import TwilioConfigError, get_twilio_client

configure_logging()
logger = logging.getLogger(__name__)

service_config = ServiceAppConfig(
    title="Zicom Safety SMS Relay",
    description="Relays emergency SMS from web clients to Twilio.",
    service_name="sms_relay",
    version=APP_VERSION,
)

factory = FastAPIServiceFactory(service_config)
app = factory.create_app()

# Business metric: relay outcomes
SMS_RELAY_MESSAGES_TOTAL = factory.add_business_metric(
    "sms_relay_messages_total",
    "Total SMS relay requests by outcome",
    ["outcome"],
)


def _plain(message: str, status_code: int) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=status_code)


@app.post("/api/send-sms")
async def send_sms(request: Request):
    """
    Send one SMS through Twilio.

    Body: {"to": "+15551234567", "message": "..."}
    Errors are plain text, the success body is JSON.
    """
    try:
        body = await request.json()
        to = body.get("to")
        message = body.get("message")

        if not to or not message:
            SMS_RELAY_MESSAGES_TOTAL.labels(outcome="rejected").inc()
            return _plain("Missing required fields: to, message", 400)

        try:
            twilio = get_twilio_client()
        except TwilioConfigError as e:
            logger.error("Twilio configuration missing: %s", e)
            SMS_RELAY_MESSAGES_TOTAL.labels(outcome="error").inc()
            return _plain("SMS service configuration error", 500)

        result = await run_in_threadpool(twilio.send_sms, to, message)
        if result["status"] != SMSStatus.SENT:
            logger.error("Twilio API error: %s", result.get("error"))
            SMS_RELAY_MESSAGES_TOTAL.labels(outcome="failed").inc()
            return _plain("Failed to send SMS", 500)

        SMS_RELAY_MESSAGES_TOTAL.labels(outcome="sent").inc()
        return JSONResponse(
            {
                "success": True,
                "messageId": result["sid"],
                "status": result["message_status"],
            }
        )

    except Exception as e:
        logger.error("SMS API error: %s", e)
        SMS_RELAY_MESSAGES_TOTAL.labels(outcome="error").inc()
        return _plain("Internal server error", 500)
