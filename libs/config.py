"""
Configuration module for loading environment variables
"""

import os
from typing import Optional


class Config:
    """Application configuration"""

    # Twilio Configuration
    TWILIO_ACCOUNT_SID: Optional[str] = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN: Optional[str] = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_PHONE_NUMBER: Optional[str] = os.getenv("TWILIO_PHONE_NUMBER")

    # Supabase Configuration
    SUPABASE_URL: Optional[str] = os.getenv("SUPABASE_URL")
    SUPABASE_ANON_KEY: Optional[str] = os.getenv("SUPABASE_ANON_KEY")
    SUPABASE_JWT_SECRET: Optional[str] = os.getenv("SUPABASE_JWT_SECRET")
    SUPABASE_TIMEOUT: float = float(os.getenv("SUPABASE_TIMEOUT", "10"))

    # Settings store: "memory", "file" or "redis"
    SETTINGS_BACKEND: str = os.getenv("SETTINGS_BACKEND", "memory")
    SETTINGS_DIR: str = os.getenv("SETTINGS_DIR", ".zicom")

    # SMS delivery for emergency alerts: "relay" or "twilio"
    SMS_CHANNEL: str = os.getenv("SMS_CHANNEL", "relay")
    SMS_RELAY_URL: str = os.getenv(
        "SMS_RELAY_URL", "http://localhost:20001/api/send-sms"
    )
    SMS_RELAY_TIMEOUT: float = float(os.getenv("SMS_RELAY_TIMEOUT", "10"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


config = Config()
