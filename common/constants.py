"""
Application-wide constants for the Zicom Safety backend.

This module contains all shared constants used across the application.
"""

import os

# ========= Service Configuration =========
# Service configuration: service_name -> (module_path, port)
SERVICES = {
    "user_management": ("services.user_management.main", 20000),
    "sms_relay": ("services.sms_relay.main", 20001),
    "emergency": ("services.emergency.main", 20006),
}

APP_NAME = "Zicom Safety"
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

# ========= Auth Configuration =========
# Supabase access tokens are HS256 JWTs signed with the project secret
JWT_ALGORITHMS = ["HS256"]
JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")

# ========= Redis Configuration =========
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))

# ========= Settings Store =========
SETTINGS_STORAGE_KEY = "zicom_settings"
PERMISSIONS_STORAGE_KEY = "zicom_permissions"
MAX_EMERGENCY_CONTACTS = 3
POWER_BUTTON_SENSITIVITY_MIN = 2
POWER_BUTTON_SENSITIVITY_MAX = 5
DEFAULT_POWER_BUTTON_SENSITIVITY = 3

# ========= Emergency Sequencer =========
# Auto-reset ceiling for one trigger (2 minutes)
EMERGENCY_RESET_SECONDS = 120.0

# Progress percentage set on entry to each step
PROGRESS_AUTHENTICATING = 10
PROGRESS_LOCATING = 20
PROGRESS_CREATING_RECORD = 30
PROGRESS_RECORDING = 40
PROGRESS_NOTIFYING = 80
PROGRESS_COMPLETED = 100

EMERGENCY_ALERT_TITLE = "Emergency Error"
EMERGENCY_ALERT_MESSAGE = (
    "Failed to complete emergency protocol. Please call emergency services directly."
)

# ========= Recorder =========
RECORDING_MAX_SECONDS = 10.0
# How long a capture device gets to honour a stop request
RECORDING_STOP_GRACE_SECONDS = 5.0
RECORDING_PROGRESS_STEP = 10
RECORDING_PROGRESS_INTERVAL_SECONDS = 1.0

# ========= Object Storage =========
RECORDINGS_BUCKET = os.getenv("SUPABASE_RECORDINGS_BUCKET", "recordings")
RECORDING_CONTENT_TYPE = "video/mp4"
