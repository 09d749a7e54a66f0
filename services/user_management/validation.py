"""
Sign-up / sign-in form validation.

Each check returns an error message, or None when the value is valid. The
form helpers collect the messages per camelCase field so a client can show
them next to the matching input.
"""

import re
from typing import Dict, Optional

import validators

MIN_PASSWORD_LENGTH = 6
MIN_FULL_NAME_LENGTH = 2
PHONE_DIGITS = 10

_NON_DIGITS = re.compile(r"\D")


def validate_email(email: str) -> Optional[str]:
    if not email or not email.strip():
        return "Email is required"
    if not validators.email(email.strip()):
        return "Please enter a valid email address"
    return None


def validate_password(password: str) -> Optional[str]:
    if not password:
        return "Password is required"
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    return None


def validate_full_name(full_name: str) -> Optional[str]:
    if not full_name or not full_name.strip():
        return "Full name is required"
    if len(full_name.strip()) < MIN_FULL_NAME_LENGTH:
        return f"Full name must be at least {MIN_FULL_NAME_LENGTH} characters"
    return None


def validate_phone_number(phone_number: str) -> Optional[str]:
    if not phone_number or not phone_number.strip():
        return "Phone number is required"
    # US numbers only: 10 digits once punctuation is stripped
    if len(_NON_DIGITS.sub("", phone_number)) != PHONE_DIGITS:
        return "Please enter a valid 10-digit phone number"
    return None


def validate_password_confirmation(password: str, confirm_password: str) -> Optional[str]:
    if not confirm_password:
        return "Please confirm your password"
    if password != confirm_password:
        return "Passwords do not match"
    return None


def validate_sign_up_form(
    email: str,
    password: str,
    confirm_password: str,
    full_name: str,
    phone_number: str,
) -> Dict[str, str]:
    checks = {
        "email": validate_email(email),
        "password": validate_password(password),
        "confirmPassword": validate_password_confirmation(password, confirm_password),
        "fullName": validate_full_name(full_name),
        "phoneNumber": validate_phone_number(phone_number),
    }
    return {field: error for field, error in checks.items() if error}


def validate_sign_in_form(email: str, password: str) -> Dict[str, str]:
    checks = {
        "email": validate_email(email),
        "password": validate_password(password),
    }
    return {field: error for field, error in checks.items() if error}
