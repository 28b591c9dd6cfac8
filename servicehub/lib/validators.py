"""
Field validators shared by the request schemas and the booking flow.

Each ``validate_*`` function returns an error message, or None when the
value is acceptable, so callers can collect field-level errors.
"""
import re
from typing import Optional

from servicehub.lib.coverage import ZipDirectory, default_zip_directory
from servicehub.lib.settings import settings

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ZIP_PATTERN = re.compile(r"^\d{5}$")

OUT_OF_REGION_MESSAGE = "Service not available in this area. We currently serve Maryland only."
INVALID_ZIP_MESSAGE = "Please enter a valid 5-digit ZIP code."
UNKNOWN_ZIP_MESSAGE = "We don't serve this ZIP code yet."
INVALID_PHONE_MESSAGE = "Invalid phone number format!"
INVALID_EMAIL_MESSAGE = "Please enter a valid email address."


def sanitize_text(value: Optional[str]) -> str:
    return (value or "").strip()


def sanitize_phone(value: Optional[str]) -> str:
    """Keep digits, parentheses, spaces, dashes, dots and a leading plus."""
    return re.sub(r"[^\d()\-\s.+]", "", sanitize_text(value))


def sanitize_zip(value: Optional[str]) -> str:
    return re.sub(r"\D", "", sanitize_text(value))[:5]


def sanitize_email(value: Optional[str]) -> str:
    return sanitize_text(value).lower()


def is_valid_phone(phone: Optional[str]) -> bool:
    """
    US phone numbers: 7 digits (local), 10 digits, or 11 digits with a
    leading country code 1. Everything except digits and parentheses is
    stripped before counting.
    """
    stripped = re.sub(r"[^\d()]", "", phone or "")
    digits = stripped.replace("(", "").replace(")", "")
    if len(digits) == 10 or len(digits) == 7:
        return True
    return len(digits) == 11 and digits.startswith("1")


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def validate_phone(phone: Optional[str]) -> Optional[str]:
    return None if is_valid_phone(phone) else INVALID_PHONE_MESSAGE


def validate_email(email: Optional[str]) -> Optional[str]:
    return None if is_valid_email(email) else INVALID_EMAIL_MESSAGE


def validate_zip(
    zip_code: Optional[str],
    zip_directory: Optional[ZipDirectory] = None,
    require_known: bool = True,
) -> Optional[str]:
    """
    Region check first: a leading digit other than the served region's is
    rejected whether or not the ZIP exists. Then the 5-digit format, then
    (optionally) membership in the ZIP directory.
    """
    value = sanitize_text(zip_code)
    if value and value[0] != settings.service_region_zip_prefix:
        return OUT_OF_REGION_MESSAGE
    if not ZIP_PATTERN.match(value):
        return INVALID_ZIP_MESSAGE
    directory = zip_directory or default_zip_directory
    if require_known and value not in directory:
        return UNKNOWN_ZIP_MESSAGE
    return None
