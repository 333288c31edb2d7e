import re
from typing import NamedTuple, Optional

from pydantic import EmailStr, TypeAdapter, ValidationError

from config import (
    PAN_REGEX, ADDRESS_MIN_LENGTH, ADDRESS_MAX_LENGTH,
    ADMIN_NOTES_MAX_LENGTH, FAILURE_REASON_MAX_LENGTH,
    EMAIL_MAX_LENGTH, PASSWORD_MIN_LENGTH, PASSWORD_MAX_LENGTH
)

pan_regex = re.compile(PAN_REGEX)
address_forbidden_regex = re.compile(r"[<>{}]")
email_adapter = TypeAdapter(EmailStr)

PAN_FORMAT_ERROR = "Invalid PAN format. Must be 5 letters, 4 digits, 1 letter (e.g., ABCDE1234F)"

# Applied in order; "&" must go first
HTML_ESCAPES = [
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
    ("/", "&#x2F;"),
]


class ValidationResult(NamedTuple):
    is_valid: bool
    value: Optional[str] = None
    error: Optional[str] = None


def validate_pan_number(value: Optional[str]) -> ValidationResult:
    """Normalize and validate a PAN-style document number"""
    upper_value = (value or "").upper().strip()

    if not upper_value:
        return ValidationResult(False, error="PAN number is required")

    if len(upper_value) != 10:
        return ValidationResult(False, error="PAN number must be exactly 10 characters")

    if not pan_regex.fullmatch(upper_value):
        return ValidationResult(False, error=PAN_FORMAT_ERROR)

    return ValidationResult(True, value=upper_value)


def validate_email(value: Optional[str]) -> ValidationResult:
    trimmed = (value or "").strip()
    if len(trimmed) > EMAIL_MAX_LENGTH:
        return ValidationResult(False, error=f"Email must be less than {EMAIL_MAX_LENGTH} characters")
    try:
        email = email_adapter.validate_python(trimmed)
    except ValidationError:
        return ValidationResult(False, error="Please enter a valid email address")
    return ValidationResult(True, value=str(email))


def validate_password(value: Optional[str]) -> ValidationResult:
    value = value or ""
    if len(value) < PASSWORD_MIN_LENGTH:
        return ValidationResult(False, error=f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(value) > PASSWORD_MAX_LENGTH:
        return ValidationResult(False, error=f"Password must be less than {PASSWORD_MAX_LENGTH} characters")
    return ValidationResult(True, value=value)


def validate_address(value: Optional[str]) -> ValidationResult:
    """
    Validate a user-edited address.

    The trimmed text is returned unescaped; escaping happens once, when the
    address is rendered (see sanitize_text).
    """
    trimmed = (value or "").strip()

    if not trimmed:
        return ValidationResult(False, error="Address is required")

    if len(trimmed) < ADDRESS_MIN_LENGTH:
        return ValidationResult(False, error=f"Address must be at least {ADDRESS_MIN_LENGTH} characters")

    if len(trimmed) > ADDRESS_MAX_LENGTH:
        return ValidationResult(False, error=f"Address must be less than {ADDRESS_MAX_LENGTH} characters")

    if address_forbidden_regex.search(trimmed):
        return ValidationResult(False, error="Address contains invalid characters")

    return ValidationResult(True, value=trimmed)


def validate_admin_notes(value: Optional[str]) -> ValidationResult:
    value = value or ""
    if len(value) > ADMIN_NOTES_MAX_LENGTH:
        return ValidationResult(False, error=f"Notes must be less than {ADMIN_NOTES_MAX_LENGTH} characters")
    return ValidationResult(True, value=value)


def validate_failure_reason(value: Optional[str]) -> ValidationResult:
    value = value or ""
    if len(value) > FAILURE_REASON_MAX_LENGTH:
        return ValidationResult(False, error=f"Reason must be less than {FAILURE_REASON_MAX_LENGTH} characters")
    return ValidationResult(True, value=value)


def sanitize_text(text: Optional[str]) -> str:
    """
    HTML-escape untrusted text for display.

    Not idempotent: "&" is escaped as well, so running it over already
    escaped text double-encodes every entity. Call it exactly once, at
    render time.
    """
    if not text:
        return ""
    for raw, entity in HTML_ESCAPES:
        text = text.replace(raw, entity)
    return text
