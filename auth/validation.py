"""
auth/validation.py -- Field-level validation for the authentication flows.

All checks run before the store is touched. Problems are collected rather than
raised one at a time, so a registration form gets every field error in one
response: ValidationError.field_errors is a list of {"field", "message"}.

Email syntax is checked with email-validator (the library behind pydantic's
EmailStr). Deliverability (DNS) is NOT checked -- the OTP email is the real
proof that the address works.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import date

from email_validator import EmailNotValidError, validate_email

from auth.errors import ValidationError
from auth.otp import CODE_LENGTH

MIN_PASSWORD_LENGTH = 6
MIN_AGE_YEARS = 13
NAME_MAX_LENGTH = 50


def _email_error(email: str | None) -> str | None:
    if not email or not email.strip():
        return "Email is required"
    try:
        validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        return "Invalid email address"
    return None


def _years_before(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        # today is Feb 29 and the target year is not a leap year
        return today.replace(year=today.year - years, day=28)


def parse_date_of_birth(value: str | date | None) -> date | None:
    """Accept a date, "YYYY-MM-DD", or a full ISO timestamp from a JS client."""
    if value is None or isinstance(value, date):
        return value
    text = value.strip()
    if len(text) < 10:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def require_email(email: str | None) -> None:
    """Raise ValidationError if the email is missing or syntactically invalid."""
    message = _email_error(email)
    if message:
        raise ValidationError([{"field": "email", "message": message}])


def validate_registration(
    email: str | None,
    password: str | None,
    name: str | None,
    date_of_birth: str | date | None,
    today: date,
) -> tuple[str, date]:
    """Validate a registration request. Returns the cleaned (name, date_of_birth)."""
    errors: list[dict[str, str]] = []

    email_message = _email_error(email)
    if email_message:
        errors.append({"field": "email", "message": email_message})

    if not password or len(password) < MIN_PASSWORD_LENGTH:
        errors.append(
            {"field": "password", "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"}
        )

    clean_name = (name or "").strip()
    if not clean_name:
        errors.append({"field": "name", "message": "Name is required"})
    elif len(clean_name) > NAME_MAX_LENGTH:
        errors.append({"field": "name", "message": f"Name must be at most {NAME_MAX_LENGTH} characters"})

    dob = parse_date_of_birth(date_of_birth)
    if dob is None:
        errors.append({"field": "dateOfBirth", "message": "Date of birth must be a date (YYYY-MM-DD)"})
    elif dob > _years_before(today, MIN_AGE_YEARS):
        errors.append({"field": "dateOfBirth", "message": f"User must be at least {MIN_AGE_YEARS} years old"})

    if errors:
        raise ValidationError(errors)
    return clean_name, dob


def require_otp_format(code: str | None) -> None:
    if code is None or len(code) != CODE_LENGTH:
        raise ValidationError([{"field": "otp", "message": f"OTP must be exactly {CODE_LENGTH} characters"}])
