"""
Input checks used by the store before it talks to the gateway.

Each validator raises `ValidationError` with a message suitable for showing to
the user; nothing here performs I/O.
"""
# rehabhub/validation.py

import re
from datetime import date, datetime

from rehabhub.exceptions import ValidationError
from rehabhub.models import PROGRESS_AREAS, TIERS, USER_STATUSES, SESSION_STATUSES, normalize_role

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
TIME_PATTERN = re.compile(r'^\d{1,2}:\d{2}$')
MIN_PASSWORD_LENGTH = 6


def is_valid_email(email) -> bool:
    return isinstance(email, str) and bool(EMAIL_PATTERN.match(email))


def require_fields(data: dict, fields) -> None:
    """Raises if any of `fields` is missing or empty in `data`."""
    if all(data.get(field) for field in fields):
        return
    if len(fields) == 1:
        names = fields[0]
    elif len(fields) == 2:
        names = f"{fields[0]} and {fields[1]}"
    else:
        names = ', '.join(fields[:-1]) + f", and {fields[-1]}"
    raise ValidationError(f"Missing required fields: {names} are required")


def require_id(value, label: str) -> None:
    if not value:
        raise ValidationError(f"{label} is required")


def check_email(email) -> None:
    if not is_valid_email(email):
        raise ValidationError('Invalid email format')


def check_password(password) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def check_role(role) -> str:
    canonical = normalize_role(role)
    if canonical is None:
        raise ValidationError(f"Unknown role: {role}")
    return canonical


def check_tier(tier) -> None:
    if tier not in TIERS:
        raise ValidationError(f"Tier must be one of {', '.join(TIERS)}")


def check_user_status(status) -> None:
    if status not in USER_STATUSES:
        raise ValidationError(f"Status must be one of {', '.join(USER_STATUSES)}")


def check_session_status(status) -> None:
    if status not in SESSION_STATUSES:
        raise ValidationError(f"Session status must be one of {', '.join(SESSION_STATUSES)}")


def parse_date(value):
    """Parses an ISO date or datetime string, returning a naive `datetime`.

    Args:
        value: A `date`, `datetime` or ISO-formatted string.

    Returns:
        datetime: The parsed value.

    Raises:
        ValidationError: If the value cannot be parsed.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError as exc:
            raise ValidationError('Invalid date format') from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def check_date(value) -> None:
    parse_date(value)


def check_time(value) -> None:
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        raise ValidationError('Invalid time format (use HH:MM)')
    hours, minutes = (int(part) for part in value.split(':'))
    if hours > 23 or minutes > 59:
        raise ValidationError('Invalid time format (use HH:MM)')


def check_duration(value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValidationError('Duration must be a positive number of minutes')


def check_rating(value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ValidationError('Rating must be a whole number between 1 and 5')


def check_progress(progress: dict) -> dict:
    """Validates the four progress dimensions and fills in missing ones with 0.

    Args:
        progress (dict): Values keyed by the names in `PROGRESS_AREAS`.

    Returns:
        dict: All four dimensions as numbers.

    Raises:
        ValidationError: If a value is not a number or lies outside [0, 100].
    """
    values = {}
    for area in PROGRESS_AREAS:
        value = progress.get(area)
        if value is None:
            value = 0
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{area} must be a number")
        if value < 0 or value > 100:
            raise ValidationError(f"{area} must be between 0 and 100")
        values[area] = value
    return values


BLOOD_PRESSURE_PATTERN = re.compile(r'^\d{2,3}/\d{2,3}$')
NUMERIC_VITALS = ('heart_rate', 'temperature', 'oxygen_saturation', 'respiratory_rate', 'weight')


def check_vitals(vitals) -> dict:
    """Validates a set of vital signs; unknown readings pass through unchanged.

    Raises:
        ValidationError: If nothing was recorded, a numeric reading is not a positive
            number, or blood pressure is not written as systolic/diastolic.
    """
    if not isinstance(vitals, dict) or not vitals:
        raise ValidationError('Vitals are required')
    for field in NUMERIC_VITALS:
        if field not in vitals:
            continue
        value = vitals[field]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ValidationError(f"{field} must be a positive number")
    if 'blood_pressure' in vitals:
        value = vitals['blood_pressure']
        if not isinstance(value, str) or not BLOOD_PRESSURE_PATTERN.match(value):
            raise ValidationError('blood_pressure must look like 120/80')
    return dict(vitals)


def check_choice(value, choices, label: str) -> None:
    if value not in choices:
        raise ValidationError(f"{label} must be one of {', '.join(choices)}")


def check_text(value, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(message)
    return value.strip()
