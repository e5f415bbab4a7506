import re
from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .core.config import settings
from .exceptions import InvalidPhoneFormat

# =========================
# Clocks
# =========================
def clinic_timezone() -> ZoneInfo:
    return ZoneInfo(settings.CLINIC_TIMEZONE)


def clinic_now() -> datetime:
    """Current wall-clock time in the clinic's timezone."""
    return datetime.now(clinic_timezone())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps read back from the database."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_clock_time(value: time) -> str:
    """09:00 -> '9:00 AM'"""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


# =========================
# Phone numbers
# =========================
_PHONE_SEPARATORS = re.compile(r"[\s\-().]")
NATIONAL_NUMBER_LENGTH = 9


def normalize_phone(raw: Optional[str], country_code: Optional[str] = None) -> str:
    """Normalize a mobile number to the country-code-prefixed form M-Pesa expects.

    '0712345678', '712345678' and '+254712345678' all become '254712345678'.
    """
    country_code = country_code or settings.PHONE_COUNTRY_CODE
    if not raw:
        raise InvalidPhoneFormat("Phone number is required")

    digits = _PHONE_SEPARATORS.sub("", raw.strip())
    if digits.startswith("+"):
        digits = digits[1:]
    if not digits.isdigit():
        raise InvalidPhoneFormat(f"Phone number '{raw}' contains invalid characters")

    if digits.startswith(country_code) and len(digits) == len(country_code) + NATIONAL_NUMBER_LENGTH:
        national = digits[len(country_code):]
    elif digits.startswith("0") and len(digits) == NATIONAL_NUMBER_LENGTH + 1:
        national = digits[1:]
    elif len(digits) == NATIONAL_NUMBER_LENGTH:
        national = digits
    else:
        raise InvalidPhoneFormat(
            f"Phone number '{raw}' is not valid. Use the format {country_code}XXXXXXXXX"
        )

    # Mobile ranges start with 7 or 1
    if national[0] not in ("7", "1"):
        raise InvalidPhoneFormat(f"Phone number '{raw}' is not a mobile number")
    return f"{country_code}{national}"
