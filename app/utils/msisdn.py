"""
MSISDN helpers: normalization to E.164 digits (no '+'), validation, masking.
"""
import re

from app.core.config import settings
from app.core.errors import InvalidMsisdn

_MIN_DIGITS = 8
_MAX_DIGITS = 15
_DIGITS_RE = re.compile(r"[0-9]+\Z", re.ASCII)


def normalize_msisdn(raw: str | None, default_country_code: str | None = None) -> str:
    """
    '+49 170 1234567', '0049170...', '0170...' -> '491701234567'.
    National numbers (single leading 0) get the default country code.
    Raises InvalidMsisdn when the result is not 8-15 digits.
    """
    if not raw:
        raise InvalidMsisdn("empty msisdn")
    if not raw.isascii():
        # Non-ASCII digits would otherwise be dropped and leave a different, shorter number
        raise InvalidMsisdn("msisdn has non-ascii characters")
    cc = default_country_code if default_country_code is not None else settings.default_country_code
    cleaned = re.sub(r"[^0-9+]", "", raw.strip())
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    elif cleaned.startswith("00"):
        cleaned = cleaned[2:]
    elif cleaned.startswith("0"):
        cleaned = cc + cleaned[1:]
    if not _DIGITS_RE.match(cleaned) or not (_MIN_DIGITS <= len(cleaned) <= _MAX_DIGITS):
        raise InvalidMsisdn("msisdn has invalid format")
    if cleaned.startswith("0"):
        raise InvalidMsisdn("msisdn has invalid format")
    return cleaned


def is_normalized_msisdn(value: str | None) -> bool:
    """True if value is already a normalized MSISDN (used for untrusted cookie input)."""
    if not value or not _DIGITS_RE.match(value):
        return False
    return _MIN_DIGITS <= len(value) <= _MAX_DIGITS and not value.startswith("0")


def mask_msisdn(value: str | None) -> str:
    """Logs never carry the full number: 4917******567."""
    if not value:
        return ""
    if len(value) < _MIN_DIGITS:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 7) + value[-3:]
