import re
import secrets
import unicodedata

_NON_DIGIT = re.compile(r"[^0-9]")
_BOOKING_PIN = re.compile(r"^[0-9]{4}$")
_ADMIN_PIN = re.compile(r"^\S{4,}$")


def normalize_pin(raw: object) -> str:
    """Full-width digits become ASCII; everything else that is not 0-9 is dropped."""
    if raw is None:
        return ""
    return _NON_DIGIT.sub("", unicodedata.normalize("NFKC", str(raw)))


def is_booking_pin(value: str) -> bool:
    return bool(_BOOKING_PIN.match(value))


def is_admin_pin(value: str) -> bool:
    return bool(_ADMIN_PIN.match(value))


def pins_match(provided: str, expected: str) -> bool:
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
