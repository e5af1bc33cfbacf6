"""Typed failures raised by the reservation engine and admin operations.

Every error carries a category so callers can tell "fix your input" apart
from "try a different slot" and "try again later".
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCategory(str, Enum):
    INPUT = "input"
    SLOT = "slot"
    RETRY = "retry"
    AUTH = "auth"


GUIDANCE = {
    ErrorCategory.INPUT: "Please check the highlighted fields and submit again.",
    ErrorCategory.SLOT: "This slot cannot be booked right now. Refresh the grid and pick another slot.",
    ErrorCategory.RETRY: "The service is busy. Please try again in a moment.",
    ErrorCategory.AUTH: "The credential was missing or incorrect.",
}


class CourtError(Exception):
    code = "court_error"
    category = ErrorCategory.INPUT
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request rejected"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def guidance(self) -> str:
        return GUIDANCE[self.category]

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
            "guidance": self.guidance,
            "details": self.details,
        }


# Input errors: rejected before any storage access.


class MissingFields(CourtError):
    code = "missing_fields"
    default_message = "Missing fields"


class PlayerCountMismatch(CourtError):
    code = "player_count_mismatch"
    default_message = "Enter one name per player"


class InvalidName(CourtError):
    code = "invalid_name"
    default_message = "Invalid player name"

    def __init__(self, index: int, reason: str, message: str | None = None) -> None:
        super().__init__(message or f"Invalid player name at position {index + 1}: {reason}", index=index, reason=reason)
        self.index = index
        self.reason = reason


class InvalidTimeRange(CourtError):
    code = "invalid_time_range"
    default_message = "Invalid time range"


class InvalidPartySize(CourtError):
    code = "invalid_party_size"
    default_message = "partySize must be 1..4"


class InvalidCourt(CourtError):
    code = "invalid_court"
    default_message = "Unknown court"


class InvalidPin(CourtError):
    code = "invalid_pin"
    default_message = "PIN must be 4 digits"


class InvalidDayConfig(CourtError):
    code = "invalid_day_config"
    default_message = "Invalid day configuration"


class IdempotencyKeyReused(CourtError):
    code = "idempotency_key_reused"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "This request token belongs to another booking; submit with a new token"


# Day-state and business-rule rejections.


class DayNotConfigured(CourtError):
    code = "day_not_configured"
    category = ErrorCategory.SLOT
    status_code = status.HTTP_409_CONFLICT
    default_message = "Booking is not open for this date"


class DayPreparing(CourtError):
    code = "day_preparing"
    category = ErrorCategory.SLOT
    status_code = status.HTTP_409_CONFLICT
    default_message = "Booking is suspended while the day is being prepared"


class SlotBlocked(CourtError):
    code = "slot_blocked"
    category = ErrorCategory.SLOT
    status_code = status.HTTP_409_CONFLICT
    default_message = "This slot is closed on this court"


class DuplicatePersonConflict(CourtError):
    code = "duplicate_person"
    category = ErrorCategory.SLOT
    status_code = status.HTTP_409_CONFLICT
    default_message = "A player already holds an unfinished reservation today; book again after it ends"


class CapacityExceeded(CourtError):
    code = "capacity_exceeded"
    category = ErrorCategory.SLOT
    status_code = status.HTTP_409_CONFLICT
    default_message = "Capacity exceeded for this time slot"


class SlotConflict(CourtError):
    code = "slot_conflict"
    category = ErrorCategory.SLOT
    status_code = status.HTTP_409_CONFLICT
    default_message = "This slot was just taken, pick another"


# Retryable failures.


class TransientStoreError(CourtError):
    code = "transient_store_error"
    category = ErrorCategory.RETRY
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Storage temporarily unavailable, please retry shortly"


class TooManyRequests(CourtError):
    code = "too_many_requests"
    category = ErrorCategory.RETRY
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Duplicate submission, please wait a moment"


# Credentials and lookups.


class Unauthorized(CourtError):
    code = "unauthorized"
    category = ErrorCategory.AUTH
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class Forbidden(CourtError):
    code = "forbidden"
    category = ErrorCategory.AUTH
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class ReservationNotFound(CourtError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"
