"""Booking error taxonomy.

Rejections (:class:`RejectionError`) mean the request cannot be admitted as
given; nothing was written and the caller may retry with other parameters.
:class:`OperationFailure` means the commit itself failed and was rolled back.
:class:`NotifierFailure` never reaches a caller: the event dispatcher logs it.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import status


class BookingError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: str = "Booking operation failed"

    def __init__(self, detail: Optional[str] = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)

    def extra(self) -> Dict[str, Any]:
        return {}


class ConfigurationError(Exception):
    """Raised when a required collaborator is missing or misconfigured."""


class RejectionError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Request rejected"


class ValidationError(RejectionError):
    detail = "Invalid request"


class InvalidBookingWindow(ValidationError):
    detail = "End time must be after start time"


class InvalidPagination(ValidationError):
    detail = "page and page size must be positive integers"


class UserAlreadyBooked(RejectionError):
    detail = "You already have an active booking"

    def __init__(self, room_number: str, start_time: datetime) -> None:
        super().__init__()
        self.room_number = room_number
        self.start_time = start_time

    def extra(self) -> Dict[str, Any]:
        return {
            "current_booking": {
                "room_number": self.room_number,
                "start_time": self.start_time.isoformat(),
            }
        }


class RoomNotFound(RejectionError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Room not found"


class RoomOccupied(RejectionError):
    detail = "Room is currently occupied"


class TimeConflict(RejectionError):
    status_code = status.HTTP_409_CONFLICT
    detail = "Room is already booked for this time"


class UserNotFound(RejectionError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Professor not found"


class BookingNotFound(RejectionError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Active booking not found"


class OperationFailure(BookingError):
    detail = "Booking operation failed"


class LeaseUnavailable(OperationFailure):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = "Resource is busy, try again"


class NotifierFailure(BookingError):
    detail = "Event delivery failed"
