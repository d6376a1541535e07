"""Admission of new bookings."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import occupancy
from .errors import (
    InvalidBookingWindow,
    OperationFailure,
    RejectionError,
    RoomNotFound,
    RoomOccupied,
    TimeConflict,
    UserAlreadyBooked,
    UserNotFound,
    ValidationError,
)
from .events import BookingCreated, Event, EventDispatcher, RoomsSnapshotChanged
from .leases import LeaseManager, room_key, user_key
from .ledger import BookingLedger
from .models import Booking, BookingStatus, Room, User
from .schemas import BookingRead
from .timeutils import to_naive_utc

logger = logging.getLogger(__name__)


class AdmissionController:
    """Decides whether a booking request may hold a room, and commits it if so."""

    def __init__(self, leases: LeaseManager, dispatcher: EventDispatcher) -> None:
        self.leases = leases
        self.dispatcher = dispatcher

    def request_booking(
        self,
        db: Session,
        user_id: int,
        room_id: int,
        purpose: str,
        start_time: datetime,
        end_time: datetime,
        notes: Optional[str] = None,
    ) -> BookingRead:
        start_time, end_time = to_naive_utc(start_time), to_naive_utc(end_time)
        if not purpose or not purpose.strip():
            raise ValidationError("Purpose is required")
        if end_time <= start_time:
            raise InvalidBookingWindow()

        with self.leases.hold(room_key(room_id), user_key(user_id)):
            db.expire_all()
            try:
                room, user = self._admit(db, user_id, room_id, start_time, end_time)
            except RejectionError as exc:
                db.rollback()
                logger.info("Booking rejected for user %s in room %s: %s", user_id, room_id, exc)
                raise

            booking = Booking(
                user=user,
                room=room,
                room_number=room.room_number,
                purpose=purpose,
                notes=notes or "",
                start_time=start_time,
                end_time=end_time,
                status=BookingStatus.ACTIVE.value,
                actual_end_time=None,
                duration=None,
            )
            try:
                db.add(booking)
                occupancy.occupy(room, user)
                db.flush()
                created = BookingRead.model_validate(booking)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("Commit failed admitting user %s to room %s", user_id, room_id)
                raise OperationFailure("Could not create booking") from exc

            rooms = occupancy.snapshot_or_none(db)

        logger.info("Booking %s admitted: user %s in room %s", created.id, user_id, created.room_number)
        events: List[Event] = [BookingCreated(booking=created)]
        if rooms is not None:
            events.append(RoomsSnapshotChanged(rooms=rooms))
        self.dispatcher.dispatch(events)
        return created

    def _admit(self, db: Session, user_id: int, room_id: int, start: datetime, end: datetime) -> tuple[Room, User]:
        ledger = BookingLedger(db)

        current = ledger.active_for_user(user_id)
        if current is not None:
            raise UserAlreadyBooked(current.room_number, current.start_time)

        room = db.scalars(select(Room).where(Room.id == room_id).with_for_update()).first()
        if room is None:
            raise RoomNotFound()
        if room.is_occupied:
            raise RoomOccupied()
        if ledger.overlapping(room_id, start, end) is not None:
            raise TimeConflict()

        user = db.get(User, user_id)
        if user is None:
            raise UserNotFound()
        return room, user
