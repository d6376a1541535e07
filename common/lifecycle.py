"""Ending active bookings, by their owner or by an administrator."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import occupancy
from .errors import BookingNotFound, OperationFailure
from .events import BookingEnded, Event, EventDispatcher, RoomsSnapshotChanged, UserStatusChanged
from .leases import LeaseManager, room_key, user_key
from .ledger import BookingLedger
from .models import BookingStatus, ProfessorStatus
from .schemas import EndBookingResult
from .timeutils import minutes_between, utcnow

logger = logging.getLogger(__name__)


class LifecycleController:
    def __init__(
        self,
        leases: LeaseManager,
        dispatcher: EventDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.leases = leases
        self.dispatcher = dispatcher
        self.clock = clock

    def end_booking(
        self,
        db: Session,
        booking_id: int,
        requesting_user_id: Optional[int],
        forced: bool = False,
    ) -> EndBookingResult:
        """Complete an Active booking and free its room and professor.

        Unless ``forced``, only the owner may end the booking; anyone else gets
        the same :class:`BookingNotFound` as for a missing booking.
        """
        owner_filter = None if forced else requesting_user_id
        if not forced and requesting_user_id is None:
            raise BookingNotFound()

        ledger = BookingLedger(db)
        peeked = ledger.find_active(booking_id, owner_filter)
        if peeked is None:
            logger.info("End of booking %s rejected: not active or not owned by %s", booking_id, requesting_user_id)
            raise BookingNotFound()
        room_id, user_id = peeked.room_id, peeked.user_id

        with self.leases.hold(room_key(room_id), user_key(user_id)):
            db.expire_all()
            booking = ledger.find_active(booking_id, owner_filter)
            if booking is None:
                db.rollback()
                logger.info("Booking %s ended concurrently", booking_id)
                raise BookingNotFound()

            ended_at = self.clock()
            duration = minutes_between(booking.start_time, ended_at)
            try:
                booking.status = BookingStatus.COMPLETED.value
                booking.actual_end_time = ended_at
                booking.duration = duration
                occupancy.release(booking.room, booking.user)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("Commit failed ending booking %s", booking_id)
                raise OperationFailure("Could not end booking") from exc

            rooms = occupancy.snapshot_or_none(db)

        logger.info(
            "Booking %s %s after %d minutes",
            booking_id,
            "force-ended" if forced else "ended",
            duration,
        )
        events: List[Event] = [BookingEnded(booking_id=booking_id)]
        if rooms is not None:
            events.append(RoomsSnapshotChanged(rooms=rooms))
        events.append(UserStatusChanged(user_id=user_id, status=ProfessorStatus.AVAILABLE.value, room_label=None))
        self.dispatcher.dispatch(events)
        return EndBookingResult(booking_id=booking_id, duration=duration)
