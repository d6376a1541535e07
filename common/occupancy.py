"""Room and professor occupancy transitions.

``occupy`` and ``release`` are the only writers of ``Room.is_occupied``,
``Room.current_occupant_id``, ``User.current_status`` and ``User.current_room``.
They never commit; callers apply them inside the same transaction as the
ledger change they mirror.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .models import Booking, BookingStatus, ProfessorStatus, Room, User
from .schemas import RoomRead

logger = logging.getLogger(__name__)


def occupy(room: Room, user: User) -> None:
    room.is_occupied = True
    room.current_occupant_id = user.id
    user.current_status = ProfessorStatus.IN_ROOM.value
    user.current_room = room.room_number


def release(room: Room, user: User) -> None:
    room.is_occupied = False
    room.current_occupant_id = None
    user.current_status = ProfessorStatus.AVAILABLE.value
    user.current_room = None


def rooms_snapshot(db: Session) -> List[Room]:
    return list(
        db.scalars(select(Room).options(selectinload(Room.current_occupant)).order_by(Room.floor, Room.room_number))
    )


def snapshot_or_none(db: Session) -> Optional[List[RoomRead]]:
    """Rooms board read after a commit, or ``None`` if the read fails.

    The committed change stands either way; callers skip the snapshot event.
    """
    try:
        return [RoomRead.model_validate(room) for room in rooms_snapshot(db)]
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not read the rooms board after commit")
        return None

def reconcile_occupancy(db: Session) -> int:
    """Rewrite every occupancy flag from the Active bookings in the ledger.

    Returns the number of rooms and professors whose stored state was wrong.
    """
    active = {
        booking.room_id: booking
        for booking in db.scalars(select(Booking).where(Booking.status == BookingStatus.ACTIVE.value))
    }
    by_user = {booking.user_id: booking for booking in active.values()}
    repaired = 0

    for room in db.scalars(select(Room)):
        booking = active.get(room.id)
        occupant_id = booking.user_id if booking else None
        if room.is_occupied != (booking is not None) or room.current_occupant_id != occupant_id:
            room.is_occupied = booking is not None
            room.current_occupant_id = occupant_id
            repaired += 1

    for user in db.scalars(select(User)):
        booking = by_user.get(user.id)
        if booking:
            status, room_label = ProfessorStatus.IN_ROOM.value, booking.room_number
        else:
            status, room_label = ProfessorStatus.AVAILABLE.value, None
        if user.current_status != status or user.current_room != room_label:
            user.current_status = status
            user.current_room = room_label
            repaired += 1

    db.commit()
    if repaired:
        logger.warning("Reconciled occupancy state for %d rooms/professors", repaired)
    return repaired
