"""Read side of the booking ledger."""
from __future__ import annotations

import math
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from .errors import InvalidPagination
from .models import Booking, BookingStatus

_FINISHED = (BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value)


class BookingLedger:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _select(self):
        return select(Booking).options(selectinload(Booking.user), selectinload(Booking.room))

    def get(self, booking_id: int) -> Optional[Booking]:
        return self.db.scalars(self._select().where(Booking.id == booking_id)).first()

    def find_active(self, booking_id: int, user_id: Optional[int] = None) -> Optional[Booking]:
        """Active booking ``booking_id``, optionally restricted to its owner."""
        query = self._select().where(Booking.id == booking_id, Booking.status == BookingStatus.ACTIVE.value)
        if user_id is not None:
            query = query.where(Booking.user_id == user_id)
        return self.db.scalars(query).first()

    def active_for_user(self, user_id: int) -> Optional[Booking]:
        return self.db.scalars(
            select(Booking).where(Booking.user_id == user_id, Booking.status == BookingStatus.ACTIVE.value)
        ).first()

    def active_for_room(self, room_id: int) -> Optional[Booking]:
        return self.db.scalars(
            select(Booking).where(Booking.room_id == room_id, Booking.status == BookingStatus.ACTIVE.value)
        ).first()

    def overlapping(self, room_id: int, start: datetime, end: datetime) -> Optional[Booking]:
        return self.db.scalars(
            select(Booking).where(
                Booking.room_id == room_id,
                Booking.status == BookingStatus.ACTIVE.value,
                Booking.start_time < end,
                Booking.end_time > start,
            )
        ).first()

    def active_bookings(self) -> List[Booking]:
        query = (
            self._select()
            .where(Booking.status == BookingStatus.ACTIVE.value)
            .order_by(Booking.start_time.asc(), Booking.id.asc())
        )
        return list(self.db.scalars(query))

    def bookings_for_user(self, user_id: int) -> List[Booking]:
        query = self._select().where(Booking.user_id == user_id).order_by(Booking.start_time.desc(), Booking.id.desc())
        return list(self.db.scalars(query))

    def history(self, page: int, page_size: int, max_page_size: int) -> Tuple[List[Booking], int, int]:
        """Finished bookings, most recently ended first.

        Returns ``(items, total, page_size)``. Non-positive ``page`` or
        ``page_size`` is rejected; ``page_size`` above ``max_page_size`` is
        clamped and the clamped value is returned.
        """
        if page < 1 or page_size < 1:
            raise InvalidPagination()
        page_size = min(page_size, max_page_size)
        total = self.db.scalar(select(func.count(Booking.id)).where(Booking.status.in_(_FINISHED))) or 0
        query = (
            self._select()
            .where(Booking.status.in_(_FINISHED))
            .order_by(
                Booking.actual_end_time.desc().nulls_last(),
                Booking.end_time.desc(),
                Booking.id.desc(),
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(self.db.scalars(query)), total, page_size


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if page_size else 0
