"""Operations the HTTP layer exposes for bookings."""
from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from .admission import AdmissionController
from .config import Settings
from .events import EventDispatcher
from .leases import LeaseManager
from .ledger import BookingLedger, total_pages
from .lifecycle import LifecycleController
from .schemas import BookingRead, EndBookingResult, HistoryPage
from .timeutils import utcnow


class BookingService:
    def __init__(
        self,
        settings: Settings,
        dispatcher: EventDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings
        self.dispatcher = dispatcher
        self.leases = LeaseManager(timeout=settings.lease_timeout_seconds)
        self.admission = AdmissionController(self.leases, dispatcher)
        self.lifecycle = LifecycleController(self.leases, dispatcher, clock=clock)

    def create_booking(
        self,
        db: Session,
        user_id: int,
        room_id: int,
        purpose: str,
        start_time: datetime,
        end_time: datetime,
        notes: Optional[str] = None,
    ) -> BookingRead:
        return self.admission.request_booking(db, user_id, room_id, purpose, start_time, end_time, notes)

    def list_active_bookings(self, db: Session) -> List[BookingRead]:
        return [BookingRead.model_validate(b) for b in BookingLedger(db).active_bookings()]

    def list_user_bookings(self, db: Session, user_id: int) -> List[BookingRead]:
        return [BookingRead.model_validate(b) for b in BookingLedger(db).bookings_for_user(user_id)]

    def list_history(self, db: Session, page: int = 1, page_size: Optional[int] = None) -> HistoryPage:
        if page_size is None:
            page_size = self.settings.history_default_page_size
        items, total, page_size = BookingLedger(db).history(page, page_size, self.settings.history_max_page_size)
        return HistoryPage(
            items=[BookingRead.model_validate(b) for b in items],
            page=page,
            page_size=page_size,
            total=total,
            total_pages=total_pages(total, page_size),
        )

    def end_booking(self, db: Session, booking_id: int, user_id: int) -> EndBookingResult:
        return self.lifecycle.end_booking(db, booking_id, user_id, forced=False)

    def force_end_booking(self, db: Session, booking_id: int) -> EndBookingResult:
        return self.lifecycle.end_booking(db, booking_id, None, forced=True)
