"""Booking lifecycle events and their post-commit dispatch."""
from __future__ import annotations

import logging
import queue
import threading
from typing import List, Literal, Optional, Protocol, Sequence, Union

from pydantic import BaseModel

from .errors import ConfigurationError
from .schemas import BookingRead, RoomRead

logger = logging.getLogger(__name__)


class BookingCreated(BaseModel):
    event: Literal["bookingCreated"] = "bookingCreated"
    booking: BookingRead


class BookingEnded(BaseModel):
    event: Literal["bookingEnded"] = "bookingEnded"
    booking_id: int


class RoomsSnapshotChanged(BaseModel):
    event: Literal["roomsUpdated"] = "roomsUpdated"
    rooms: List[RoomRead]


class UserStatusChanged(BaseModel):
    event: Literal["professorsUpdated"] = "professorsUpdated"
    user_id: int
    status: str
    room_label: Optional[str] = None


Event = Union[BookingCreated, BookingEnded, RoomsSnapshotChanged, UserStatusChanged]


class ChangeNotifier(Protocol):
    def publish(self, event: Event) -> None:
        ...


class EventDispatcher:
    """Delivers events to a notifier from a worker thread.

    ``dispatch`` only enqueues, so the caller's result never waits on or
    depends on delivery. The worker logs every delivery failure and keeps
    going. With ``inline=True`` delivery happens in the calling thread,
    still with failures logged and swallowed.

    The in-process queue only hands events from request threads to the
    notifiers and is lost on exit; durability lives in the broker, where
    the RabbitMQ notifiers publish to the events exchange and the durable
    push queue.
    """

    _STOP = object()

    def __init__(self, notifier: Optional[ChangeNotifier], inline: bool = False) -> None:
        if notifier is None:
            raise ConfigurationError("EventDispatcher requires a change notifier")
        self.notifier = notifier
        self.inline = inline
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    def start(self) -> None:
        if self.inline or (self._worker and self._worker.is_alive()):
            return
        self._worker = threading.Thread(target=self._run, name="event-dispatcher", daemon=True)
        self._worker.start()

    def stop(self, timeout: float = 5.0) -> None:
        if not self._worker:
            return
        self._queue.put(self._STOP)
        self._worker.join(timeout)
        self._worker = None

    def dispatch(self, events: Sequence[Event]) -> None:
        if self.inline:
            for event in events:
                self._deliver(event)
            return
        if not self._worker or not self._worker.is_alive():
            logger.warning("Event dispatcher worker not running; restarting it")
            self.start()
        for event in events:
            self._queue.put(event)

    def flush(self) -> None:
        """Block until every queued event has been handed to the notifier."""
        if not self.inline:
            self._queue.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                self._deliver(item)  # type: ignore[arg-type]
            finally:
                self._queue.task_done()

    def _deliver(self, event: Event) -> None:
        try:
            self.notifier.publish(event)
        except Exception:
            logger.exception("Failed to deliver %s event", event.event)
