import os
from datetime import datetime
from typing import Generator, List

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("NOTIFIER_BACKEND", "log")

from common.config import get_settings, reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.auth import get_password_hash  # noqa: E402
from common.booking_service import BookingService  # noqa: E402
from common.cache import rooms_board_cache  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.events import EventDispatcher  # noqa: E402
from common.models import RoleEnum, Room, User  # noqa: E402
from common.notifier import CompositeNotifier  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.notifications.app import app as notifications_app  # noqa: E402
from services.rooms.app import app as rooms_app  # noqa: E402
from services.users.app import app as users_app  # noqa: E402


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: List = []

    def publish(self, event) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        return [event.event for event in self.events]


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    rooms_board_cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def recorder() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 3, 11, 0))


@pytest.fixture()
def booking_service(recorder: RecordingNotifier, clock: FakeClock) -> BookingService:
    return BookingService(get_settings(), EventDispatcher(recorder, inline=True), clock=clock)


@pytest.fixture()
def make_user(db_session):
    def _make(username: str, name: str | None = None, role: RoleEnum = RoleEnum.PROFESSOR) -> User:
        user = User(
            name=name or username.title(),
            username=username,
            email=f"{username}@example.edu",
            department="Physics",
            role=role,
            hashed_password=get_password_hash("Passw0rd!"),
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_room(db_session):
    def _make(room_number: str, floor: int = 1) -> Room:
        room = Room(room_number=room_number, floor=floor, room_type="lecture")
        db_session.add(room)
        db_session.commit()
        db_session.refresh(room)
        return room

    return _make


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def rooms_client() -> Generator[TestClient, None, None]:
    with TestClient(rooms_app) as client:
        yield client


@pytest.fixture()
def bookings_client(recorder: RecordingNotifier) -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        dispatcher: EventDispatcher = bookings_app.state.dispatcher
        dispatcher.notifier = CompositeNotifier([dispatcher.notifier, recorder])
        yield client


@pytest.fixture()
def notifications_client() -> Generator[TestClient, None, None]:
    with TestClient(notifications_app) as client:
        yield client
