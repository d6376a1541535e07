"""Leases and concurrent admission."""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from common.database import SessionLocal
from common.errors import LeaseUnavailable, RejectionError
from common.leases import LeaseManager, room_key, user_key
from common.models import Booking, BookingStatus, Room, User

TEN = datetime(2025, 3, 3, 10, 0)
ELEVEN = datetime(2025, 3, 3, 11, 0)


class TestLeaseManager:
    def test_keys_are_released_after_use(self):
        leases = LeaseManager(timeout=1)
        with leases.hold(room_key(1), user_key(2)):
            assert leases.active_keys() == ["room:1", "user:2"]
        assert leases.active_keys() == []

    def test_same_key_is_exclusive(self):
        leases = LeaseManager(timeout=2)
        inside = threading.Event()
        release = threading.Event()
        order = []

        def holder():
            with leases.hold(room_key(7)):
                order.append("first-in")
                inside.set()
                release.wait(2)
                order.append("first-out")

        thread = threading.Thread(target=holder)
        thread.start()
        inside.wait(2)

        def second():
            with leases.hold(room_key(7)):
                order.append("second-in")

        waiter = threading.Thread(target=second)
        waiter.start()
        time.sleep(0.1)
        release.set()
        thread.join()
        waiter.join()

        assert order == ["first-in", "first-out", "second-in"]

    def test_wait_is_bounded(self):
        leases = LeaseManager(timeout=0.05)
        held = threading.Event()
        done = threading.Event()

        def holder():
            with leases.hold(user_key(3)):
                held.set()
                done.wait(2)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(2)
        try:
            with pytest.raises(LeaseUnavailable):
                with leases.hold(room_key(1), user_key(3)):
                    pass
            # the room lease taken before the timeout was given back
            with leases.hold(room_key(1)):
                pass
        finally:
            done.set()
            thread.join()
        assert leases.active_keys() == []

    def test_disjoint_keys_do_not_block(self):
        leases = LeaseManager(timeout=0.05)
        with leases.hold(room_key(1), user_key(1)):
            with leases.hold(room_key(2), user_key(2)):
                assert leases.active_keys() == ["room:1", "room:2", "user:1", "user:2"]


def _attempt(service, user_id, room_id):
    with SessionLocal() as db:
        try:
            return service.create_booking(db, user_id, room_id, "race", TEN, ELEVEN).id
        except RejectionError as exc:
            return type(exc).__name__


def test_many_professors_racing_for_one_room(booking_service, db_session, make_user, make_room):
    room = make_room("R101")
    users = [make_user(f"prof{i}") for i in range(8)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(lambda u: _attempt(booking_service, u.id, room.id), users))

    winners = [o for o in outcomes if isinstance(o, int)]
    assert len(winners) == 1
    assert set(o for o in outcomes if not isinstance(o, int)) <= {"RoomOccupied", "TimeConflict"}

    db_session.expire_all()
    active = db_session.query(Booking).filter(Booking.status == BookingStatus.ACTIVE.value).all()
    assert [b.id for b in active] == winners
    stored_room = db_session.get(Room, room.id)
    assert stored_room.current_occupant_id == active[0].user_id
    in_room = db_session.query(User).filter(User.current_room == "R101").all()
    assert [u.id for u in in_room] == [active[0].user_id]


def test_one_professor_racing_for_many_rooms(booking_service, db_session, make_user, make_room):
    user = make_user("busy")
    rooms = [make_room(f"R3{i:02d}") for i in range(6)]

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(lambda r: _attempt(booking_service, user.id, r.id), rooms))

    assert sum(isinstance(o, int) for o in outcomes) == 1
    assert outcomes.count("UserAlreadyBooked") == 5
    db_session.expire_all()
    assert db_session.query(Room).filter(Room.is_occupied.is_(True)).count() == 1
