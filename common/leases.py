"""Per-key exclusive leases serializing work on the same room or professor."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List

from .errors import LeaseUnavailable

logger = logging.getLogger(__name__)


def room_key(room_id: int) -> str:
    return f"room:{room_id}"


def user_key(user_id: int) -> str:
    return f"user:{user_id}"


class _Lease:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class LeaseManager:
    """Hands out exclusive leases over string keys.

    Keys are always acquired in sorted order, so ``room:*`` leases come before
    ``user:*`` leases and two requests can never wait on each other in a
    cycle. Each acquisition waits at most ``timeout`` seconds. Idle keys are
    forgotten so the table does not grow with the number of rooms ever seen.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self._guard = threading.Lock()
        self._leases: Dict[str, _Lease] = {}

    def _checkout(self, key: str) -> _Lease:
        with self._guard:
            lease = self._leases.get(key)
            if lease is None:
                lease = self._leases[key] = _Lease()
            lease.holders += 1
            return lease

    def _checkin(self, key: str, lease: _Lease) -> None:
        with self._guard:
            lease.holders -= 1
            if lease.holders == 0:
                self._leases.pop(key, None)

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        acquired: List[tuple[str, _Lease]] = []
        try:
            for key in sorted(set(keys)):
                lease = self._checkout(key)
                if not lease.lock.acquire(timeout=self.timeout):
                    self._checkin(key, lease)
                    logger.warning("Lease on %s not granted within %.1fs", key, self.timeout)
                    raise LeaseUnavailable()
                acquired.append((key, lease))
            yield
        finally:
            for key, lease in reversed(acquired):
                lease.lock.release()
                self._checkin(key, lease)

    def active_keys(self) -> List[str]:
        with self._guard:
            return sorted(self._leases)
