from contextlib import contextmanager
from threading import Lock
from typing import Hashable, Iterator


class KeyedLocks:
    """One mutex per key, dropped again once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[Hashable, Lock] = {}
        self._holders: dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, Lock())
            self._holders[key] = self._holders.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._holders[key] -= 1
                if self._holders[key] == 0:
                    del self._holders[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Serializes reserve/reschedule per (consultant_id, date, start_minute).
slot_locks = KeyedLocks()
# Serializes override batch writes per (consultant_id, date) inside this
# process. Across processes the write also takes a row lock on the consultant.
planning_locks = KeyedLocks()
