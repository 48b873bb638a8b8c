import threading
from contextlib import contextmanager


class KeyedLocks:
    """One lock per key (slot id, qr code) so unrelated keys never contend.

    Serialises writers inside one process; ``SELECT ... FOR UPDATE`` on the
    row covers several API processes sharing PostgreSQL. A key's entry lives
    only while someone holds or waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, holders + waiters]
        self._locks: dict[str, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if not entry[1]:
                    del self._locks[key]


# Per-slot: create_booking check-then-insert
slot_locks = KeyedLocks()
# Per-qr-code: entry/exit transitions and cancellation
booking_locks = KeyedLocks()
