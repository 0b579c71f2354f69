"""
Per-tournament mutual exclusion.

Timer callbacks and API requests run on different threads; any read-then-write
of one tournament's records happens under that tournament's lock. Different
tournaments never block each other.

Locks are held weakly: an entry lives only while some caller still references
it, so finished tournaments do not accumulate locks.
"""
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, Tuple

LockKey = Tuple[str, str]


class TournamentLocks:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[LockKey, threading.Lock]" = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def get(self, guild_id: str, tournament_id: str) -> threading.Lock:
        key = (guild_id, tournament_id)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, guild_id: str, tournament_id: str) -> Iterator[None]:
        lock = self.get(guild_id, tournament_id)
        with lock:
            yield
