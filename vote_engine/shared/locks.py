"""Per-key locking primitives for the in-memory stores."""

import threading
import zlib
from contextlib import contextmanager


class KeyedLock:
    """
    Striped locks keyed by string.

    Operations on the same key always map to the same lock; different keys
    usually map to different locks, so there is no global serialization.
    """

    def __init__(self, stripes: int = 64):
        self._locks = [threading.Lock() for _ in range(stripes)]

    def for_key(self, key: str) -> threading.Lock:
        # crc32 keeps the stripe stable across processes, unlike hash()
        return self._locks[zlib.crc32(key.encode('utf-8')) % len(self._locks)]


class SnapshotGate:
    """
    Shared/exclusive gate.

    Writers enter shared mode and run concurrently with each other (they
    serialize among themselves on per-key locks). Snapshot readers enter
    exclusive mode and wait only for writers already inside the gate.
    A waiting reader blocks new writers so snapshots are not starved.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._active_writers = 0
        self._reader_active = False
        self._readers_waiting = 0

    @contextmanager
    def shared(self):
        with self._cond:
            while self._reader_active or self._readers_waiting:
                self._cond.wait()
            self._active_writers += 1
        try:
            yield
        finally:
            with self._cond:
                self._active_writers -= 1
                if self._active_writers == 0:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self):
        with self._cond:
            self._readers_waiting += 1
            try:
                while self._reader_active or self._active_writers:
                    self._cond.wait()
            finally:
                self._readers_waiting -= 1
            self._reader_active = True
        try:
            yield
        finally:
            with self._cond:
                self._reader_active = False
                self._cond.notify_all()
