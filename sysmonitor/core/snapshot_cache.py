import threading
import time
from typing import Optional

from .exceptions import NotReadyError
from ..models.snapshot import Snapshot


class SnapshotCache:
    """Holds the latest snapshot; one writer (the poller), many readers.

    Snapshots are immutable, so swapping the reference under a lock is enough
    for readers never to observe a half-written value.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[Snapshot] = None
        self._updated_at: Optional[float] = None
        self._updates = 0

    def update(self, snapshot: Snapshot):
        with self._lock:
            self._snapshot = snapshot
            self._updated_at = self._clock()
            self._updates += 1

    def read(self) -> Snapshot:
        with self._lock:
            snapshot = self._snapshot
        if snapshot is None:
            raise NotReadyError()
        return snapshot

    def peek(self) -> Optional[Snapshot]:
        with self._lock:
            return self._snapshot

    def age(self) -> Optional[float]:
        with self._lock:
            if self._updated_at is None:
                return None
            return self._clock() - self._updated_at

    @property
    def ready(self) -> bool:
        return self.peek() is not None

    @property
    def update_count(self) -> int:
        with self._lock:
            return self._updates
