"""Ingest metrics: thread-safe per-topic counters for the recording pipeline."""

import threading
import time


class IngestMetrics:
    """Counts received, written and dropped messages for every topic lane."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._topics: dict[str, dict[str, int]] = {}
        self._unrouted: int = 0
        self._start_time = time.monotonic()

    def increment(self, topic: str, name: str, amount: int = 1) -> None:
        with self._lock:
            counters = self._topics.setdefault(topic, {})
            counters[name] = counters.get(name, 0) + amount

    def record_unrouted(self) -> None:
        with self._lock:
            self._unrouted += 1

    def get(self, topic: str, name: str) -> int:
        with self._lock:
            return self._topics.get(topic, {}).get(name, 0)

    @property
    def unrouted(self) -> int:
        with self._lock:
            return self._unrouted

    def snapshot(self) -> dict:
        """Return a point-in-time copy of all counters.

        Returns:
            Dictionary with a ``topics`` mapping of topic -> counters,
            the ``unrouted`` count, and process uptime.
        """
        with self._lock:
            return {
                "topics": {topic: dict(c) for topic, c in self._topics.items()},
                "unrouted": self._unrouted,
                "uptime_seconds": round(time.monotonic() - self._start_time, 1),
            }
