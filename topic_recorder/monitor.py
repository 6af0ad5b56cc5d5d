"""Device timeout monitor: per-topic ACTIVE/SILENT state machine."""

import asyncio
import logging
import time
from enum import Enum

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL = 0.05


class DeviceState(Enum):
    ACTIVE = "active"
    SILENT = "silent"


class RolloverSignal:
    """Single-slot rollover request.

    Raising the signal again before it is consumed overwrites the slot, so
    any number of silence detections collapse into one pending rollover.
    """

    def __init__(self) -> None:
        self._pending = False
        self.raised_at: float | None = None

    @property
    def pending(self) -> bool:
        return self._pending

    def raise_(self, at: float) -> None:
        self._pending = True
        self.raised_at = at

    def consume(self) -> bool:
        """Clear the slot. Returns True if a rollover was pending."""
        pending = self._pending
        self._pending = False
        self.raised_at = None
        return pending


class DeviceTimeoutMonitor:
    """Tracks message silence for one topic.

    - ACTIVE: a message arrived within ``timeout_secs``.
    - SILENT: at least ``timeout_secs`` have passed since the last message.
      Entering SILENT raises the rollover signal once; the next arriving
      message (``touch``) brings the topic back to ACTIVE.
    """

    def __init__(self, topic: str, timeout_secs: float, clock=None, is_idle=None) -> None:
        self.topic = topic
        self.timeout_secs = timeout_secs
        self._clock = clock or time.monotonic
        # Polling only judges silence while the lane has nothing queued;
        # queued messages are checked against their own arrival times.
        self._is_idle = is_idle or (lambda: True)
        self.state = DeviceState.ACTIVE
        self.last_message_at: float | None = None
        self.signal = RolloverSignal()

    @property
    def poll_interval(self) -> float:
        return max(self.timeout_secs / 2, MIN_POLL_INTERVAL)

    def touch(self, now: float | None = None) -> None:
        """Record a message arrival."""
        if self.state == DeviceState.SILENT:
            logger.info("Device on %s back online", self.topic)
        self.last_message_at = self._clock() if now is None else now
        self.state = DeviceState.ACTIVE

    def check(self, now: float | None = None) -> DeviceState:
        """Detect the ACTIVE -> SILENT transition. Returns the current state."""
        if self.last_message_at is None or self.state == DeviceState.SILENT:
            return self.state
        now = self._clock() if now is None else now
        elapsed = now - self.last_message_at
        if elapsed >= self.timeout_secs:
            self.state = DeviceState.SILENT
            self.signal.raise_(now)
            logger.warning(
                "Device on %s silent for %.1fs (timeout %.1fs), next message starts a new file",
                self.topic, elapsed, self.timeout_secs,
            )
        return self.state

    async def run(self) -> None:
        """Poll for silence until cancelled."""
        while True:
            await asyncio.sleep(self.poll_interval)
            if self._is_idle():
                self.check()
