"""Topic ingestion dispatcher: one bounded queue and writer lane per configured topic."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime

from paho.mqtt.client import topic_matches_sub

from topic_recorder.config import Config
from topic_recorder.metrics import IngestMetrics
from topic_recorder.monitor import DeviceTimeoutMonitor
from topic_recorder.records import PayloadDecodeError, build_record, decode_payload, serialize_record
from topic_recorder.rotation import RotationManager

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class BusEvent:
    topic: str
    payload: bytes
    received_at: datetime  # wall clock, used for record and file names
    arrived: float         # monotonic, used for silence detection


class TopicLane:
    """Processes the events of one topic in arrival order."""

    def __init__(self, topic: str, config: Config, metrics: IngestMetrics,
                 time_func=None, clock=None):
        self.topic = topic
        self._metrics = metrics
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=config.queue_size)
        self._busy = False
        self.rotation = RotationManager(
            topic, config.log_dir, config.max_file_size_bytes, metrics, time_func
        )
        self.monitor = DeviceTimeoutMonitor(
            topic, config.timeout_secs, clock, is_idle=self.idle
        )

    def idle(self) -> bool:
        return not self._busy and self._queue.empty()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, event: BusEvent) -> bool:
        """Enqueue without blocking. Returns False if the oldest pending event was dropped."""
        dropped = False
        while True:
            try:
                self._queue.put_nowait(event)
                return not dropped
            except asyncio.QueueFull:
                self._queue.get_nowait()
                dropped = True

    async def request_stop(self) -> None:
        """Queue the stop marker behind every pending event."""
        await self._queue.put(_STOP)

    async def run(self) -> None:
        try:
            while True:
                item = await self._queue.get()
                if item is _STOP:
                    break
                self._busy = True
                try:
                    await self.handle(item)
                except Exception:
                    logger.exception("Unexpected error handling message on %s", self.topic)
                finally:
                    self._busy = False
        finally:
            await self.rotation.close()
            logger.info("Lane for %s closed", self.topic)

    async def handle(self, event: BusEvent) -> bool:
        """Decode, rotate if needed and append one event. Returns True if written."""
        try:
            value = decode_payload(event.payload)
        except PayloadDecodeError as e:
            logger.warning("Dropping undecodable payload on %s: %s", event.topic, e)
            self._metrics.increment(self.topic, "dropped_decode")
            return False

        self.monitor.check(event.arrived)
        rollover = self.monitor.signal.consume()

        data = serialize_record(build_record(value, event.received_at))
        written = await self.rotation.write(data, rollover=rollover, at=event.received_at)
        self.monitor.touch(event.arrived)
        return written


class TopicDispatcher:
    """Routes bus events to per-topic lanes.

    Lanes never wait on each other: each has its own bounded queue and, when
    a lane falls behind, its oldest pending event is dropped and counted.
    """

    def __init__(self, config: Config, metrics: IngestMetrics | None = None,
                 time_func=None, clock=None):
        self._config = config
        self.metrics = metrics or IngestMetrics()
        self._time_func = time_func or datetime.now
        self._clock = clock or time.monotonic
        self.lanes: dict[str, TopicLane] = {
            topic: TopicLane(topic, config, self.metrics, self._time_func, self._clock)
            for topic in config.topics
        }
        self._lane_tasks: list[asyncio.Task] = []
        self._monitor_tasks: list[asyncio.Task] = []
        self._stopping = False

    def lane_for(self, topic: str) -> TopicLane | None:
        lane = self.lanes.get(topic)
        if lane is not None:
            return lane
        for subscription, lane in self.lanes.items():
            if ("+" in subscription or "#" in subscription) and topic_matches_sub(subscription, topic):
                return lane
        return None

    def dispatch(self, topic: str, payload: bytes) -> bool:
        """Hand one event to its lane. Returns False if it was not routed."""
        if self._stopping:
            logger.debug("Dispatcher stopping, ignoring message on %s", topic)
            return False

        lane = self.lane_for(topic)
        if lane is None:
            logger.warning("Dropping message on unconfigured topic %s", topic)
            self.metrics.record_unrouted()
            return False

        event = BusEvent(topic, bytes(payload), self._time_func(), self._clock())
        self.metrics.increment(lane.topic, "received")
        if not lane.offer(event):
            self.metrics.increment(lane.topic, "dropped_overflow")
            logger.warning("Lane for %s is full, dropped its oldest pending message", lane.topic)
        return True

    async def consume(self, stream) -> None:
        """Dispatch every ``(topic, payload)`` pair from an async iterable."""
        async for topic, payload in stream:
            self.dispatch(topic, payload)
            await asyncio.sleep(0)

    def start(self) -> None:
        for lane in self.lanes.values():
            self._lane_tasks.append(asyncio.create_task(lane.run(), name=f"lane:{lane.topic}"))
            self._monitor_tasks.append(
                asyncio.create_task(lane.monitor.run(), name=f"monitor:{lane.topic}")
            )
        logger.info("Started %d topic lane(s): %s", len(self.lanes), ", ".join(self.lanes))

    async def stop(self) -> None:
        """Drain every lane, close its file, and stop the monitors."""
        self._stopping = True
        if self._lane_tasks:
            for lane in self.lanes.values():
                await lane.request_stop()
            await asyncio.gather(*self._lane_tasks, return_exceptions=True)

        for task in self._monitor_tasks:
            task.cancel()
        await asyncio.gather(*self._monitor_tasks, return_exceptions=True)
        self._lane_tasks.clear()
        self._monitor_tasks.clear()
