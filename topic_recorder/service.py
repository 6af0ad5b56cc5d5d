"""Recorder service: wires the bus client, dispatcher lanes and retention cleaner together."""

import asyncio
import logging
import os

from topic_recorder.bus import MqttBusClient
from topic_recorder.config import Config
from topic_recorder.dispatcher import TopicDispatcher
from topic_recorder.metrics import IngestMetrics
from topic_recorder.retention import RetentionCleaner

logger = logging.getLogger(__name__)


class RecorderService:
    def __init__(self, config: Config, bus_factory=MqttBusClient):
        self.config = config
        self.metrics = IngestMetrics()
        self.dispatcher = TopicDispatcher(config, self.metrics)
        self.cleaner = RetentionCleaner(
            config.log_dir, config.log_retention_hours, config.cleanup_interval_secs
        )
        self.bus = bus_factory(config, self.dispatcher) if bus_factory else None
        self._cleaner_task: asyncio.Task | None = None

    async def start(self) -> None:
        os.makedirs(self.config.log_dir, exist_ok=True)
        logger.info(
            "Config: log_dir=%s, max_size=%d bytes, timeout=%.1fs, retention=%.1fh, topics=%s",
            self.config.log_dir, self.config.max_file_size_bytes, self.config.timeout_secs,
            self.config.log_retention_hours, ", ".join(self.config.topics),
        )
        self.dispatcher.start()
        self._cleaner_task = asyncio.create_task(self.cleaner.run(), name="retention")
        if self.bus is not None:
            self.bus.start(asyncio.get_running_loop())

    async def stop(self) -> None:
        """Stop ingesting, let every lane finish and close its file."""
        if self.bus is not None:
            # paho joins its network thread on stop
            await asyncio.to_thread(self.bus.stop)
        if self._cleaner_task is not None:
            self._cleaner_task.cancel()
            await asyncio.gather(self._cleaner_task, return_exceptions=True)
            self._cleaner_task = None
        await self.dispatcher.stop()
        logger.info("Stats: %s", self.metrics.snapshot())

    async def run_until(self, stop_event: asyncio.Event) -> None:
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()
