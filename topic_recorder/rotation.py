"""Per-topic JSONL writer with startup, device-timeout and size-based rotation."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

FILENAME_TIME_FORMAT = "%Y-%m-%d_%H-%M-%S"
MAX_ROTATION_INDEX = 99


class RotationReason(Enum):
    OPEN = "open"
    TIMEOUT = "timeout"
    SIZE = "size"


def sanitize_topic(topic: str) -> str:
    """Make a topic usable as a filename segment."""
    return topic.replace("/", "_")


def build_filename(base_timestamp: str, topic_name: str, index: int) -> str:
    return f"{base_timestamp}-{topic_name}-{index:02d}.jsonl"


@dataclass
class TopicSession:
    """Mutable file state for one topic, owned by that topic's lane."""

    topic: str
    topic_name: str
    current_file: object = None
    current_path: str | None = None
    current_size_bytes: int = 0
    rotation_index: int = 0
    base_timestamp: str | None = None
    overwrite_on_open: bool = False


class RotationManager:
    """Owns the open output file for one topic and decides when to roll it over.

    Triggers, in priority order, checked before every write:

    1. No file open: open one (new base timestamp, index 00).
    2. Rollover requested by the device timeout monitor: close the file and
       open one under a new base timestamp, index reset to 00.
    3. The record would push the file past ``max_file_size_bytes``: close
       the file and open one under the same base timestamp, index + 1.
    """

    def __init__(self, topic: str, log_dir: str, max_file_size_bytes: int,
                 metrics=None, time_func=None):
        self._log_dir = log_dir
        self._max_size = max_file_size_bytes
        self._metrics = metrics
        self._time_func = time_func or datetime.now
        self._previous: tuple[str | None, int] = (None, 0)
        self.session = TopicSession(topic=topic, topic_name=sanitize_topic(topic))

    @property
    def topic(self) -> str:
        return self.session.topic

    async def write(self, data: bytes, rollover: bool = False,
                    at: datetime | None = None) -> bool:
        """Append one serialized record. Returns False if the record was dropped.

        *at* is the capture time of the message; it becomes the base
        timestamp when this write opens a file under a new base name.
        """
        s = self.session

        if s.current_file is not None:
            if rollover:
                await self._close()
                self._new_base()
                reason = RotationReason.TIMEOUT
            elif s.current_size_bytes > 0 and s.current_size_bytes + len(data) > self._max_size:
                await self._close()
                self._advance_index()
                reason = RotationReason.SIZE
            else:
                reason = None
        else:
            if rollover:
                self._new_base()
            reason = RotationReason.OPEN

        if reason is not None and not await self._open(reason, at):
            self._count("dropped_write")
            return False

        try:
            await s.current_file.write(data)
            await s.current_file.flush()
        except OSError as e:
            logger.error("Failed to write to %s, dropping record: %s", s.current_path, e)
            # Buffered bytes may still land on disk; reopening re-reads the real size.
            await self._close()
            self._count("dropped_write")
            return False

        s.current_size_bytes += len(data)
        self._count("written")
        self._count("bytes_written", len(data))
        return True

    async def close(self) -> None:
        await self._close()

    def _new_base(self) -> None:
        s = self.session
        if s.base_timestamp is not None:
            self._previous = (s.base_timestamp, s.rotation_index)
        s.base_timestamp = None
        s.rotation_index = 0
        s.overwrite_on_open = False

    def _advance_index(self) -> None:
        s = self.session
        if s.rotation_index >= MAX_ROTATION_INDEX:
            logger.warning(
                "Rotation index for %s exceeded %d under base %s; overwriting index %02d",
                s.topic, MAX_ROTATION_INDEX, s.base_timestamp, MAX_ROTATION_INDEX,
            )
            s.rotation_index = MAX_ROTATION_INDEX
            s.overwrite_on_open = True
        else:
            s.rotation_index += 1

    async def _open(self, reason: RotationReason, at: datetime | None) -> bool:
        s = self.session
        if s.base_timestamp is None:
            s.base_timestamp = (at or self._time_func()).strftime(FILENAME_TIME_FORMAT)
            s.rotation_index = 0
            prev_base, prev_index = self._previous
            if s.base_timestamp == prev_base:
                # Sub-second rollover: keep names ordered under the reused base.
                s.rotation_index = min(prev_index + 1, MAX_ROTATION_INDEX)
        path = os.path.join(
            self._log_dir, build_filename(s.base_timestamp, s.topic_name, s.rotation_index)
        )
        mode = "wb" if s.overwrite_on_open else "ab"

        try:
            f = await self._open_file(path, mode)
            # Append mode starts at end of file, so this is the existing size.
            size = await f.tell()
        except OSError as e:
            logger.error("Failed to open log file %s, dropping record: %s", path, e)
            return False

        s.current_file = f
        s.current_path = path
        s.current_size_bytes = size
        s.overwrite_on_open = False
        self._count(f"rotations_{reason.value}")
        logger.info("Opened %s (%s)", path, reason.value)
        return True

    async def _open_file(self, path: str, mode: str):
        try:
            return await aiofiles.open(path, mode)
        except OSError as e:
            logger.warning("Open of %s failed (%s), creating %s", path, e, self._log_dir)
        await aiofiles.os.makedirs(self._log_dir, exist_ok=True)
        return await aiofiles.open(path, mode)

    async def _close(self) -> None:
        s = self.session
        if s.current_file is None:
            return
        try:
            await s.current_file.close()
        except OSError as e:
            logger.error("Failed to close %s: %s", s.current_path, e)
        s.current_file = None
        s.current_path = None
        s.current_size_bytes = 0

    def _count(self, name: str, amount: int = 1) -> None:
        if self._metrics is not None:
            self._metrics.increment(self.session.topic, name, amount)
