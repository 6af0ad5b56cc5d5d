"""Retention sweep: delete recorded files older than the configured age."""

import asyncio
import logging
import os
import time

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".jsonl"
DEFAULT_INTERVAL_SECS = 3600


def sweep_expired(log_dir: str, retention_hours: float, now: float | None = None) -> list[str]:
    """Delete .jsonl files whose mtime is older than *retention_hours*. Returns deleted filenames.

    Age comes from the filesystem modification time, never the filename, so
    a file still being appended to always looks young.
    """
    if retention_hours <= 0:
        return []

    now = time.time() if now is None else now
    cutoff = now - retention_hours * 3600
    deleted = []
    freed = 0

    try:
        entries = list(os.scandir(log_dir))
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.error("Cannot list %s: %s", log_dir, e)
        return []

    for entry in entries:
        if not entry.name.endswith(LOG_SUFFIX):
            continue
        try:
            if not entry.is_file(follow_symlinks=False):
                continue
            st = entry.stat(follow_symlinks=False)
            if st.st_mtime >= cutoff:
                continue
            os.remove(entry.path)
        except OSError as e:
            logger.warning("Failed to remove old log file %s: %s", entry.name, e)
            continue
        deleted.append(entry.name)
        freed += st.st_size
        logger.info("Removed expired log file %s", entry.name)

    if deleted:
        logger.info(
            "Retention sweep finished: removed %d file(s), freed %.2f MB",
            len(deleted), freed / 1024 / 1024,
        )
    return deleted


class RetentionCleaner:
    """Periodic retention sweep over the log directory. A zero retention disables it."""

    def __init__(self, log_dir: str, retention_hours: float,
                 interval_secs: float = DEFAULT_INTERVAL_SECS):
        self.log_dir = log_dir
        self.retention_hours = retention_hours
        self.interval_secs = interval_secs
        self.sweeps = 0

    @property
    def enabled(self) -> bool:
        return self.retention_hours > 0

    async def sweep_once(self) -> list[str]:
        deleted = await asyncio.to_thread(sweep_expired, self.log_dir, self.retention_hours)
        self.sweeps += 1
        return deleted

    async def run(self) -> None:
        """Sweep, then sleep the interval, until cancelled."""
        if not self.enabled:
            logger.info("Log retention disabled, no cleanup will run")
            return
        logger.info(
            "Retention cleaner started: max age %.1fh, every %.0fs in %s",
            self.retention_hours, self.interval_secs, self.log_dir,
        )
        while True:
            await self.sweep_once()
            await asyncio.sleep(self.interval_secs)
