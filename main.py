"""Topic recorder: records MQTT topic traffic into rotating JSONL files."""

import argparse
import asyncio
import dataclasses
import logging
import os
import signal
import sys

from topic_recorder.config import ConfigError, load_config
from topic_recorder.service import RecorderService

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [RECORDER] %(levelname)s %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Record MQTT topics to rotating JSONL files")
    parser.add_argument(
        "--config", default=os.environ.get("CONFIG_PATH", "config.yml"),
        help="Path to YAML config file (default: config.yml)",
    )
    parser.add_argument("--log-dir", default=None, help="Override the output directory")
    return parser


async def run(service: RecorderService) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("Topic recorder running. Press Ctrl+C to stop.")
    await service.run_until(stop_event)
    logger.info("Topic recorder stopped.")


def main(argv=None) -> int:
    args = build_cli_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    if args.log_dir:
        config = dataclasses.replace(config, log_dir=args.log_dir)

    asyncio.run(run(RecorderService(config)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
