"""Integration tests for RecorderService wiring (no broker required)."""

import asyncio
import json
import os
import threading

import pytest

from topic_recorder.config import Config
from topic_recorder.service import RecorderService


class FakeBus:
    def __init__(self, config, dispatcher):
        self.dispatcher = dispatcher
        self.started = False
        self.stopped = False
        self.stop_thread = None

    def start(self, loop):
        self.started = True

    def stop(self):
        self.stopped = True
        self.stop_thread = threading.current_thread()


def _config(log_dir, **overrides):
    defaults = dict(log_dir=str(log_dir), topics=("bg/vehicle/state",), timeout_secs=1)
    defaults.update(overrides)
    return Config(**defaults)


@pytest.mark.asyncio
async def test_repeated_startup_with_missing_log_dir(tmp_path):
    log_dir = tmp_path / "missing" / "logs"
    for _ in range(2):
        service = RecorderService(_config(log_dir), bus_factory=FakeBus)
        await service.start()
        assert os.path.isdir(log_dir)
        await service.stop()


@pytest.mark.asyncio
async def test_end_to_end_records_messages(tmp_path):
    service = RecorderService(_config(tmp_path), bus_factory=FakeBus)
    await service.start()
    assert service.bus.started

    service.bus.dispatcher.dispatch("bg/vehicle/state", b'{"gear": 3}')
    service.bus.dispatcher.dispatch("bg/vehicle/state", b'{"gear": 4}')
    await service.stop()
    assert service.bus.stopped

    files = os.listdir(tmp_path)
    assert len(files) == 1
    assert files[0].endswith("-bg_vehicle_state-00.jsonl")
    with open(tmp_path / files[0], encoding="utf-8") as f:
        gears = [json.loads(line)["raw"]["gear"] for line in f]
    assert gears == [3, 4]
    assert service.metrics.get("bg/vehicle/state", "written") == 2


@pytest.mark.asyncio
async def test_run_until_stops_on_event(tmp_path):
    service = RecorderService(_config(tmp_path), bus_factory=FakeBus)
    stop_event = asyncio.Event()
    task = asyncio.create_task(service.run_until(stop_event))
    await asyncio.sleep(0.01)
    stop_event.set()
    await asyncio.wait_for(task, timeout=2)
    assert service.bus.stopped


@pytest.mark.asyncio
async def test_bus_stop_runs_off_the_event_loop_thread(tmp_path):
    service = RecorderService(_config(tmp_path), bus_factory=FakeBus)
    await service.start()
    await service.stop()
    assert service.bus.stopped
    assert service.bus.stop_thread is not threading.current_thread()


@pytest.mark.asyncio
async def test_retention_disabled_by_default(tmp_path):
    old = tmp_path / "2020-01-01_00-00-00-x-00.jsonl"
    old.write_text("{}\n")
    os.utime(old, (0, 0))

    service = RecorderService(_config(tmp_path, log_retention_hours=0), bus_factory=FakeBus)
    await service.start()
    await asyncio.sleep(0.01)
    await service.stop()
    assert old.exists()


@pytest.mark.asyncio
async def test_retention_sweeps_on_start(tmp_path):
    old = tmp_path / "2020-01-01_00-00-00-x-00.jsonl"
    old.write_text("{}\n")
    os.utime(old, (0, 0))

    service = RecorderService(_config(tmp_path, log_retention_hours=1), bus_factory=FakeBus)
    await service.start()
    for _ in range(100):
        if service.cleaner.sweeps:
            break
        await asyncio.sleep(0.01)
    await service.stop()
    assert not old.exists()
