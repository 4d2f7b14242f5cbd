"""
Shared fixtures for the sidecar test suite
"""
import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from monitoring.influxdb_config import InfluxDbConfiguration
from senders.base import InfluxDbSender
from senders.exceptions import SenderError

PROJECT_LOGGERS = [
    "monitoring.config_store",
    "monitoring.influxdb_config",
    "monitoring.notifier",
    "monitoring.config_reload",
    "monitoring.registry",
    "reporting.export_task",
    "reporting.lifecycle",
]


def write_properties(path: Path, values: Dict[str, str]):
    """Write a properties file from a dict"""
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


class SendTracker:
    """Records send activity across every sender of a test"""

    def __init__(self):
        self.active = 0
        self.max_active = 0
        self.events: List[tuple] = []


class RecordingSender(InfluxDbSender):
    """In-memory sender that records batches"""

    def __init__(
        self,
        label: str = "fake",
        delay: float = 0.0,
        fail: bool = False,
        tracker: Optional[SendTracker] = None
    ):
        super().__init__("testdb")
        self.label = label
        self.delay = delay
        self.fail = fail
        self.tracker = tracker or SendTracker()
        self.batches: List[list] = []
        self.closed = False
        self.send_started = asyncio.Event()

    def get_name(self) -> str:
        return "fake"

    async def _transmit(self, payload: bytes):
        pass

    async def send(self, points):
        loop = asyncio.get_running_loop()
        self.tracker.active += 1
        self.tracker.max_active = max(self.tracker.max_active, self.tracker.active)
        self.tracker.events.append((self.label, "start", loop.time()))
        self.send_started.set()
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise SenderError("simulated network failure", self.get_name())
            self.batches.append(list(points))
            return len(points)
        finally:
            self.tracker.active -= 1
            self.tracker.events.append((self.label, "end", loop.time()))

    async def close(self):
        self.closed = True


@pytest.fixture
def config_dir(tmp_path) -> Path:
    return tmp_path


@pytest.fixture
def properties_file(config_dir) -> Path:
    return config_dir / InfluxDbConfiguration.FILENAME


@pytest.fixture
def configuration(config_dir) -> InfluxDbConfiguration:
    """Configuration isolated from the process environment"""
    return InfluxDbConfiguration(config_dir, environ={})


@pytest.fixture
def log_records(caplog):
    """Capture records from project loggers (they do not propagate to root)"""
    loggers = [logging.getLogger(name) for name in PROJECT_LOGGERS]
    for logger in loggers:
        logger.addHandler(caplog.handler)
    yield caplog
    for logger in loggers:
        logger.removeHandler(caplog.handler)
