"""
Scheduled export of the metric registry to one sender
"""
from typing import Optional
import asyncio
import time

from monitoring.registry import MetricRegistry
from reporting.formatter import InfluxDbFormatter
from senders.base import InfluxDbSender
from metrics import export_ticks, export_duration
from logger import get_logger

logger = get_logger(__name__)


class ExportTask:
    """
    Periodically snapshots the registry and hands the batch to the sender

    Ticks run at a fixed rate, the first one ``interval_seconds`` after
    ``start()``. A tick that overruns its slot causes the missed slots to
    be skipped rather than replayed. A failed tick is logged and the
    schedule continues.

    ``close()`` is confirmatory: it waits for an in-flight tick to finish
    and for the loop to exit, and no tick starts once close was requested.

    Example:
        task = ExportTask(registry, sender, InfluxDbFormatter(tags), 10)
        task.start()
        ...
        await task.close()
    """

    def __init__(
        self,
        registry: MetricRegistry,
        sender: InfluxDbSender,
        formatter: InfluxDbFormatter,
        interval_seconds: float,
        name: str = "influxdb-reporter"
    ):
        if interval_seconds <= 0:
            raise ValueError("Reporting interval must be positive")

        self.registry = registry
        self.sender = sender
        self.formatter = formatter
        self.interval = interval_seconds
        self.name = name

        self.ticks = 0
        self.failures = 0
        self.last_error: Optional[str] = None

        self._closing = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self):
        """Start ticking (must run inside the event loop)"""
        if self._closed:
            raise RuntimeError(f"Export task {self.name} is closed and cannot be restarted")
        if self._task is not None:
            logger.warning(f"Export task {self.name} already started")
            return

        self._task = asyncio.create_task(self._run_loop(), name=self.name)
        logger.info(
            f"Started export task {self.name} every {self.interval}s "
            f"via {self.sender.get_name()} sender"
        )

    async def _run_loop(self):
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval

        while not self._closing.is_set():
            delay = next_tick - loop.time()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._closing.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass

            if self._closing.is_set():
                break
            await self.report_once()

            next_tick += self.interval
            now = loop.time()
            if next_tick <= now:
                skipped = int((now - next_tick) // self.interval) + 1
                next_tick += skipped * self.interval
                logger.debug(f"Export task {self.name} skipped {skipped} overrun tick(s)")

    async def report_once(self) -> bool:
        """Export one snapshot; returns False when the send failed"""
        start = time.perf_counter()
        self.ticks += 1

        try:
            points = self.formatter.format(self.registry.snapshot())
            await self.sender.send(points)
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            export_ticks.labels("failed").inc()
            logger.error(f"Unable to report metrics to InfluxDB: {e}")
            logger.debug("Export failure", exc_info=True)
            return False
        finally:
            export_duration.observe(time.perf_counter() - start)

        self.last_error = None
        export_ticks.labels("success").inc()
        return True

    async def close(self):
        """Stop ticking, wait for any in-flight tick, release the sender"""
        if self._closed:
            return

        self._closing.set()

        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Export task {self.name} ended with error: {e}")

        self._closed = True

        try:
            await self.sender.close()
        except Exception as e:
            logger.warning(f"Error closing {self.sender.get_name()} sender: {e}")

        logger.info(f"Stopped export task {self.name} after {self.ticks} ticks")
