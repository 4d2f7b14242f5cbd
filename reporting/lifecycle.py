"""
Reporter Lifecycle

Starts the InfluxDB export task from the current configuration, rebuilds
it whenever an export-affecting key changes, and shuts it down with the
host process.
"""
from typing import Any, Callable, Dict, Optional
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime
import asyncio

from monitoring.config_store import ConfigChange
from monitoring.influxdb_config import EXPORT_KEYS, InfluxDbConfiguration, ReporterSettings
from monitoring.notifier import ChangeNotifier
from monitoring.registry import MetricRegistry
from reporting.export_task import ExportTask
from reporting.formatter import InfluxDbFormatter, METER_FIELDS, TIMER_FIELDS
from senders import create_sender
from senders.base import InfluxDbSender
from metrics import reporter_restarts, reporter_running, sender_failures
from logger import get_logger

logger = get_logger(__name__)

SenderFactory = Callable[..., InfluxDbSender]


class ReporterState(Enum):
    """Reporter lifecycle states"""
    STOPPED = "stopped"        # No export task (initial, or sender setup failed)
    RUNNING = "running"        # One export task bound to one sender
    SHUT_DOWN = "shut_down"    # Host stopped, terminal


@dataclass
class ReporterHandle:
    """The live sender/export task pair and the settings it was built from"""
    settings: ReporterSettings
    sender: InfluxDbSender
    task: ExportTask
    started_at: datetime = field(default_factory=datetime.utcnow)


class ReporterLifecycle:
    """
    Owns the single live export task

    Features:
    - Start on host start, subscribe to every export-affecting key
    - Close-then-rebuild on configuration change (never two live tasks)
    - Sender setup failures leave export stopped instead of raising
    - Terminal shutdown on host stop

    Example:
        lifecycle = ReporterLifecycle(registry, configuration, notifier)
        await lifecycle.on_start()
        ...
        await lifecycle.on_stop()
    """

    def __init__(
        self,
        registry: MetricRegistry,
        configuration: InfluxDbConfiguration,
        notifier: ChangeNotifier,
        sender_factory: SenderFactory = create_sender
    ):
        self.registry = registry
        self.configuration = configuration
        self.notifier = notifier
        self.sender_factory = sender_factory

        self.state = ReporterState.STOPPED
        self.restart_count = 0
        self.last_error: Optional[str] = None

        self._handle: Optional[ReporterHandle] = None
        self._lock = asyncio.Lock()
        self._subscribed = False

    @property
    def handle(self) -> Optional[ReporterHandle]:
        return self._handle

    @property
    def sender(self) -> Optional[InfluxDbSender]:
        return self._handle.sender if self._handle else None

    async def on_start(self):
        """Host start hook: start reporting and listen for configuration changes"""
        async with self._lock:
            if self.state is ReporterState.SHUT_DOWN:
                logger.warning("Reporter already shut down, ignoring start")
                return

            if self._handle is None:
                await self._start_reporting(self.configuration.reporter_settings())

            if not self._subscribed:
                self.notifier.subscribe_all(EXPORT_KEYS, self.on_change)
                self._subscribed = True

    async def on_stop(self):
        """Host stop hook: stop reporting for good"""
        async with self._lock:
            await self._stop_reporting()
            self.state = ReporterState.SHUT_DOWN
            logger.info("InfluxDB reporting shut down")

    async def on_change(self, change: ConfigChange):
        """Configuration change subscriber"""
        logger.info(
            f"InfluxDB configuration {change.key} {change.change_type.value}, "
            f"restarting reporter"
        )
        await self.reconfigure()

    async def reconfigure(self) -> bool:
        """
        Rebuild the export task from the current configuration

        Returns:
            True if a new export task is running afterwards
        """
        async with self._lock:
            if self.state is ReporterState.SHUT_DOWN:
                logger.debug("Reporter shut down, ignoring configuration change")
                return False

            settings = self.configuration.reporter_settings()

            # Several keys of one reload each notify; the first rebuild covers them all
            if self._handle is not None and self._handle.settings == settings:
                logger.debug("Reporter already running with current configuration")
                return True

            await self._stop_reporting()
            started = await self._start_reporting(settings)

            self.restart_count += 1
            reporter_restarts.inc()
            return started

    async def _start_reporting(self, settings: ReporterSettings) -> bool:
        sender = self._setup_sender(settings)
        if sender is None:
            self.state = ReporterState.STOPPED
            reporter_running.set(0)
            return False

        task = self._setup_reporter(sender, settings)
        task.start()

        self._handle = ReporterHandle(settings=settings, sender=sender, task=task)
        self.state = ReporterState.RUNNING
        self.last_error = None
        reporter_running.set(1)
        return True

    async def _stop_reporting(self):
        handle, self._handle = self._handle, None
        if handle is not None:
            await handle.task.close()

        if self.state is ReporterState.RUNNING:
            self.state = ReporterState.STOPPED
        reporter_running.set(0)

    def _setup_sender(self, settings: ReporterSettings) -> Optional[InfluxDbSender]:
        endpoint = f"{settings.host}:{settings.port}"

        try:
            logger.info(
                f"Creating InfluxDB {settings.mode.upper()} sender for server {endpoint} "
                f"and database {settings.database}"
            )
            return self.sender_factory(
                mode=settings.mode,
                host=settings.host,
                port=settings.port,
                database=settings.database,
                protocol=settings.protocol,
                auth=settings.auth,
                connect_timeout=settings.connect_timeout,
                prefix=settings.prefix,
                time_unit="s"
            )
        except Exception as e:
            self.last_error = str(e)
            sender_failures.labels(settings.mode).inc()
            logger.error(f"Not able to start InfluxDB sender, please check your configuration: {e}")
            logger.debug("Original exception", exc_info=True)
            return None

    def _setup_reporter(self, sender: InfluxDbSender, settings: ReporterSettings) -> ExportTask:
        formatter = InfluxDbFormatter(
            tags=settings.tag_map,
            rate_unit="seconds",
            duration_unit="milliseconds",
            meter_fields=METER_FIELDS,
            timer_fields=TIMER_FIELDS
        )
        return ExportTask(
            self.registry,
            sender,
            formatter,
            interval_seconds=settings.reporting_interval,
            name=f"influxdb-{settings.mode}-reporter"
        )

    def get_status(self) -> Dict[str, Any]:
        """Reporter status for health checks"""
        status: Dict[str, Any] = {
            "state": self.state.value,
            "restarts": self.restart_count,
            "last_error": self.last_error,
        }

        if self._handle is not None:
            task = self._handle.task
            status.update({
                "sender": self._handle.sender.describe(),
                "reporting_interval": self._handle.settings.reporting_interval,
                "started_at": self._handle.started_at.isoformat(),
                "ticks": task.ticks,
                "failed_ticks": task.failures,
                "last_export_error": task.last_error,
            })

        return status
