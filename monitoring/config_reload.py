"""
Configuration Hot-Reload System

Periodically re-reads the reporter configuration file and notifies
subscribers of every changed, added or removed key without restarting
the service.
"""
from typing import Dict, Optional, Any, List
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timedelta, timezone
from collections import deque
import asyncio

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from monitoring.config_store import ConfigChange, ConfigStore
from monitoring.notifier import ChangeNotifier
from metrics import config_reloads, config_changes
from logger import get_logger

logger = get_logger(__name__)

RELOAD_JOB_ID = "config_reload"


class ReloadStatus(Enum):
    """Status of configuration reload"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ReloadResult:
    """Result of configuration reload"""
    status: ReloadStatus
    timestamp: datetime = field(default_factory=datetime.utcnow)
    error: Optional[str] = None
    changes: List[ConfigChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
            "changes": [
                {"key": c.key, "type": c.change_type.value}
                for c in self.changes
            ],
        }


class ReloadScheduler:
    """
    Drives hot-reload of one configuration store

    Features:
    - Fixed initial delay and period (APScheduler interval job)
    - Reloads never overlap (single job instance, reload lock)
    - Per-key change notifications in subscriber order
    - Reload history and statistics

    Example:
        store = InfluxDbConfiguration(Path("conf"))
        store.load()

        notifier = ChangeNotifier()
        notifier.subscribe("host", on_host_change)

        scheduler = ReloadScheduler(store, notifier)
        scheduler.start()

        # Edits to conf/influxdb.properties are picked up every 3 seconds
    """

    def __init__(
        self,
        store: ConfigStore,
        notifier: ChangeNotifier,
        initial_delay_seconds: float = 10,
        interval_seconds: float = 3,
        history_size: int = 100
    ):
        """
        Initialize reload scheduler

        Args:
            store: Configuration store to reload
            notifier: Subscriber registry to notify
            initial_delay_seconds: Delay before the first reload
            interval_seconds: Period between reloads
            history_size: Number of reload results to keep
        """
        self.store = store
        self.notifier = notifier
        self.initial_delay = timedelta(seconds=initial_delay_seconds)
        self.interval_seconds = interval_seconds

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._reload_history: deque = deque(maxlen=history_size)
        self._reload_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self):
        """Schedule the periodic reload job (must run inside the event loop)"""
        if self.running:
            logger.warning("Config reload scheduler already running")
            return

        self.scheduler = AsyncIOScheduler(
            event_loop=asyncio.get_running_loop(),
            timezone=timezone.utc
        )

        trigger = IntervalTrigger(
            seconds=self.interval_seconds,
            start_date=datetime.now(timezone.utc) + self.initial_delay,
            timezone=timezone.utc
        )

        self.scheduler.add_job(
            self.reload_now,
            trigger=trigger,
            id=RELOAD_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()

        logger.info(
            f"Started watching config file {self.store.config_path} "
            f"(first check in {self.initial_delay.total_seconds():.0f}s, "
            f"every {self.interval_seconds}s)"
        )

    def stop(self):
        """Stop the periodic reload job"""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.scheduler = None

        logger.info(f"Stopped watching config file: {self.store.config_path}")

    async def reload_now(self) -> ReloadResult:
        """Reload the configuration and notify subscribers of every change"""
        async with self._reload_lock:
            try:
                changes = self.store.reload()
            except Exception as e:
                # Keep the scheduled job alive
                logger.error(f"Error reloading config {self.store.config_path}: {e}")
                result = ReloadResult(status=ReloadStatus.FAILED, error=str(e))
                self._record(result)
                return result

            if changes is None:
                result = ReloadResult(
                    status=ReloadStatus.FAILED,
                    error=f"Configuration file {self.store.config_path} not readable"
                )
                self._record(result)
                return result

            if not changes:
                result = ReloadResult(status=ReloadStatus.SKIPPED)
                self._record(result)
                return result

            logger.info(
                f"Reloaded config {self.store.config_path} ({len(changes)} changes)"
            )

            for change in changes:
                config_changes.labels(change.change_type.value).inc()
                await self.notifier.fire(change)

            result = ReloadResult(status=ReloadStatus.SUCCESS, changes=changes)
            self._record(result)
            return result

    def _record(self, result: ReloadResult):
        config_reloads.labels(result.status.value).inc()
        self._reload_history.append(result)

    def get_reload_history(self, limit: int = 10) -> List[ReloadResult]:
        """Get reload history (most recent first)"""
        history = sorted(self._reload_history, key=lambda r: r.timestamp, reverse=True)
        return history[:limit]

    def get_last_reload(self) -> Optional[ReloadResult]:
        """Get last reload result"""
        if not self._reload_history:
            return None

        return self._reload_history[-1]

    def get_stats(self) -> Dict[str, Any]:
        """Get reload statistics"""
        total_reloads = len(self._reload_history)
        successful = sum(1 for r in self._reload_history if r.status == ReloadStatus.SUCCESS)
        skipped = sum(1 for r in self._reload_history if r.status == ReloadStatus.SKIPPED)
        failed = sum(1 for r in self._reload_history if r.status == ReloadStatus.FAILED)

        return {
            "total_reloads": total_reloads,
            "successful": successful,
            "skipped": skipped,
            "failed": failed,
            "success_rate": (successful + skipped) / total_reloads if total_reloads > 0 else 0.0,
            "running": self.running,
            "config_path": str(self.store.config_path),
        }
