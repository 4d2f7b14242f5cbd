"""
Monitoring Module

Provides the in-process metric registry and the hot-reloadable reporter
configuration: snapshot store, change notifications and the periodic
reload scheduler.

Quick Start:
    from monitoring import InfluxDbConfiguration, ChangeNotifier, ReloadScheduler

    configuration = InfluxDbConfiguration(Path("conf"))
    configuration.load()

    notifier = ChangeNotifier()
    notifier.subscribe("host", on_host_change)

    scheduler = ReloadScheduler(configuration, notifier)
    scheduler.start()
"""

from .registry import (
    MetricRegistry,
    MetricType,
    RegistrySnapshot,
    get_global_registry
)

from .config_store import (
    ConfigStore,
    ConfigurationSnapshot,
    ConfigChange,
    ChangeType,
    diff_snapshots
)

from .influxdb_config import (
    InfluxDbConfiguration,
    ReporterSettings,
    EXPORT_KEYS,
    parse_tags
)

from .notifier import ChangeNotifier

from .config_reload import (
    ReloadScheduler,
    ReloadResult,
    ReloadStatus
)

__all__ = [
    # Metrics
    "MetricRegistry",
    "MetricType",
    "RegistrySnapshot",
    "get_global_registry",

    # Configuration
    "ConfigStore",
    "ConfigurationSnapshot",
    "ConfigChange",
    "ChangeType",
    "diff_snapshots",
    "InfluxDbConfiguration",
    "ReporterSettings",
    "EXPORT_KEYS",
    "parse_tags",

    # Config reload
    "ChangeNotifier",
    "ReloadScheduler",
    "ReloadResult",
    "ReloadStatus",
]
