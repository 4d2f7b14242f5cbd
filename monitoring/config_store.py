"""
Configuration Store

Owns the current configuration snapshot for one properties file and
computes the diff between consecutive snapshots on reload.
"""
from typing import Dict, Iterator, List, Mapping, Optional
from dataclasses import dataclass
from enum import Enum
from datetime import datetime
from pathlib import Path
import os
import threading

from monitoring.properties import read_properties
from logger import get_logger

logger = get_logger(__name__)


class ChangeType(Enum):
    """Kind of difference between two snapshots"""
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class ConfigChange:
    """One key that differs between the previous and the current snapshot"""
    key: str
    change_type: ChangeType
    old_value: Optional[str] = None
    new_value: Optional[str] = None

    @property
    def removed(self) -> bool:
        return self.change_type is ChangeType.REMOVED


class ConfigurationSnapshot(Mapping):
    """Immutable point-in-time copy of all configuration key/value pairs"""

    __slots__ = ("_data", "loaded_at", "source")

    def __init__(
        self,
        data: Optional[Mapping[str, str]] = None,
        source: Optional[Path] = None,
        loaded_at: Optional[datetime] = None
    ):
        object.__setattr__(self, "_data", dict(data or {}))
        object.__setattr__(self, "source", source)
        object.__setattr__(self, "loaded_at", loaded_at or datetime.utcnow())

    def __setattr__(self, name, value):
        raise AttributeError("ConfigurationSnapshot is immutable")

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"ConfigurationSnapshot({self._data!r}, source={self.source})"

    def to_dict(self) -> Dict[str, str]:
        return dict(self._data)


def diff_snapshots(
    old: Mapping[str, str],
    new: Mapping[str, str]
) -> List[ConfigChange]:
    """
    Three-way diff between two snapshots

    Modified keys come first, then removed keys, then added keys.
    Keys with identical values are not reported.
    """
    modified = [
        ConfigChange(key, ChangeType.MODIFIED, old[key], new[key])
        for key in old
        if key in new and old[key] != new[key]
    ]
    removed = [
        ConfigChange(key, ChangeType.REMOVED, old[key], None)
        for key in old
        if key not in new
    ]
    added = [
        ConfigChange(key, ChangeType.ADDED, None, new[key])
        for key in new
        if key not in old
    ]
    return modified + removed + added


class ConfigStore:
    """
    File-backed configuration with copy-on-write snapshots

    The current snapshot is replaced wholesale on every successful
    (re)load, so readers holding a reference never observe a partial
    update. A file that cannot be read leaves the previous snapshot in
    place.

    Example:
        store = ConfigStore(Path("/etc/sidecar"), "influxdb.properties")
        store.load()

        changes = store.reload()
        if changes:
            for change in changes:
                print(change.key, change.new_value)
    """

    def __init__(
        self,
        config_dir: Path,
        filename: str,
        env_overrides: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None
    ):
        """
        Initialize store

        Args:
            config_dir: Directory holding the configuration file
            filename: Configuration file name
            env_overrides: Environment variable name -> property key
            environ: Environment to read overrides from (defaults to os.environ)
        """
        self.config_path = Path(config_dir) / filename
        self.env_overrides: Dict[str, str] = dict(env_overrides or {})
        self._environ = environ

        self._snapshot = ConfigurationSnapshot()
        self._reload_lock = threading.Lock()

    @property
    def snapshot(self) -> ConfigurationSnapshot:
        """Current snapshot"""
        return self._snapshot

    def get_property(self, key: str) -> Optional[str]:
        return self._snapshot.get(key)

    def _apply_env_overrides(self, properties: Dict[str, str]) -> Dict[str, str]:
        environ = self._environ if self._environ is not None else os.environ

        for env_var, key in self.env_overrides.items():
            value = environ.get(env_var)
            if value is not None:
                properties[key] = value

        return properties

    def _read_candidate(self) -> ConfigurationSnapshot:
        """Read the file into a new snapshot without installing it"""
        properties = read_properties(self.config_path)
        return ConfigurationSnapshot(
            self._apply_env_overrides(properties),
            source=self.config_path
        )

    def load(self) -> bool:
        """
        Load the configuration file and install it as current snapshot

        Returns:
            True if the file was read, False if the previous snapshot was kept
        """
        with self._reload_lock:
            try:
                self._snapshot = self._read_candidate()
            except (OSError, UnicodeDecodeError) as e:
                logger.error(f"Not able to load configuration file {self.config_path.absolute()}: {e}")
                return False

        logger.info(f"Loaded configuration file {self.config_path} ({len(self._snapshot)} properties)")
        return True

    def reload(self) -> Optional[List[ConfigChange]]:
        """
        Re-read the configuration file and diff it against the current snapshot

        Returns:
            List of changes (possibly empty), or None if the file could not
            be read and the previous snapshot was kept
        """
        with self._reload_lock:
            old = self._snapshot
            try:
                candidate = self._read_candidate()
            except (OSError, UnicodeDecodeError) as e:
                logger.debug(f"Not able to reload configuration file {self.config_path.absolute()}: {e}")
                return None

            changes = diff_snapshots(old, candidate)
            self._snapshot = candidate

        for change in changes:
            if change.change_type is ChangeType.MODIFIED:
                logger.debug(
                    f"Configuration {change.key} changed from {change.old_value} to {change.new_value}"
                )
            elif change.change_type is ChangeType.REMOVED:
                logger.debug(f"Configuration {change.key} removed")
            else:
                logger.debug(f"Configuration {change.key} added: {change.new_value}")

        return changes
