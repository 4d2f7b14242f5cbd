"""
InfluxDB Reporter Configuration

Typed accessors over the reporter properties file. Every accessor reads
one key from the current snapshot and falls back to a fixed default
(with a log line) when the key is absent or malformed, so configuration
mistakes never break the background reload path.
"""
from typing import Dict, List, Mapping, Optional, Tuple
import re
from dataclasses import dataclass, field
from pathlib import Path

from monitoring.config_store import ConfigStore, ConfigurationSnapshot
from logger import get_logger

logger = get_logger(__name__)

MODE = "mode"
HOST = "host"
PORT = "port"
PROTOCOL = "protocol"
REPORTING_INTERVAL = "reportingInterval"
PREFIX = "prefix"
DATABASE = "database"
CONNECT_TIMEOUT = "connectTimeout"
AUTH = "auth"
TAGS = "tags"

# Keys whose change requires rebuilding the running reporter
EXPORT_KEYS: Tuple[str, ...] = (
    MODE, HOST, PORT, PROTOCOL, REPORTING_INTERVAL,
    PREFIX, DATABASE, AUTH, CONNECT_TIMEOUT, TAGS,
)

SUPPORTED_MODES = ("http", "tcp", "udp")
SUPPORTED_PROTOCOLS = ("http", "https")

ENV_PREFIX = "INFLUXDB_SIDECAR"

ENV_OVERRIDES: Dict[str, str] = {
    f"{ENV_PREFIX}_MODE": MODE,
    f"{ENV_PREFIX}_HOST": HOST,
    f"{ENV_PREFIX}_PORT": PORT,
    f"{ENV_PREFIX}_PROTOCOL": PROTOCOL,
    f"{ENV_PREFIX}_REPORTING_INTERVAL": REPORTING_INTERVAL,
    f"{ENV_PREFIX}_PREFIX": PREFIX,
    f"{ENV_PREFIX}_DATABASE": DATABASE,
    f"{ENV_PREFIX}_CONNECTION_TIMEOUT": CONNECT_TIMEOUT,
    f"{ENV_PREFIX}_AUTH": AUTH,
    f"{ENV_PREFIX}_TAGS": TAGS,
}

DEFAULT_MODE = "http"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8086
DEFAULT_PROTOCOL = "http"
DEFAULT_REPORTING_INTERVAL = 1
DEFAULT_DATABASE = "hivemq"
DEFAULT_CONNECT_TIMEOUT = 5000

# Optional sign and ASCII digits only; no underscores or surrounding whitespace
_INTEGER = re.compile(r"[+-]?[0-9]+")


def parse_int(raw: str) -> int:
    """Parse a decimal integer property value, raising ValueError otherwise"""
    if not _INTEGER.fullmatch(raw):
        raise ValueError(f"invalid integer: {raw!r}")
    return int(raw)


def parse_tags(raw: Optional[str]) -> Dict[str, str]:
    """
    Parse a ``k1=v1;k2=v2`` tag list

    A segment without exactly one ``=`` or with an empty key or value is
    logged and skipped.
    """
    if raw is None or not raw.strip():
        return {}

    tags: Dict[str, str] = {}
    for segment in raw.split(";"):
        pair = segment.strip().split("=")
        if len(pair) != 2 or not pair[0].strip() or not pair[1].strip():
            logger.warning(f"Invalid tag format '{segment}' for InfluxDB")
            continue
        tags[pair[0].strip()] = pair[1].strip()

    return tags


@dataclass(frozen=True)
class ReporterSettings:
    """Every export-affecting value, resolved from a single snapshot"""
    mode: str
    host: str
    port: int
    protocol: str
    reporting_interval: int
    prefix: str
    database: str
    connect_timeout: int
    auth: Optional[str] = field(default=None, repr=False)
    tags: Tuple[Tuple[str, str], ...] = ()

    @property
    def tag_map(self) -> Dict[str, str]:
        return dict(self.tags)


class InfluxDbConfiguration(ConfigStore):
    """
    Reporter configuration backed by ``<config_dir>/influxdb.properties``

    Environment variables ``INFLUXDB_SIDECAR_<KEY>`` override file values
    on every load.

    Example:
        configuration = InfluxDbConfiguration(Path("conf"))
        configuration.load()

        configuration.host()      # "localhost" unless configured
        configuration.tags()      # {"env": "prod"} for tags=env=prod
    """

    FILENAME = "influxdb.properties"

    def __init__(
        self,
        config_dir: Path,
        filename: str = FILENAME,
        environ: Optional[Mapping[str, str]] = None
    ):
        super().__init__(
            config_dir,
            filename,
            env_overrides=ENV_OVERRIDES,
            environ=environ
        )

    def _current(self, snapshot: Optional[ConfigurationSnapshot]) -> ConfigurationSnapshot:
        return self.snapshot if snapshot is None else snapshot

    @staticmethod
    def _int_property(
        snapshot: ConfigurationSnapshot,
        key: str,
        default: int,
        positive: bool = False
    ) -> int:
        raw = snapshot.get(key)
        if raw is None:
            logger.warning(f"No {key} configured for InfluxDB, using default: {default}")
            return default

        try:
            value = parse_int(raw)
        except ValueError:
            logger.error(f"Invalid format {raw} for InfluxDB property {key}, using default: {default}")
            return default

        if positive and value <= 0:
            logger.error(f"Invalid value {raw} for InfluxDB property {key}, using default: {default}")
            return default

        return value

    @staticmethod
    def _str_property(
        snapshot: ConfigurationSnapshot,
        key: str,
        default: str,
        warn: bool = True
    ) -> str:
        value = snapshot.get(key)
        if value is None:
            if warn:
                logger.warning(f"No {key} configured for InfluxDB, using default: {default}")
            return default
        return value

    def mode(self, snapshot: Optional[ConfigurationSnapshot] = None) -> str:
        return self._str_property(self._current(snapshot), MODE, DEFAULT_MODE)

    def host(self, snapshot: Optional[ConfigurationSnapshot] = None) -> str:
        return self._str_property(self._current(snapshot), HOST, DEFAULT_HOST)

    def port(self, snapshot: Optional[ConfigurationSnapshot] = None) -> int:
        return self._int_property(self._current(snapshot), PORT, DEFAULT_PORT)

    def protocol(self, snapshot: Optional[ConfigurationSnapshot] = None) -> str:
        snapshot = self._current(snapshot)
        # Only HTTP mode uses the protocol, so only warn there
        warn = snapshot.get(MODE, DEFAULT_MODE) == "http"
        return self._str_property(snapshot, PROTOCOL, DEFAULT_PROTOCOL, warn=warn)

    def reporting_interval(self, snapshot: Optional[ConfigurationSnapshot] = None) -> int:
        """Seconds between export ticks"""
        return self._int_property(
            self._current(snapshot), REPORTING_INTERVAL, DEFAULT_REPORTING_INTERVAL, positive=True
        )

    def prefix(self, snapshot: Optional[ConfigurationSnapshot] = None) -> str:
        return self._str_property(self._current(snapshot), PREFIX, "", warn=False)

    def database(self, snapshot: Optional[ConfigurationSnapshot] = None) -> str:
        return self._str_property(self._current(snapshot), DATABASE, DEFAULT_DATABASE)

    def connect_timeout(self, snapshot: Optional[ConfigurationSnapshot] = None) -> int:
        """Connect (and HTTP read) timeout in milliseconds"""
        return self._int_property(
            self._current(snapshot), CONNECT_TIMEOUT, DEFAULT_CONNECT_TIMEOUT, positive=True
        )

    def auth(self, snapshot: Optional[ConfigurationSnapshot] = None) -> Optional[str]:
        """``user:password`` credentials, or None"""
        return self._current(snapshot).get(AUTH)

    def tags(self, snapshot: Optional[ConfigurationSnapshot] = None) -> Dict[str, str]:
        return parse_tags(self._current(snapshot).get(TAGS))

    def reporter_settings(self) -> ReporterSettings:
        """Resolve all reporter settings from one snapshot reference"""
        snapshot = self.snapshot

        return ReporterSettings(
            mode=self.mode(snapshot),
            host=self.host(snapshot),
            port=self.port(snapshot),
            protocol=self.protocol(snapshot),
            reporting_interval=self.reporting_interval(snapshot),
            prefix=self.prefix(snapshot),
            database=self.database(snapshot),
            connect_timeout=self.connect_timeout(snapshot),
            auth=self.auth(snapshot),
            tags=tuple(sorted(self.tags(snapshot).items())),
        )

    def validate(self) -> List[str]:
        """List configuration problems that would prevent exporting"""
        snapshot = self.snapshot
        problems = []

        mode = snapshot.get(MODE, DEFAULT_MODE)
        if mode not in SUPPORTED_MODES:
            problems.append(f"Unsupported mode '{mode}', expected one of {', '.join(SUPPORTED_MODES)}")

        port = snapshot.get(PORT)
        if port is not None:
            try:
                if not 0 < parse_int(port) < 65536:
                    problems.append(f"Port {port} out of range")
            except ValueError:
                problems.append(f"Port '{port}' is not a number")

        protocol = snapshot.get(PROTOCOL, DEFAULT_PROTOCOL)
        if mode == "http" and protocol not in SUPPORTED_PROTOCOLS:
            problems.append(f"Unsupported protocol '{protocol}'")

        return problems

    def redacted(self) -> Dict[str, str]:
        """Current snapshot with credentials masked"""
        values = self.snapshot.to_dict()
        if AUTH in values:
            values[AUTH] = "***"
        return values
