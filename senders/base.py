"""
Base abstract interface for InfluxDB senders
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Union
from dataclasses import dataclass, field
import math

from senders.exceptions import SenderConfigurationError

FieldValue = Union[int, float, bool, str]

# Line protocol precision name and multiplier from epoch seconds
TIME_UNITS: Dict[str, int] = {
    "s": 1,
    "ms": 1_000,
    "us": 1_000_000,
    "ns": 1_000_000_000,
}


@dataclass
class Point:
    """One line-protocol point"""
    measurement: str
    fields: Dict[str, FieldValue]
    tags: Dict[str, str] = field(default_factory=dict)
    timestamp: float = 0.0  # epoch seconds


def _escape(value: str, chars: str) -> str:
    value = value.replace("\\", "\\\\")
    for char in chars:
        value = value.replace(char, f"\\{char}")
    return value


def escape_measurement(name: str) -> str:
    return _escape(name, ", ")


def escape_key(key: str) -> str:
    """Escape tag keys, tag values and field keys"""
    return _escape(key, ",= ")


def format_field_value(value: FieldValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"{value}i"
    if isinstance(value, float):
        return repr(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _is_writable(value: FieldValue) -> bool:
    # InfluxDB rejects NaN and infinity
    return not (isinstance(value, float) and (math.isnan(value) or math.isinf(value)))


class InfluxDbSender(ABC):
    """
    Abstract base class for InfluxDB senders

    Serializes points into line protocol (measurement names prefixed with
    the configured prefix) and hands the payload to the transport.
    """

    def __init__(self, database: str, time_unit: str = "s", prefix: str = ""):
        if not database:
            raise SenderConfigurationError("Database name must not be empty", self.get_name())
        if time_unit not in TIME_UNITS:
            raise SenderConfigurationError(f"Unsupported time unit '{time_unit}'", self.get_name())

        self.database = database
        self.time_unit = time_unit
        self.prefix = prefix or ""

    @staticmethod
    def _validate_endpoint(host: str, port: int, sender_name: str):
        if not host:
            raise SenderConfigurationError("Host must not be empty", sender_name)
        if not isinstance(port, int) or not 0 < port < 65536:
            raise SenderConfigurationError(f"Port {port} out of range", sender_name)

    @abstractmethod
    def get_name(self) -> str:
        """Get sender name"""
        pass

    @abstractmethod
    async def _transmit(self, payload: bytes):
        """Transmit one serialized batch"""
        pass

    async def close(self):
        """Cleanup resources"""
        pass

    def format_line(self, point: Point) -> str:
        """Serialize one point, or return an empty string if it has no writable fields"""
        fields = ",".join(
            f"{escape_key(key)}={format_field_value(value)}"
            for key, value in point.fields.items()
            if value is not None and _is_writable(value)
        )
        if not fields:
            return ""

        measurement = escape_measurement(f"{self.prefix}{point.measurement}")
        tags = "".join(
            f",{escape_key(key)}={escape_key(str(value))}"
            for key, value in sorted(point.tags.items())
            if key and value
        )
        timestamp = int(point.timestamp * TIME_UNITS[self.time_unit])

        return f"{measurement}{tags} {fields} {timestamp}"

    def serialize(self, points: Sequence[Point]) -> bytes:
        lines: List[str] = [line for line in (self.format_line(p) for p in points) if line]
        return "\n".join(lines).encode("utf-8")

    async def send(self, points: Sequence[Point]) -> int:
        """
        Send a batch of points

        Returns:
            Number of bytes handed to the transport
        """
        payload = self.serialize(points)
        if not payload:
            return 0

        await self._transmit(payload)
        return len(payload)

    def describe(self) -> Dict[str, str]:
        return {"sender": self.get_name(), "database": self.database, "prefix": self.prefix}
