"""
InfluxDB Senders

Transports that ship formatted metric batches to InfluxDB over HTTP,
TCP or UDP.
"""
from typing import Optional

from senders.base import InfluxDbSender, Point
from senders.exceptions import SenderError, SenderConfigurationError, UnsupportedModeError
from senders.http_sender import InfluxDbHttpSender
from senders.tcp_sender import InfluxDbTcpSender
from senders.udp_sender import InfluxDbUdpSender


def create_sender(
    mode: str,
    host: str,
    port: int,
    database: str,
    protocol: str = "http",
    auth: Optional[str] = None,
    connect_timeout: int = 5000,
    prefix: str = "",
    time_unit: str = "s"
) -> InfluxDbSender:
    """
    Build the sender for a mode

    Raises:
        UnsupportedModeError: mode is not http, tcp or udp
        SenderConfigurationError: the remaining values are invalid
    """
    if mode == "http":
        return InfluxDbHttpSender(
            protocol, host, port, database, auth, time_unit,
            connect_timeout, connect_timeout, prefix
        )
    if mode == "tcp":
        return InfluxDbTcpSender(host, port, connect_timeout, database, time_unit, prefix)
    if mode == "udp":
        return InfluxDbUdpSender(host, port, connect_timeout, database, time_unit, prefix)

    raise UnsupportedModeError(mode)


__all__ = [
    "create_sender",
    "InfluxDbSender",
    "InfluxDbHttpSender",
    "InfluxDbTcpSender",
    "InfluxDbUdpSender",
    "Point",
    "SenderError",
    "SenderConfigurationError",
    "UnsupportedModeError",
]
