"""
InfluxDB UDP sender
"""
from typing import List, Optional
import asyncio

from senders.base import InfluxDbSender
from senders.exceptions import SenderError

# Largest datagram written; stays below the 65507 byte UDP payload limit
MAX_DATAGRAM_BYTES = 64000


def split_datagrams(payload: bytes, limit: int = MAX_DATAGRAM_BYTES) -> List[bytes]:
    """
    Split newline-separated line protocol into datagrams of at most ``limit`` bytes

    Lines are never broken; a single line longer than ``limit`` becomes its
    own datagram. Every datagram ends with a newline.
    """
    datagrams: List[bytes] = []
    current: List[bytes] = []
    size = 0

    for line in payload.split(b"\n"):
        if not line:
            continue
        line_size = len(line) + 1
        if current and size + line_size > limit:
            datagrams.append(b"\n".join(current) + b"\n")
            current, size = [], 0
        current.append(line)
        size += line_size

    if current:
        datagrams.append(b"\n".join(current) + b"\n")

    return datagrams


class _DatagramErrorProtocol(asyncio.DatagramProtocol):
    """Keeps the last send error reported by the transport"""

    def __init__(self):
        self.error: Optional[Exception] = None

    def error_received(self, exc: Exception):
        self.error = exc


class InfluxDbUdpSender(InfluxDbSender):
    """Writes each batch as one or more datagrams on a lazily opened endpoint"""

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: int,
        database: str,
        time_unit: str = "s",
        prefix: str = "",
        max_datagram_bytes: int = MAX_DATAGRAM_BYTES
    ):
        super().__init__(database, time_unit, prefix)
        self._validate_endpoint(host, port, self.get_name())

        self.host = host
        self.port = port
        self.timeout = connect_timeout / 1000
        self.max_datagram_bytes = max_datagram_bytes
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._protocol: Optional[_DatagramErrorProtocol] = None

    def get_name(self) -> str:
        return "udp"

    async def _open(self):
        loop = asyncio.get_running_loop()
        try:
            self._transport, self._protocol = await asyncio.wait_for(
                loop.create_datagram_endpoint(
                    _DatagramErrorProtocol,
                    remote_addr=(self.host, self.port)
                ),
                timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise SenderError(
                f"Cannot open UDP endpoint to {self.host}:{self.port}: {e!r}", self.get_name(), e
            ) from e

    def _raise_pending_error(self):
        error, self._protocol.error = self._protocol.error, None
        if error is not None:
            raise SenderError(
                f"InfluxDB UDP write to {self.host}:{self.port} failed: {error!r}", self.get_name(), error
            ) from error

    async def _transmit(self, payload: bytes):
        if self._transport is None or self._transport.is_closing():
            await self._open()

        self._protocol.error = None
        for datagram in split_datagrams(payload, self.max_datagram_bytes):
            self._transport.sendto(datagram)
            self._raise_pending_error()

        # Errors for buffered datagrams are reported on the next loop iteration
        await asyncio.sleep(0)
        self._raise_pending_error()

    async def close(self):
        if self._transport:
            self._transport.close()
            self._transport = None
            self._protocol = None

    def describe(self):
        return {**super().describe(), "address": f"{self.host}:{self.port}"}
