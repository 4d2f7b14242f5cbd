"""
InfluxDB TCP sender (line protocol over a plain socket listener)
"""
import asyncio

from senders.base import InfluxDbSender
from senders.exceptions import SenderError


class InfluxDbTcpSender(InfluxDbSender):
    """Opens a connection per batch and writes newline-terminated line protocol"""

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: int,
        database: str,
        time_unit: str = "s",
        prefix: str = ""
    ):
        super().__init__(database, time_unit, prefix)
        self._validate_endpoint(host, port, self.get_name())

        self.host = host
        self.port = port
        self.timeout = connect_timeout / 1000

    def get_name(self) -> str:
        return "tcp"

    async def _transmit(self, payload: bytes):
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise SenderError(
                f"Cannot connect to InfluxDB at {self.host}:{self.port}: {e!r}", self.get_name(), e
            ) from e

        try:
            writer.write(payload + b"\n")
            await asyncio.wait_for(writer.drain(), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            raise SenderError(f"InfluxDB TCP write failed: {e!r}", self.get_name(), e) from e
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    def describe(self):
        return {**super().describe(), "address": f"{self.host}:{self.port}"}
