"""
InfluxDB HTTP sender using the ``/write`` endpoint
"""
from typing import Optional

import aiohttp

from senders.base import InfluxDbSender
from senders.exceptions import SenderConfigurationError, SenderError
from logger import get_logger

logger = get_logger(__name__)


class InfluxDbHttpSender(InfluxDbSender):
    """
    Sends line protocol batches over HTTP(S)

    Args:
        protocol: "http" or "https"
        host: InfluxDB host
        port: InfluxDB port
        database: Target database
        auth: ``user:password`` for basic auth, or None
        time_unit: Timestamp precision
        connect_timeout: Connect timeout in milliseconds
        read_timeout: Read timeout in milliseconds
        prefix: Prefix prepended to every measurement name
    """

    def __init__(
        self,
        protocol: str,
        host: str,
        port: int,
        database: str,
        auth: Optional[str] = None,
        time_unit: str = "s",
        connect_timeout: int = 5000,
        read_timeout: int = 5000,
        prefix: str = ""
    ):
        super().__init__(database, time_unit, prefix)

        if protocol not in ("http", "https"):
            raise SenderConfigurationError(f"Unsupported protocol '{protocol}'", self.get_name())
        self._validate_endpoint(host, port, self.get_name())

        self.url = f"{protocol}://{host}:{port}/write"
        self.params = {"db": database, "precision": time_unit}
        self.auth = self._parse_auth(auth)
        self.timeout = aiohttp.ClientTimeout(
            sock_connect=connect_timeout / 1000,
            sock_read=read_timeout / 1000
        )
        self.session: Optional[aiohttp.ClientSession] = None

    def _parse_auth(self, auth: Optional[str]) -> Optional[aiohttp.BasicAuth]:
        if not auth:
            return None

        user, sep, password = auth.partition(":")
        if not sep or not user:
            raise SenderConfigurationError("auth must be in the form user:password", self.get_name())

        return aiohttp.BasicAuth(user, password)

    def get_name(self) -> str:
        return "http"

    async def _transmit(self, payload: bytes):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
            logger.debug(f"Opened HTTP session for {self.url}")

        try:
            async with self.session.post(
                self.url,
                params=self.params,
                data=payload,
                auth=self.auth
            ) as response:
                if response.status >= 300:
                    body = await response.text()
                    raise SenderError(
                        f"InfluxDB write failed with HTTP {response.status}: {body.strip()}",
                        self.get_name()
                    )
        except aiohttp.ClientError as e:
            raise SenderError(f"InfluxDB write to {self.url} failed: {e}", self.get_name(), e) from e

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def describe(self):
        return {**super().describe(), "url": self.url}
