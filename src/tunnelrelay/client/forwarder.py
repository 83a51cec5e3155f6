"""Forwards tunnelled requests to the protected local service."""

import asyncio

import aiohttp
from multidict import CIMultiDict

from tunnelrelay.shared.exceptions import LocalForwardError
from tunnelrelay.shared.headers import from_wire, to_wire
from tunnelrelay.shared.logging import get_logger
from tunnelrelay.shared.models import RequestMessage, ResponseMessage

logger = get_logger(__name__)


class LocalForwarder:
    """Issues each tunnelled request against ``http://local_host:local_port``."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        local_port: int,
        local_host: str = "localhost",
        timeout: float = 30.0,
        forwarded_proto: str = "https",
    ) -> None:
        self.session = session
        self.local_host = local_host
        self.local_port = local_port
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.forwarded_proto = forwarded_proto

    @property
    def base_url(self) -> str:
        return f"http://{self.local_host}:{self.local_port}"

    def _upstream_headers(self, message: RequestMessage) -> CIMultiDict[str]:
        headers = from_wire(message.headers)
        original_host = headers.popall("Host", [""])[0]
        headers["Host"] = f"{self.local_host}:{self.local_port}"
        if original_host:
            headers.setdefault("X-Forwarded-Host", original_host)
        headers["X-Forwarded-Proto"] = self.forwarded_proto
        return headers

    async def forward(self, message: RequestMessage) -> ResponseMessage:
        """
        Send the request to the local service.

        Raises:
            LocalForwardError: If the local service cannot be reached
        """
        try:
            async with self.session.request(
                method=message.method,
                url=f"{self.base_url}{message.path}",
                headers=self._upstream_headers(message),
                data=message.body.encode("utf-8") if message.body else None,
                allow_redirects=False,
                timeout=self.timeout,
            ) as response:
                body = await response.text(errors="replace")
                return ResponseMessage(
                    id=message.id,
                    status=response.status,
                    headers=to_wire(response.headers.items()),
                    body=body,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise LocalForwardError(str(exc) or exc.__class__.__name__) from exc
