"""Tunnel management and request routing."""

import time
import uuid

from tunnelrelay.shared.config import RelaySettings
from tunnelrelay.shared.exceptions import DuplicateRequestId, TunnelUnavailable
from tunnelrelay.shared.logging import get_logger
from tunnelrelay.shared.models import ProxiedRequest, RequestMessage
from tunnelrelay.shared.protocol import encode

from .pending import PendingRequestTable, ResponseSink
from .registry import Tunnel, TunnelRegistry

logger = get_logger(__name__)


def new_request_id(tunnel: Tunnel) -> str:
    """Correlation id built from the tunnel, a timestamp and a random part."""
    return f"{tunnel.identifier}-{time.time_ns()}-{uuid.uuid4().hex}"


class TunnelManager:
    """Owns the tunnel registry and the pending request table."""

    def __init__(self, settings: RelaySettings) -> None:
        self.settings = settings
        self.registry = TunnelRegistry(url_for=settings.public_url)
        self.pending = PendingRequestTable(timeout=settings.request_timeout)

    async def forward(self, identifier: str, request: ProxiedRequest, sink: ResponseSink) -> str:
        """
        Send ``request`` to the tunnel serving ``identifier``.

        The outcome arrives on ``sink``: the tunnel's response, or a
        RequestTimeout / TunnelDisconnected exception.

        Returns:
            The correlation id the request was registered under

        Raises:
            TunnelNotFound: If no tunnel is registered under ``identifier``
            TunnelUnavailable: If the tunnel's channel cannot be written
            MalformedMessage: If the request cannot be carried as a frame
        """
        tunnel = self.registry.lookup(identifier)
        if tunnel.channel.closed:
            raise TunnelUnavailable("Tunnel unavailable")

        request_id = new_request_id(tunnel)
        frame = encode(RequestMessage(id=request_id, **request.model_dump()))

        # Registered before sending so a fast reply always finds its waiter
        try:
            self.pending.add(request_id, sink, tunnel.identifier)
        except DuplicateRequestId:
            logger.exception(f"Correlation ids no longer trustworthy on {identifier}, closing tunnel")
            await tunnel.channel.close()
            raise

        try:
            await tunnel.channel.send_str(frame)
        except (ConnectionError, RuntimeError) as exc:
            self.pending.discard(request_id)
            if sink.done():
                # Session teardown already failed the waiter while the send was in flight
                return request_id
            logger.error(f"Failed to send request to tunnel {identifier}: {exc}")
            raise TunnelUnavailable("Tunnel unavailable") from exc

        tunnel.request_count += 1
        logger.info(f"{request.method} {request.path} -> {identifier} ({request_id})")
        return request_id

    def tunnel_closed(self, identifier: str) -> int:
        """Tear down a tunnel and fail everything still waiting on it."""
        self.registry.remove(identifier)
        return self.pending.fail_all(identifier)
