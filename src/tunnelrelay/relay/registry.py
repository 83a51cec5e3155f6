"""Registry of live tunnels keyed by public identifier."""

import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from tunnelrelay.shared.channel import Channel
from tunnelrelay.shared.exceptions import TunnelNotFound
from tunnelrelay.shared.logging import get_logger
from tunnelrelay.shared.models import TunnelInfo, utcnow

logger = get_logger(__name__)


def generate_identifier() -> str:
    """Return a 12 hex character identifier."""
    return secrets.token_hex(6)


@dataclass(eq=False)
class Tunnel:
    identifier: str
    channel: Channel
    url: str
    local_port: int = 3000
    created_at: datetime = field(default_factory=utcnow)
    request_count: int = 0

    def to_info(self) -> TunnelInfo:
        return TunnelInfo(
            identifier=self.identifier,
            url=self.url,
            local_port=self.local_port,
            created_at=self.created_at,
            request_count=self.request_count,
        )


class TunnelRegistry:
    """
    Maps each public identifier to the single channel serving it.

    All operations run on the event loop thread and contain no await, so
    allocation and insertion in ``register`` happen as one step.
    """

    def __init__(
        self,
        url_for: Callable[[str], str],
        id_factory: Callable[[], str] = generate_identifier,
    ) -> None:
        self._tunnels: dict[str, Tunnel] = {}
        self._url_for = url_for
        self._id_factory = id_factory

    def register(self, channel: Channel, local_port: int = 3000) -> Tunnel:
        """Allocate a fresh identifier and bind it to ``channel``."""
        identifier = self._id_factory()
        while identifier in self._tunnels:
            logger.debug(f"Identifier collision on {identifier}, regenerating")
            identifier = self._id_factory()

        tunnel = Tunnel(
            identifier=identifier,
            channel=channel,
            url=self._url_for(identifier),
            local_port=local_port,
        )
        self._tunnels[identifier] = tunnel
        logger.info(f"Tunnel registered: {tunnel.url}")
        return tunnel

    def lookup(self, identifier: str) -> Tunnel:
        """Return the tunnel for ``identifier`` or raise TunnelNotFound."""
        tunnel = self._tunnels.get(identifier)
        if tunnel is None:
            raise TunnelNotFound(identifier, active_tunnels=len(self._tunnels))
        return tunnel

    def remove(self, identifier: str) -> None:
        """Remove a tunnel; unknown identifiers are ignored."""
        if self._tunnels.pop(identifier, None) is not None:
            logger.info(f"Tunnel removed: {identifier}")

    def all(self) -> Mapping[str, Tunnel]:
        return self._tunnels

    def __len__(self) -> int:
        return len(self._tunnels)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._tunnels
