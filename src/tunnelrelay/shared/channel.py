"""Interface of a persistent bidirectional text channel."""

from typing import Protocol


class Channel(Protocol):
    """
    The subset of an aiohttp WebSocket (server or client side) the
    tunnel core relies on.
    """

    @property
    def closed(self) -> bool: ...

    async def send_str(self, data: str) -> None: ...

    async def close(self) -> bool: ...
