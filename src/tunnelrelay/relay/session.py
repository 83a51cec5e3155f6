"""Server side of one tunnel channel."""

import asyncio
import enum

from aiohttp import WSMsgType, web

from tunnelrelay.shared.exceptions import ProtocolViolation
from tunnelrelay.shared.logging import get_logger
from tunnelrelay.shared.models import (
    InitMessage,
    PingMessage,
    PongMessage,
    ProtocolMessage,
    ReadyMessage,
    ResponseMessage,
)
from tunnelrelay.shared.protocol import decode, encode

from .registry import Tunnel
from .tunnel_manager import TunnelManager

logger = get_logger(__name__)


class SessionState(str, enum.Enum):
    AWAITING_HANDSHAKE = "awaiting_handshake"
    ACTIVE = "active"
    CLOSED = "closed"


class RelaySession:
    """
    Drives one accepted channel through handshake, request correlation,
    keepalive and teardown.
    """

    def __init__(self, channel: web.WebSocketResponse, manager: TunnelManager, peer: str = "") -> None:
        self.channel = channel
        self.manager = manager
        self.peer = peer
        self.state = SessionState.AWAITING_HANDSHAKE
        self.tunnel: Tunnel | None = None
        self._keepalive: asyncio.Task[None] | None = None
        self._last_seen = asyncio.get_running_loop().time()

    @property
    def identifier(self) -> str | None:
        return self.tunnel.identifier if self.tunnel else None

    async def run(self) -> None:
        """Consume frames until the channel closes, then tear down."""
        try:
            async for msg in self.channel:
                if msg.type == WSMsgType.TEXT:
                    await self.handle_frame(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.error(f"WebSocket error from {self.peer}: {self.channel.exception()}")
                    break
                elif msg.type == WSMsgType.BINARY:
                    raise ProtocolViolation("Binary frames are not part of the protocol")
        except ProtocolViolation as exc:
            logger.error(f"Protocol error from {self.peer}: {exc}")
        except ConnectionError as exc:
            logger.warning(f"Channel to {self.peer} lost: {exc}")
        finally:
            await self.close()

    async def handle_frame(self, frame: str) -> None:
        self._last_seen = asyncio.get_running_loop().time()
        await self.handle_message(decode(frame))

    async def handle_message(self, message: ProtocolMessage) -> None:
        """Apply one decoded message to the session state machine."""
        if self.state is SessionState.CLOSED:
            return

        if isinstance(message, InitMessage):
            await self._handshake(message)
        elif self.state is SessionState.AWAITING_HANDSHAKE:
            raise ProtocolViolation(f"Expected init, got {message.type}")
        elif isinstance(message, ResponseMessage):
            self.manager.pending.complete(message.id, message)
        elif isinstance(message, PongMessage):
            pass
        else:
            raise ProtocolViolation(f"Unexpected {message.type} message from client")

    async def _handshake(self, message: InitMessage) -> None:
        if self.tunnel is not None:
            logger.info(f"Re-handshake on {self.tunnel.identifier}, allocating a new identifier")
            self.manager.tunnel_closed(self.tunnel.identifier)

        self.tunnel = self.manager.registry.register(self.channel, local_port=message.local_port)
        self.state = SessionState.ACTIVE
        await self.channel.send_str(encode(ReadyMessage(url=self.tunnel.url, identifier=self.tunnel.identifier)))
        logger.info(f"Tunnel established: {self.tunnel.url} -> {self.peer}:{message.local_port}")

        if self._keepalive is None:
            self._keepalive = asyncio.create_task(self._keepalive_loop())

    async def _keepalive_loop(self) -> None:
        settings = self.manager.settings
        loop = asyncio.get_running_loop()
        ping = encode(PingMessage())
        while not self.channel.closed:
            await asyncio.sleep(settings.ping_interval)
            if loop.time() - self._last_seen > settings.liveness_timeout:
                logger.warning(f"No traffic from {self.identifier} for {settings.liveness_timeout}s, closing")
                await self.close()
                return
            try:
                await self.channel.send_str(ping)
            except (ConnectionError, RuntimeError) as exc:
                logger.warning(f"Keepalive failed for {self.identifier}: {exc}")
                return

    async def close(self) -> None:
        """Stop keepalive, unregister the tunnel and fail its waiters."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED

        # The keepalive task itself may be the caller after a liveness failure
        if self._keepalive is not None and self._keepalive is not asyncio.current_task():
            self._keepalive.cancel()

        if self.tunnel is not None:
            self.manager.tunnel_closed(self.tunnel.identifier)
            logger.info(f"Tunnel closed: {self.tunnel.url}")

        if not self.channel.closed:
            await self.channel.close()
