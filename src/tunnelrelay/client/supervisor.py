"""Client side channel lifecycle: connect, handshake, serve, reconnect."""

import asyncio
import enum

import aiohttp

from tunnelrelay.shared.config import ClientSettings
from tunnelrelay.shared.exceptions import LocalForwardError, ProtocolViolation
from tunnelrelay.shared.headers import to_text
from tunnelrelay.shared.logging import get_logger
from tunnelrelay.shared.models import (
    InitMessage,
    PingMessage,
    PongMessage,
    ProtocolMessage,
    ReadyMessage,
    RequestMessage,
    ResponseMessage,
)
from tunnelrelay.shared.protocol import decode, encode

from .forwarder import LocalForwarder

logger = get_logger(__name__)


class ChannelState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKE_PENDING = "handshake_pending"
    OPEN = "open"


class ConnectionSupervisor:
    """
    Keeps a tunnel open to the relay.

    Every ``request`` received is answered with exactly one ``response``,
    either the local service's reply or a 502 describing the failure.
    Any close or error schedules a reconnect with exponential backoff.
    """

    def __init__(self, settings: ClientSettings, forwarder: LocalForwarder, session: aiohttp.ClientSession) -> None:
        self.settings = settings
        self.forwarder = forwarder
        self.session = session

        self.state = ChannelState.DISCONNECTED
        self.attempts = 0
        self.identifier: str | None = None
        self.public_url: str | None = None
        self.ready = asyncio.Event()

        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._running = False

    def next_delay(self) -> float:
        """Backoff before the next reconnect; advances the failure counter."""
        delay = min(
            self.settings.reconnect_base_delay * (2**self.attempts),
            self.settings.reconnect_max_delay,
        )
        self.attempts += 1
        return delay

    async def run(self) -> None:
        """Connect and serve until ``stop`` is called."""
        self._running = True
        while self._running:
            await self.connect_once()
            if not self._running:
                break

            delay = self.next_delay()
            logger.info(f"Reconnecting in {delay:g}s...")
            await asyncio.sleep(delay)

    async def stop(self) -> None:
        self._running = False
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()

    async def connect_once(self) -> None:
        """Open one channel and serve it until it closes."""
        self.state = ChannelState.CONNECTING
        logger.info(f"Connecting to relay: {self.settings.relay_url}")
        try:
            async with self.session.ws_connect(self.settings.relay_url) as ws:
                self._ws = ws
                logger.info("Connected to relay server")
                await ws.send_str(encode(InitMessage(local_port=self.forwarder.local_port)))
                self.state = ChannelState.HANDSHAKE_PENDING

                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        await self.handle_message(ws, decode(msg.data))
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        logger.error(f"WebSocket error: {ws.exception()}")
                        break
                    else:
                        raise ProtocolViolation(f"Unexpected {msg.type.name} frame")
        except ProtocolViolation as exc:
            logger.error(f"Protocol error: {exc}")
        except (aiohttp.ClientError, OSError) as exc:
            logger.error(f"Connection error: {exc}")
        finally:
            self._ws = None
            self.ready.clear()
            if self.state is not ChannelState.CONNECTING:
                logger.info("Disconnected from relay")
            self.state = ChannelState.DISCONNECTED

    async def handle_message(self, ws: aiohttp.ClientWebSocketResponse, message: ProtocolMessage) -> None:
        if isinstance(message, PingMessage):
            await ws.send_str(encode(PongMessage()))
        elif isinstance(message, ReadyMessage) and self.state is ChannelState.HANDSHAKE_PENDING:
            self.state = ChannelState.OPEN
            self.attempts = 0
            self.identifier = message.identifier
            self.public_url = message.url
            self.ready.set()
            logger.info("Tunnel established")
            logger.info(f"{message.url} -> {self.forwarder.base_url}")
        elif isinstance(message, RequestMessage) and self.state is ChannelState.OPEN:
            task = asyncio.create_task(self.handle_request(ws, message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            raise ProtocolViolation(f"Unexpected {message.type} message in state {self.state.value}")

    async def handle_request(self, ws: aiohttp.ClientWebSocketResponse, message: RequestMessage) -> None:
        """Forward one request locally and answer it on the channel."""
        logger.info(f"<- {message.method} {message.path}")
        try:
            response = await self.forwarder.forward(message)
            frame = encode(response)
        except LocalForwardError as exc:
            logger.error(f"Error forwarding request: {exc}")
            response, frame = self._error_response(message, exc)
        except Exception as exc:
            logger.exception(f"Unexpected failure answering {message.id}")
            response, frame = self._error_response(message, exc)

        try:
            await ws.send_str(frame)
        except (ConnectionError, RuntimeError) as exc:
            logger.warning(f"Could not answer {message.id}, channel gone: {exc}")
            return
        logger.info(f"-> {response.status} ({len(response.body or '')} bytes)")

    @staticmethod
    def _error_response(message: RequestMessage, exc: Exception) -> tuple[ResponseMessage, str]:
        response = ResponseMessage(
            id=message.id,
            status=LocalForwardError.status,
            headers={"Content-Type": "text/plain"},
            body=to_text(f"Tunnel Error: {exc}"),
        )
        return response, encode(response)
