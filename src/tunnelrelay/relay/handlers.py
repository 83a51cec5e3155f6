"""HTTP and WebSocket request handlers."""

import asyncio
import weakref

from aiohttp import web

from tunnelrelay.shared.config import RelaySettings
from tunnelrelay.shared.exceptions import TunnelNotFound, TunnelRelayError
from tunnelrelay.shared.headers import from_wire, to_text, to_wire
from tunnelrelay.shared.logging import get_logger
from tunnelrelay.shared.models import HealthResponse, ProxiedRequest, ResponseMessage

from .session import RelaySession
from .tunnel_manager import TunnelManager

logger = get_logger(__name__)


class RequestHandlers:
    """HTTP and WebSocket request handlers for the relay."""

    def __init__(self, tunnel_manager: TunnelManager, settings: RelaySettings) -> None:
        self.tunnel_manager = tunnel_manager
        self.settings = settings
        self.sessions: weakref.WeakSet[RelaySession] = weakref.WeakSet()

    async def handle_tunnel_connect(self, request: web.Request) -> web.WebSocketResponse:
        """Handle a WebSocket connection from a client wanting to create a tunnel."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        peer = request.remote or "unknown"
        logger.info(f"Client connected from {peer}")

        session = RelaySession(ws, self.tunnel_manager, peer=peer)
        self.sessions.add(session)
        try:
            await session.run()
        finally:
            self.sessions.discard(session)
            logger.info(f"Client disconnected: {peer}")

        return ws

    async def close_sessions(self, app: web.Application | None = None) -> None:
        """Close every open channel; used as an on_shutdown hook."""
        for session in list(self.sessions):
            await session.close()

    async def handle_proxied_request(self, request: web.Request) -> web.Response:
        """Handle HTTP requests that should be proxied through a tunnel."""
        if request.path == "/_health":
            return await self.handle_health(request)

        identifier = request.get("identifier") or ""

        body = await request.read()
        proxied = ProxiedRequest(
            method=request.method,
            path=to_text(request.path_qs),
            headers=to_wire(request.headers.items()),
            body=body.decode("utf-8", errors="replace") if body else None,
        )

        loop = asyncio.get_running_loop()
        sink: asyncio.Future[ResponseMessage] = loop.create_future()
        request_id = None
        try:
            request_id = await self.tunnel_manager.forward(identifier, proxied, sink)
            response = await sink
        except TunnelNotFound as exc:
            return web.Response(
                text=f"Tunnel not found: {identifier}\n\nActive tunnels: {exc.active_tunnels}",
                status=exc.status,
            )
        except TunnelRelayError as exc:
            return web.Response(text=str(exc) or exc.__class__.__name__, status=exc.status)
        finally:
            if request_id is not None:
                # No-op unless the public caller went away before an outcome arrived
                self.tunnel_manager.pending.discard(request_id)

        logger.info(f"{response.status} {len(response.body or '')}b <- {identifier} ({request_id})")
        return web.Response(
            body=(response.body or "").encode("utf-8"),
            status=response.status,
            headers=from_wire(response.headers),
        )

    async def handle_health(self, request: web.Request) -> web.Response:
        """Return relay status; never forwarded."""
        manager = self.tunnel_manager
        response = HealthResponse(
            active_tunnels=len(manager.registry),
            pending_requests=len(manager.pending),
            tunnels=[tunnel.to_info() for tunnel in manager.registry.all().values()],
        )
        return web.json_response(response.model_dump(mode="json"))
