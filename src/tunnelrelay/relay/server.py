"""
TunnelRelay Server - public side of the tunnel.
Accepts tunnel channels on one port and public HTTP traffic on another.
"""

import asyncio

import aiohttp_cors
import uvloop
from aiohttp import web

from tunnelrelay.shared.config import RelaySettings, get_relay_settings
from tunnelrelay.shared.logging import get_logger, setup_logging

from .handlers import RequestHandlers
from .middleware import tunnel_routing_middleware
from .tunnel_manager import TunnelManager

logger = get_logger(__name__)


class RelayServer:
    """Main server class wiring the tunnel manager to both listeners."""

    def __init__(self, settings: RelaySettings | None = None) -> None:
        self.settings = settings or get_relay_settings()
        self.tunnel_manager = TunnelManager(self.settings)
        self.handlers = RequestHandlers(self.tunnel_manager, self.settings)
        self._runners: list[web.AppRunner] = []

    def create_channel_app(self) -> web.Application:
        """Application accepting tunnel WebSocket channels on any path."""
        app = web.Application()
        app.router.add_get("/{tail:.*}", self.handlers.handle_tunnel_connect)
        app.on_shutdown.append(self.handlers.close_sessions)
        return app

    def create_public_app(self) -> web.Application:
        """Application serving public requests routed by Host header."""
        app = web.Application(middlewares=[tunnel_routing_middleware])

        cors = aiohttp_cors.setup(
            app,
            defaults={
                "*": aiohttp_cors.ResourceOptions(
                    allow_credentials=True,
                    expose_headers="*",
                    allow_headers="*",
                )
            },
        )

        health = app.router.add_get("/_health", self.handlers.handle_health)
        app.router.add_route("*", "/{tail:.*}", self.handlers.handle_proxied_request)

        # Forwarded routes carry the tunnelled service's own CORS headers
        cors.add(health)
        return app

    async def start(self) -> None:
        """Bind both listeners."""
        for app, port in (
            (self.create_channel_app(), self.settings.ws_port),
            (self.create_public_app(), self.settings.http_port),
        ):
            runner = web.AppRunner(app)
            await runner.setup()
            site = web.TCPSite(runner, self.settings.host, port)
            await site.start()
            self._runners.append(runner)

        logger.info(f"Channel listener on ws://{self.settings.host}:{self.settings.ws_port}")
        logger.info(f"Public listener on http://*.{self.settings.base_domain}:{self.settings.http_port}")
        logger.info("Ready for tunnel connections")

    async def stop(self) -> None:
        """Close all channels, then the listeners."""
        logger.info("Shutting down...")
        for runner in self._runners:
            await runner.cleanup()
        self._runners.clear()

    async def serve_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()


def main() -> None:
    """Entry point for the relay."""
    settings = get_relay_settings()
    setup_logging(settings.log_level)
    server = RelayServer(settings)

    try:
        uvloop.run(server.serve_forever())
    except KeyboardInterrupt:
        logger.info("Relay stopped by user")


if __name__ == "__main__":
    main()
