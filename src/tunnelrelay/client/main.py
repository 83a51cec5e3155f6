"""
TunnelRelay Client
Connects to a relay and forwards tunnelled requests to a local port.
"""

import argparse

import aiohttp
import uvloop

from tunnelrelay.shared.config import ClientSettings, get_client_settings
from tunnelrelay.shared.logging import get_logger, setup_logging

from .forwarder import LocalForwarder
from .supervisor import ConnectionSupervisor

logger = get_logger(__name__)


async def run_client(settings: ClientSettings) -> None:
    async with aiohttp.ClientSession() as session:
        forwarder = LocalForwarder(
            session,
            local_port=settings.local_port,
            local_host=settings.local_host,
            timeout=settings.local_timeout,
            forwarded_proto=settings.forwarded_proto,
        )
        supervisor = ConnectionSupervisor(settings, forwarder, session)
        try:
            await supervisor.run()
        finally:
            await supervisor.stop()


def main(argv: list[str] | None = None) -> None:
    """Entry point for the client."""
    parser = argparse.ArgumentParser(description="Expose a local HTTP service through a TunnelRelay server")
    parser.add_argument("local_port", nargs="?", type=int, default=None, help="Local port to expose (default 3000)")
    args = parser.parse_args(argv)

    settings = get_client_settings()
    if args.local_port is not None:
        settings = settings.model_copy(update={"local_port": args.local_port})

    setup_logging(settings.log_level)
    logger.info(f"Local: {settings.local_host}:{settings.local_port}")

    try:
        uvloop.run(run_client(settings))
    except KeyboardInterrupt:
        logger.info("Client stopped by user")


if __name__ == "__main__":
    main()
