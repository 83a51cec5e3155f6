"""Middleware for tunnel routing."""

from aiohttp import web
from aiohttp.typedefs import Handler

from tunnelrelay.shared.logging import get_logger

logger = get_logger(__name__)


def identifier_from_host(host: str) -> str:
    """First label of the Host header, without any port."""
    return host.split(".")[0].split(":")[0]


@web.middleware
async def tunnel_routing_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Extract the tunnel identifier from the Host header and attach it to the request."""
    host = request.headers.get("Host", "")
    request["identifier"] = identifier_from_host(host)

    logger.debug(f"Extracted identifier {request['identifier']!r} from host {host!r}")

    return await handler(request)
