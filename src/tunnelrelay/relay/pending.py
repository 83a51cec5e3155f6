"""Correlation table for requests awaiting a tunnel response."""

import asyncio
from dataclasses import dataclass

from tunnelrelay.shared.exceptions import DuplicateRequestId, RequestTimeout, TunnelDisconnected
from tunnelrelay.shared.logging import get_logger
from tunnelrelay.shared.models import ResponseMessage

logger = get_logger(__name__)

ResponseSink = asyncio.Future[ResponseMessage]


@dataclass(eq=False)
class PendingRequest:
    id: str
    sink: ResponseSink
    tunnel_identifier: str
    deadline: float
    timer: asyncio.TimerHandle


class PendingRequestTable:
    """
    Maps correlation ids to the future awaiting the response.

    Every entry leaves the table through exactly one of ``complete``,
    ``expire``, ``fail_all`` or ``discard``. Removal and timer
    cancellation happen together, so the sink is resolved at most once.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self._entries: dict[str, PendingRequest] = {}

    def add(
        self,
        request_id: str,
        sink: ResponseSink,
        tunnel_identifier: str,
        timeout: float | None = None,
    ) -> PendingRequest:
        """Register a waiter and arm its deadline timer."""
        if request_id in self._entries:
            raise DuplicateRequestId(f"Request id already pending: {request_id}")

        loop = asyncio.get_running_loop()
        delay = self.timeout if timeout is None else timeout
        timer = loop.call_later(delay, self.expire, request_id)
        entry = PendingRequest(
            id=request_id,
            sink=sink,
            tunnel_identifier=tunnel_identifier,
            deadline=loop.time() + delay,
            timer=timer,
        )
        self._entries[request_id] = entry
        return entry

    def complete(self, request_id: str, response: ResponseMessage) -> bool:
        """Resolve the waiter for ``request_id``; False if nothing was pending."""
        entry = self._pop(request_id)
        if entry is None:
            logger.warning(f"Response for unknown request: {request_id}")
            return False

        if not entry.sink.done():
            entry.sink.set_result(response)
        return True

    def expire(self, request_id: str) -> None:
        """Fail the waiter with a timeout if it is still pending."""
        entry = self._pop(request_id)
        if entry is None:
            return

        logger.warning(f"Request timeout: {request_id}")
        if not entry.sink.done():
            entry.sink.set_exception(RequestTimeout("Gateway Timeout"))

    def fail_all(self, tunnel_identifier: str) -> int:
        """Fail every waiter belonging to a tunnel; returns how many."""
        doomed = [
            request_id
            for request_id, entry in self._entries.items()
            if entry.tunnel_identifier == tunnel_identifier
        ]
        for request_id in doomed:
            entry = self._pop(request_id)
            if entry is not None and not entry.sink.done():
                entry.sink.set_exception(TunnelDisconnected("Tunnel disconnected"))

        if doomed:
            logger.info(f"Failed {len(doomed)} pending request(s) for {tunnel_identifier}")
        return len(doomed)

    def discard(self, request_id: str) -> None:
        """Drop an entry whose waiter went away without resolving it."""
        self._pop(request_id)

    def _pop(self, request_id: str) -> PendingRequest | None:
        entry = self._entries.pop(request_id, None)
        if entry is not None:
            entry.timer.cancel()
        return entry

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries
