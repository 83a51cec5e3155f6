"""Custom exceptions for TunnelRelay."""


class TunnelRelayError(Exception):
    """Base exception for all TunnelRelay errors."""

    status: int = 500


class ProtocolViolation(TunnelRelayError):
    """Raised when a peer sends an out-of-sequence or unexpected message."""

    pass


class MalformedMessage(ProtocolViolation):
    """Raised when a frame does not decode to a known protocol message."""

    pass


class DuplicateRequestId(TunnelRelayError):
    """Raised when a correlation id is registered twice."""

    pass


class TunnelNotFound(TunnelRelayError):
    """Raised when no tunnel is registered under an identifier."""

    status = 404

    def __init__(self, identifier: str, active_tunnels: int = 0) -> None:
        super().__init__(f"Tunnel not found: {identifier}")
        self.identifier = identifier
        self.active_tunnels = active_tunnels


class TunnelUnavailable(TunnelRelayError):
    """Raised when a tunnel is registered but its channel cannot be written."""

    status = 503


class RequestTimeout(TunnelRelayError):
    """Raised when a forwarded request gets no response before its deadline."""

    status = 504


class TunnelDisconnected(TunnelRelayError):
    """Raised when the tunnel channel closes while a request is pending."""

    status = 502


class LocalForwardError(TunnelRelayError):
    """Raised when the client cannot reach the protected local service."""

    status = 502
