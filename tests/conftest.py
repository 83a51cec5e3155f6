"""Shared fixtures for TunnelRelay tests."""

from __future__ import annotations

import pytest

from tunnelrelay.shared.config import ClientSettings, RelaySettings
from tunnelrelay.shared.protocol import decode


class FakeChannel:
    """In-memory stand-in for a WebSocket channel."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self.fail_send = False

    async def send_str(self, data: str) -> None:
        if self.closed or self.fail_send:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)

    async def close(self) -> bool:
        self.closed = True
        return True

    def messages(self):
        return [decode(frame) for frame in self.sent]


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def relay_settings() -> RelaySettings:
    return RelaySettings(
        host="127.0.0.1",
        ws_port=8080,
        http_port=8081,
        base_domain="tunnel.localhost",
        request_timeout=5.0,
        ping_interval=30.0,
        liveness_timeout=60.0,
    )


@pytest.fixture
def client_settings() -> ClientSettings:
    return ClientSettings(
        relay_url="ws://127.0.0.1:8080",
        local_host="127.0.0.1",
        local_port=3000,
        reconnect_base_delay=1.0,
        reconnect_max_delay=30.0,
    )
