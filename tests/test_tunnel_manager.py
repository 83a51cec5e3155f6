"""Tests for TunnelManager.forward."""

from __future__ import annotations

import asyncio

import pytest

from tests.conftest import FakeChannel
from tunnelrelay.relay.tunnel_manager import TunnelManager
from tunnelrelay.shared.exceptions import (
    DuplicateRequestId,
    MalformedMessage,
    TunnelDisconnected,
    TunnelNotFound,
    TunnelUnavailable,
)
from tunnelrelay.shared.models import ProxiedRequest, RequestMessage, ResponseMessage


def proxied(path: str = "/", body: str | None = None) -> ProxiedRequest:
    return ProxiedRequest(method="GET", path=path, headers={"Accept": "*/*"}, body=body)


class TestForward:
    """Tests for forwarding a public request to a tunnel."""

    @pytest.mark.asyncio
    async def test_sends_request_and_registers_waiter(self, relay_settings, channel):
        manager = TunnelManager(relay_settings)
        tunnel = manager.registry.register(channel)
        sink = asyncio.get_running_loop().create_future()

        request_id = await manager.forward(tunnel.identifier, proxied("/a?b=1", body="data"), sink)

        [message] = channel.messages()
        assert isinstance(message, RequestMessage)
        assert message.id == request_id
        assert message.method == "GET"
        assert message.path == "/a?b=1"
        assert message.headers == {"Accept": "*/*"}
        assert message.body == "data"
        assert request_id in manager.pending
        assert tunnel.request_count == 1

        manager.pending.complete(request_id, ResponseMessage(id=request_id, status=201))
        assert (await sink).status == 201

    @pytest.mark.asyncio
    async def test_request_ids_are_distinct(self, relay_settings, channel):
        manager = TunnelManager(relay_settings)
        tunnel = manager.registry.register(channel)
        loop = asyncio.get_running_loop()

        ids = {await manager.forward(tunnel.identifier, proxied(), loop.create_future()) for _ in range(50)}

        assert len(ids) == 50
        assert all(request_id.startswith(tunnel.identifier) for request_id in ids)
        manager.tunnel_closed(tunnel.identifier)

    @pytest.mark.asyncio
    async def test_unknown_identifier(self, relay_settings):
        manager = TunnelManager(relay_settings)

        with pytest.raises(TunnelNotFound):
            await manager.forward("zzzzzz", proxied(), asyncio.get_running_loop().create_future())

    @pytest.mark.asyncio
    async def test_closed_channel_is_unavailable(self, relay_settings, channel):
        manager = TunnelManager(relay_settings)
        tunnel = manager.registry.register(channel)
        channel.closed = True

        with pytest.raises(TunnelUnavailable) as excinfo:
            await manager.forward(tunnel.identifier, proxied(), asyncio.get_running_loop().create_future())

        assert excinfo.value.status == 503
        assert len(manager.pending) == 0

    @pytest.mark.asyncio
    async def test_send_failure_is_unavailable_and_unregisters(self, relay_settings, channel):
        manager = TunnelManager(relay_settings)
        tunnel = manager.registry.register(channel)
        channel.fail_send = True

        with pytest.raises(TunnelUnavailable):
            await manager.forward(tunnel.identifier, proxied(), asyncio.get_running_loop().create_future())

        assert len(manager.pending) == 0
        assert tunnel.request_count == 0

    @pytest.mark.asyncio
    async def test_duplicate_correlation_id_closes_tunnel(self, relay_settings, channel, monkeypatch):
        manager = TunnelManager(relay_settings)
        tunnel = manager.registry.register(channel)
        loop = asyncio.get_running_loop()
        monkeypatch.setattr("tunnelrelay.relay.tunnel_manager.new_request_id", lambda tunnel: "fixed")

        await manager.forward(tunnel.identifier, proxied(), loop.create_future())
        with pytest.raises(DuplicateRequestId):
            await manager.forward(tunnel.identifier, proxied(), loop.create_future())

        assert channel.closed
        manager.tunnel_closed(tunnel.identifier)

    @pytest.mark.asyncio
    async def test_tunnel_closed_fails_waiters(self, relay_settings, channel):
        manager = TunnelManager(relay_settings)
        tunnel = manager.registry.register(channel)
        sink = asyncio.get_running_loop().create_future()
        await manager.forward(tunnel.identifier, proxied(), sink)

        assert manager.tunnel_closed(tunnel.identifier) == 1

        assert sink.exception().status == 502
        assert tunnel.identifier not in manager.registry
        assert len(manager.pending) == 0

    @pytest.mark.asyncio
    async def test_unserializable_request_leaves_nothing_pending(self, relay_settings, channel):
        manager = TunnelManager(relay_settings)
        tunnel = manager.registry.register(channel)
        request = ProxiedRequest(method="GET", path="/", headers={"X-Name": "caf\udce9"})

        with pytest.raises(MalformedMessage):
            await manager.forward(tunnel.identifier, request, asyncio.get_running_loop().create_future())

        assert len(manager.pending) == 0
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_close_during_send_reports_disconnect(self, relay_settings):
        manager = TunnelManager(relay_settings)

        class ClosingChannel(FakeChannel):
            async def send_str(self, data: str) -> None:
                manager.tunnel_closed(tunnel.identifier)
                self.closed = True
                raise ConnectionResetError("Cannot write to closing transport")

        tunnel = manager.registry.register(ClosingChannel())
        sink = asyncio.get_running_loop().create_future()

        request_id = await manager.forward(tunnel.identifier, proxied(), sink)

        assert request_id not in manager.pending
        with pytest.raises(TunnelDisconnected):
            await sink
