"""Tests for the local forwarder."""

from __future__ import annotations

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from tunnelrelay.client.forwarder import LocalForwarder
from tunnelrelay.shared.exceptions import LocalForwardError
from tunnelrelay.shared.models import RequestMessage


async def echo(request: web.Request) -> web.Response:
    body = await request.text()
    response = web.Response(
        text=f"{request.method} {request.path_qs} {body}",
        status=201,
        headers={
            "X-Host": request.headers["Host"],
            "X-Proto": request.headers.get("X-Forwarded-Proto", ""),
            "X-Original-Host": request.headers.get("X-Forwarded-Host", ""),
        },
    )
    response.set_cookie("a", "1")
    response.set_cookie("b", "2")
    return response


async def redirect(request: web.Request) -> web.Response:
    raise web.HTTPFound("/elsewhere")


@pytest.fixture
def local_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/redirect", redirect)
    app.router.add_route("*", "/{tail:.*}", echo)
    return app


class TestLocalForwarder:
    """Tests for LocalForwarder."""

    @pytest.mark.asyncio
    async def test_forwards_and_rewrites_host(self, local_app):
        async with TestServer(local_app) as server, aiohttp.ClientSession() as session:
            forwarder = LocalForwarder(session, local_port=server.port, local_host="127.0.0.1")
            message = RequestMessage(
                id="r1",
                method="POST",
                path="/submit?x=1",
                headers={"Host": "abc.tunnel.localhost:8081", "Content-Length": "5"},
                body="hello",
            )

            response = await forwarder.forward(message)

        assert response.id == "r1"
        assert response.status == 201
        assert response.body == "POST /submit?x=1 hello"
        assert response.headers["X-Host"] == f"127.0.0.1:{server.port}"
        assert response.headers["X-Proto"] == "https"
        assert response.headers["X-Original-Host"] == "abc.tunnel.localhost:8081"
        assert len(response.headers["Set-Cookie"]) == 2
        assert "Content-Length" not in response.headers

    @pytest.mark.asyncio
    async def test_redirects_are_passed_through(self, local_app):
        async with TestServer(local_app) as server, aiohttp.ClientSession() as session:
            forwarder = LocalForwarder(session, local_port=server.port, local_host="127.0.0.1")

            response = await forwarder.forward(RequestMessage(id="r1", method="GET", path="/redirect"))

        assert response.status == 302
        assert response.headers["Location"] == "/elsewhere"

    @pytest.mark.asyncio
    async def test_connection_refused_raises(self):
        async with aiohttp.ClientSession() as session:
            forwarder = LocalForwarder(session, local_port=unused_port(), local_host="127.0.0.1")

            with pytest.raises(LocalForwardError) as excinfo:
                await forwarder.forward(RequestMessage(id="r1", method="GET", path="/"))

        assert excinfo.value.status == 502
        assert str(excinfo.value)
