"""Tests for the fan protocol client against a local aiohttp server."""

from __future__ import annotations

import asyncio

import pytest
from aiohttp import web

from exceptions import FanRequestError
from fan_client import STATUS_QUERY, FanClient

from fakes import fan_payload


async def _serve(handler):
    app = web.Application()
    app.router.add_post("/mf", handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]
    return runner, f"127.0.0.1:{port}"


def _run(handler, call):
    async def scenario():
        runner, address = await _serve(handler)
        try:
            return await call(FanClient(request_timeout=2), address)
        finally:
            await runner.cleanup()

    return asyncio.run(scenario())


def test_query_status_posts_shadow_query():
    received = []

    async def handler(request):
        received.append(await request.json())
        return web.json_response(fan_payload("fan-1", fanSpeed=4))

    data = _run(handler, lambda client, address: client.query_status(address))

    assert received == [STATUS_QUERY]
    assert data["clientId"] == "fan-1"
    assert data["fanSpeed"] == 4


def test_non_200_is_a_request_error():
    async def handler(request):
        return web.Response(status=500)

    with pytest.raises(FanRequestError):
        _run(handler, lambda client, address: client.query_status(address))


def test_missing_fields_are_a_request_error():
    async def handler(request):
        return web.json_response({"clientId": "fan-1"})

    with pytest.raises(FanRequestError, match="fanOn"):
        _run(handler, lambda client, address: client.request(address, {"fanOn": True}))


def test_non_json_body_is_a_request_error():
    async def handler(request):
        return web.Response(text="<html>")

    with pytest.raises(FanRequestError):
        _run(handler, lambda client, address: client.query_status(address))


def test_connect_timeout_never_exceeds_request_timeout():
    assert FanClient(request_timeout=5, connect_timeout=2).connect_timeout == 2
    assert FanClient(request_timeout=1, connect_timeout=2).connect_timeout == 1
