"""Tests for the health endpoint."""

import json
import socket

import aiohttp
import pytest
from aiohttp.test_utils import make_mocked_request

from scripts.health_server import HealthServer


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestHealthServer:
    @pytest.mark.asyncio
    async def test_running(self, controller):
        controller.new_ticker(0.01, entry_id="t1")
        server = HealthServer(controller)
        server.plan_name = "cortex-demo"
        resp = await server._handle_health(make_mocked_request("GET", "/health"))
        data = json.loads(resp.text)
        assert data["status"] == "running"
        assert data["plan"] == "cortex-demo"
        assert data["uptime_seconds"] >= 0
        assert data["timers_total"] == 1
        assert data["timers"]["t1"]["kind"] == "PERIODIC"

    @pytest.mark.asyncio
    async def test_paused(self, controller):
        controller.pause_all()
        server = HealthServer(controller)
        resp = await server._handle_health(make_mocked_request("GET", "/health"))
        assert json.loads(resp.text)["status"] == "paused"

    @pytest.mark.asyncio
    async def test_stopped(self, controller):
        controller.close()
        server = HealthServer(controller)
        resp = await server._handle_health(make_mocked_request("GET", "/health"))
        assert json.loads(resp.text)["status"] == "stopped"

    @pytest.mark.asyncio
    async def test_serves_http(self, controller):
        port = _free_port()
        server = HealthServer(controller, port=port)
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(f"http://127.0.0.1:{port}/health") as resp:
                    assert resp.status == 200
                    data = await resp.json()
            assert data["name"] == "temporal"
            assert data["status"] == "running"
        finally:
            await server.stop()
