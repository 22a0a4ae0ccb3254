"""
Health check HTTP endpoint for the timer runner.

Runs a lightweight HTTP server that returns the controller status as
JSON. Used by container health checks and monitoring tools.
"""

import logging
import time

from aiohttp import web

from temporal.core.controller import TemporalController

logger = logging.getLogger(__name__)


class HealthServer:
    """Simple HTTP health check server."""

    def __init__(
        self,
        controller: TemporalController,
        port: int = 8766,
        host: str = "127.0.0.1",
    ):
        self._controller = controller
        self._port = port
        self._host = host
        self._app = web.Application()
        self._runner = None
        self._start_time = time.time()

        # Mutable state set by the runner
        self.plan_name = ""

        self._app.router.add_get("/health", self._handle_health)

    async def start(self):
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        logger.info(f"Health server on http://{self._host}:{self._port}/health")

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()

    async def _handle_health(self, request):
        uptime = int(time.time() - self._start_time)
        status = self._controller.status()
        if status["closed"]:
            state = "stopped"
        elif status["paused"]:
            state = "paused"
        else:
            state = "running"
        data = {
            "status": state,
            "plan": self.plan_name,
            "uptime_seconds": uptime,
            **status,
        }
        return web.json_response(data)
