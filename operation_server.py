import random
from datetime import datetime
from typing import Dict, Optional

from aiohttp import web
from loguru import logger


class OperationServer:
    """Serves long-running operations that complete after a fixed time"""

    def __init__(self, error_rate: float = 0.0):
        self.error_rate = error_rate
        self.operations: Dict[str, dict] = {}
        self.runner: Optional[web.AppRunner] = None
        self.app = web.Application()
        self.app.router.add_get("/operations/{name}", self.handle_operation)
        self.logger = logger

    def add_operation(
        self,
        name: str,
        completion_time: float = 10.0,
        error: Optional[dict] = None,
    ) -> str:
        self.operations[name] = {
            "completion_time": completion_time,
            "error": error,
            "start_time": None,
        }
        return f"operations/{name}"

    async def handle_operation(self, request):
        name = request.match_info["name"]
        operation = self.operations.get(name)
        if operation is None:
            self.logger.info(f"Operation {name} not found")
            return web.json_response({"error": "not found"}, status=404)

        if random.random() < self.error_rate:
            self.logger.info("Returning unavailable status")
            return web.json_response({"error": "unavailable"}, status=503)

        if operation["start_time"] is None:
            operation["start_time"] = datetime.now()
        elapsed = (datetime.now() - operation["start_time"]).total_seconds()
        body = {"name": f"operations/{name}", "done": False}

        if elapsed < operation["completion_time"]:
            self.logger.info(f"Operation {name} running (elapsed: {elapsed:.1f}s)")
            return web.json_response(body)

        body["done"] = True
        if operation["error"] is not None:
            self.logger.info(f"Operation {name} failed")
            body["error"] = operation["error"]
        else:
            self.logger.info(f"Operation {name} completed")
            body["response"] = {"name": name}
        return web.json_response(body)

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
