import asyncio
from typing import Any, Dict, List, Optional, Tuple

from aiohttp import web
from loguru import logger

Reply = Tuple[int, Any]


class FakeVaultumServer:
    """In-process stand-in for the Vaultum API.

    Each operation id is scripted with a list of replies; every status request
    consumes the next one and the last one repeats. A reply is a status
    payload dict, or a `(status, body)` tuple for error responses.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.operations: Dict[str, List[Any]] = {}
        self.overrides: Dict[Tuple[str, str], Reply] = {}
        self.requests: List[Dict[str, Any]] = []
        self.submitted: List[Dict[str, Any]] = []
        self.next_id = "550e8400-e29b-41d4-a716-446655440000"
        self.logger = logger
        self.runner: Optional[web.AppRunner] = None

        self.app = web.Application()
        self.app.router.add_post("/api/op/quote", self.handle_quote)
        self.app.router.add_post("/api/op/submit", self.handle_submit)
        self.app.router.add_get("/api/op/{id}/wait", self.handle_status)
        self.app.router.add_get("/api/op/{id}", self.handle_status)
        self.app.router.add_get("/op/{id}", self.handle_status)
        self.app.router.add_post("/api/account/deploy", self.handle_deploy)
        self.app.router.add_post("/api/recovery/initiate", self.handle_recovery)
        self.app.router.add_get("/api/recovery/{account}/status", self.handle_recovery_status)

    def script(self, op_id: str, *replies: Any) -> None:
        self.operations[op_id] = list(replies)

    def override(self, method: str, path: str, status: int, body: Any) -> None:
        """Answer `method path` with a fixed response (body None sends an empty body)"""
        self.overrides[(method, path)] = (status, body)

    def calls(self, path: str) -> int:
        return sum(1 for r in self.requests if r["path"] == path)

    async def _record(self, request: web.Request) -> Dict[str, Any]:
        body = None
        if request.can_read_body:
            body = await request.json()
        entry = {
            "method": request.method,
            "path": request.path,
            "query": dict(request.query),
            "headers": {k.lower(): v for k, v in request.headers.items()},
            "body": body,
        }
        self.requests.append(entry)
        if self.delay:
            await asyncio.sleep(self.delay)
        return entry

    def _reply(self, status: int, body: Any) -> web.Response:
        if body is None:
            return web.Response(status=status)
        if isinstance(body, str):
            return web.Response(status=status, text=body, content_type="application/json")
        return web.json_response(body, status=status)

    def _override_for(self, request: web.Request) -> Optional[web.Response]:
        reply = self.overrides.get((request.method, request.path))
        if reply is None:
            return None
        return self._reply(*reply)

    async def handle_quote(self, request: web.Request) -> web.Response:
        entry = await self._record(request)
        override = self._override_for(request)
        if override is not None:
            return override
        body = entry["body"] or {}
        return web.json_response(
            {
                "estimatedFee": "50000000000000000",
                "route": {
                    "path": [body.get("fromChain"), body.get("toChain")],
                    "bridges": ["hop"],
                    "estimatedTime": 300,
                },
            }
        )

    async def handle_submit(self, request: web.Request) -> web.Response:
        entry = await self._record(request)
        override = self._override_for(request)
        if override is not None:
            return override
        self.submitted.append(entry["body"])
        op_id = self.next_id
        self.operations.setdefault(op_id, [{"id": op_id, "state": "queued", "txHash": None}])
        return web.json_response({"id": op_id, "state": "queued"})

    async def handle_status(self, request: web.Request) -> web.Response:
        await self._record(request)
        override = self._override_for(request)
        if override is not None:
            return override

        op_id = request.match_info["id"]
        replies = self.operations.get(op_id)
        if not replies:
            self.logger.info(f"Unknown operation {op_id}")
            return web.json_response({"error": "Operation not found"}, status=404)

        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, tuple):
            return self._reply(*reply)
        self.logger.info(f"Returning {reply.get('state')} for operation {op_id}")
        return web.json_response(reply)

    async def handle_deploy(self, request: web.Request) -> web.Response:
        entry = await self._record(request)
        override = self._override_for(request)
        if override is not None:
            return override
        body = entry["body"]
        return web.json_response(
            {
                "address": "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0",
                "owner": body["owner"],
                "chain": body["chain"],
                "modules": body.get("modules", []),
            }
        )

    async def handle_recovery(self, request: web.Request) -> web.Response:
        entry = await self._record(request)
        override = self._override_for(request)
        if override is not None:
            return override
        return web.json_response({"account": entry["body"]["account"], "status": "pending"})

    async def handle_recovery_status(self, request: web.Request) -> web.Response:
        await self._record(request)
        override = self._override_for(request)
        if override is not None:
            return override
        return web.json_response(
            {"account": request.match_info["account"], "status": "pending", "approvals": 1}
        )

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
