import uuid
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web
from loguru import logger


class ControlPlaneServer:
    """Minimal stand-in for the control plane's job and async-operation endpoints.

    Each job reports PROCESSING for `processing_polls` fetches, then COMPLETE,
    or FAILED with `failure_errors` when those are set.
    """

    def __init__(
        self,
        processing_polls: int = 2,
        failure_errors: Optional[list[dict]] = None,
        warnings: Optional[list[str]] = None,
        inline_bindings: bool = True,
    ):
        self.processing_polls = processing_polls
        self.failure_errors = failure_errors or []
        self.warnings = warnings or []
        self.inline_bindings = inline_bindings
        self.jobs: dict[str, dict] = {}
        self.fetch_counts: dict[str, int] = {}
        self.request_headers: list[dict[str, str]] = []
        self.app = web.Application(middlewares=[self.record_headers])
        self.app.router.add_get("/v3/jobs/{guid}", self.handle_job)
        self.app.router.add_post(
            "/v3/spaces/{guid}/actions/apply_manifest", self.handle_apply_manifest
        )
        self.app.router.add_post("/v3/service_credential_bindings", self.handle_create_binding)
        self.app.router.add_delete("/v3/service_brokers/{guid}", self.handle_delete_broker)
        self.app.router.add_post("/v3/broken_async", self.handle_broken_async)
        self.runner = None
        self.logger = logger

    @web.middleware
    async def record_headers(self, request, handler):
        self.request_headers.append(dict(request.headers))
        return await handler(request)

    def create_job(self, operation: str) -> str:
        guid = str(uuid.uuid4())
        self.jobs[guid] = {"operation": operation}
        self.fetch_counts[guid] = 0
        return guid

    def _accepted(self, operation: str) -> web.Response:
        guid = self.create_job(operation)
        self.logger.info(f"Accepted {operation} as job {guid}")
        return web.Response(status=202, headers={"Location": f"/v3/jobs/{guid}"})

    async def handle_job(self, request):
        guid = request.match_info["guid"]
        if guid not in self.jobs:
            return web.json_response(
                {
                    "errors": [
                        {"code": 10010, "title": "CF-ResourceNotFound", "detail": "Job not found"}
                    ]
                },
                status=404,
            )

        self.fetch_counts[guid] += 1
        attempt = self.fetch_counts[guid]
        state = "PROCESSING"
        errors = []
        if attempt > self.processing_polls:
            state = "FAILED" if self.failure_errors else "COMPLETE"
            errors = self.failure_errors

        self.logger.info(f"Returning {state} for job {guid} (fetch {attempt})")
        now = datetime.now(timezone.utc).isoformat()
        return web.json_response(
            {
                "guid": guid,
                "created_at": now,
                "updated_at": now,
                "operation": self.jobs[guid]["operation"],
                "state": state,
                "errors": errors,
                "warnings": [{"detail": detail} for detail in self.warnings]
                if state != "PROCESSING"
                else [],
                "links": {"self": {"href": f"/v3/jobs/{guid}"}},
            }
        )

    async def handle_apply_manifest(self, request):
        await request.read()
        return self._accepted("space.apply_manifest")

    async def handle_create_binding(self, request):
        payload = await request.json()
        if not self.inline_bindings:
            return self._accepted("service_bindings.create")

        binding = {
            "guid": str(uuid.uuid4()),
            "name": payload.get("name", ""),
            "type": payload.get("type", "key"),
        }
        return web.json_response(binding, status=201)

    async def handle_delete_broker(self, request):
        return self._accepted("service_broker.delete")

    async def handle_broken_async(self, request):
        return web.Response(status=202)

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Control plane started on port {port}")
        return site

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
