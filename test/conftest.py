import asyncio
import json
import time
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from control_plane_server import ControlPlaneServer
from capi_jobs_client.models import JobPollingConfig, TransportResponse

BASE_URL_TEMPLATE = "http://localhost:{}"


def job_payload(
    state: str,
    guid: str = "job-guid",
    operation: str = "app.apply_manifest",
    errors: Optional[list[dict]] = None,
    warnings: Optional[list[str]] = None,
) -> dict:
    return {
        "guid": guid,
        "created_at": "2026-10-16T10:00:00Z",
        "updated_at": "2026-10-16T10:00:30Z",
        "operation": operation,
        "state": state,
        "errors": errors or [],
        "warnings": [{"detail": detail} for detail in warnings or []],
        "links": {"self": {"href": f"/v3/jobs/{guid}"}},
    }


def json_response(payload, status: int = 200, headers: Optional[dict] = None) -> TransportResponse:
    return TransportResponse(
        status=status,
        headers={"Content-Type": "application/json", **(headers or {})},
        body=json.dumps(payload).encode(),
    )


class ScriptedTransport:
    """Replays canned responses and records when each request was made.

    The last response repeats once the script runs out. A `delay` makes every
    request after the first `fast_calls` take that long, so tests can interrupt
    in-flight fetches.
    """

    def __init__(self, responses: list, delay: float = 0.0, fast_calls: int = 0):
        self.responses = list(responses)
        self.delay = delay
        self.fast_calls = fast_calls
        self.calls: list[tuple[str, str]] = []
        self.call_times: list[float] = []
        self.cancelled_calls = 0

    async def request(self, method, path, params=None, body=None, headers=None):
        self.calls.append((method, path))
        self.call_times.append(time.monotonic())
        index = min(len(self.calls), len(self.responses)) - 1
        response = self.responses[index]
        if self.delay and len(self.calls) > self.fast_calls:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled_calls += 1
                raise
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json_response(response)
        return response


@pytest.fixture
def fast_polling() -> JobPollingConfig:
    return JobPollingConfig(poll_interval=0.01, poll_timeout=5.0)


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[tuple[ControlPlaneServer, str], None]:
    """Start and yield a fake control plane on a random port."""
    port = unused_tcp_port_factory()
    server_instance = ControlPlaneServer(processing_polls=2)
    await server_instance.start(port=port)
    try:
        yield server_instance, BASE_URL_TEMPLATE.format(port)
    finally:
        await server_instance.stop()
