from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from loguru import logger
from pydantic import BaseModel

from capi_jobs_client.cancellation import CancelToken
from capi_jobs_client.dispatch import classify_response
from capi_jobs_client.errors import MalformedAsyncResponseError
from capi_jobs_client.jobs import JobsClient
from capi_jobs_client.models import (
    ClientConfig,
    Job,
    Outcome,
    Pending,
    Resolved,
    Resource,
)
from capi_jobs_client.transport import AiohttpTransport, Body, Transport

M = TypeVar("M", bound=BaseModel)


class CapiClient:
    """Entry point for resource clients issuing mutating control-plane calls"""

    def __init__(
        self,
        base_url: str,
        config: Optional[ClientConfig] = None,
        transport: Optional[Transport] = None,
        on_job_state_change: Optional[Callable[[Job], Awaitable[Any]]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.config = config or ClientConfig()
        self.logger = logger
        self._owns_transport = transport is None
        self.transport = transport or AiohttpTransport(
            self.base_url,
            headers=self._default_headers(),
            timeout=self.config.request_timeout,
        )
        self.jobs = JobsClient(
            self.transport, config=self.config.polling, on_state_change=on_job_state_change
        )

    def _default_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": self.config.user_agent}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    async def submit(
        self,
        method: str,
        path: str,
        model: type[M] = Resource,
        body: Body = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Outcome:
        """Issue a mutating request and classify the response"""
        response = await self.transport.request(
            method, path, params=params, body=body, headers=headers
        )
        return classify_response(response, model)

    async def wait(
        self, outcome: Outcome, cancel: Optional[CancelToken] = None
    ) -> Union[M, Job]:
        """Return the inline resource, or the completed job for a pending outcome"""
        if isinstance(outcome, Pending):
            return await self.jobs.resolve(outcome.job_id, cancel)
        return outcome.resource

    async def apply_manifest(self, space_guid: str, manifest: Union[bytes, str]) -> Pending:
        if not space_guid:
            raise ValueError("space GUID is required")
        if not manifest:
            raise ValueError("manifest content is required")

        outcome = await self.submit(
            "POST",
            f"/v3/spaces/{space_guid}/actions/apply_manifest",
            body=manifest,
            headers={"Content-Type": "application/x-yaml"},
        )
        if isinstance(outcome, Resolved):
            raise MalformedAsyncResponseError(
                f"apply manifest for space {space_guid} did not return a job"
            )
        self.logger.info(f"Applying manifest to space {space_guid} as job {outcome.job_id}")
        return outcome

    async def create_service_credential_binding(
        self, body: dict[str, Any], model: type[M] = Resource
    ) -> Outcome:
        # Key bindings complete inline; app bindings to managed services are async.
        return await self.submit("POST", "/v3/service_credential_bindings", model, body=body)

    async def delete(self, path: str, model: type[M] = Resource) -> Outcome:
        return await self.submit("DELETE", path, model)

    async def close(self) -> None:
        if self._owns_transport:
            await self.transport.close()

    async def __aenter__(self) -> "CapiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
