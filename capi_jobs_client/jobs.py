import asyncio
import contextlib
import time
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from pydantic import ValidationError

from capi_jobs_client.cancellation import CancelToken
from capi_jobs_client.errors import (
    DecodeError,
    JobFailedError,
    JobNotFoundError,
    PollTimeoutError,
    TransportError,
)
from capi_jobs_client.models import Job, JobPollingConfig, JobPollResult
from capi_jobs_client.transport import Transport

JOBS_PATH = "/v3/jobs"


class JobsClient:
    def __init__(
        self,
        transport: Transport,
        config: Optional[JobPollingConfig] = None,
        on_state_change: Optional[Callable[[Job], Awaitable[Any]]] = None,
    ):
        self.transport = transport
        self.config = config or JobPollingConfig()
        self.logger = logger
        self.on_state_change = on_state_change

    async def fetch(self, job_id: str) -> Job:
        """Fetches the current state of a job from the control plane"""
        if not job_id:
            raise ValueError("job id is required")

        path = f"{JOBS_PATH}/{job_id}"
        response = await self.transport.request("GET", path)

        if response.status == 404:
            raise JobNotFoundError.from_response(response, context=f"job {job_id} not found")
        if not response.ok:
            self.logger.error(f"HTTP error {response.status} fetching job {job_id}")
            raise TransportError.from_response(response, context=f"getting job {job_id}")

        try:
            return Job.model_validate_json(response.body)
        except ValidationError as e:
            self.logger.error(f"Could not parse job {job_id}: {e}")
            raise DecodeError(f"parsing job {job_id}: {e}") from e

    async def _handle_state_change(self, job: Job, last_state: Optional[str]) -> None:
        """Invoke the state change callback if the state has changed"""
        if last_state == job.state:
            return
        self.logger.debug(f"Job {job.guid} state changed to {job.state}")
        if self.on_state_change is not None:
            await self.on_state_change(job)

    def _deadline(self, started: float, cancel: Optional[CancelToken]) -> tuple[float, bool]:
        """Returns the session deadline and whether it comes from the caller"""
        deadline = started + self.config.poll_timeout
        if cancel is not None and cancel.deadline is not None and cancel.deadline < deadline:
            return cancel.deadline, True
        return deadline, False

    async def _wait_before_next_poll(self, delay: float, cancel: Optional[CancelToken]) -> bool:
        """Waits out the poll interval. Returns True if the caller cancelled meanwhile"""
        self.logger.debug(f"Job still processing, waiting {delay:.2f}s before next attempt")
        if cancel is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _fetch_interruptible(
        self, job_id: str, cancel: Optional[CancelToken], deadline: float
    ) -> Optional[Job]:
        """Fetches a job unless the deadline or the caller's cancellation wins the race.

        Returns None when interrupted. The in-flight request is cancelled and
        awaited before returning.
        """
        fetch_task = asyncio.ensure_future(self.fetch(job_id))
        waiters = {fetch_task}
        cancel_task = None
        if cancel is not None:
            cancel_task = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=max(deadline - time.monotonic(), 0.0),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (cancel_task, fetch_task):
                if task is not None and not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        if fetch_task in done:
            return fetch_task.result()
        return None

    def _timed_out(
        self,
        job: Optional[Job],
        cancel: Optional[CancelToken],
        caller_deadline: bool,
        attempts: int,
        started: float,
    ) -> JobPollResult:
        if cancel is not None and cancel.cancelled:
            reason = cancel.reason
        elif caller_deadline:
            reason = asyncio.TimeoutError("caller deadline exceeded")
        else:
            reason = asyncio.TimeoutError(
                f"job did not complete within {self.config.poll_timeout} seconds"
            )
        if job is None:
            self.logger.warning(f"Stopped polling before the first fetch returned: {reason}")
        else:
            self.logger.warning(f"Stopped polling job {job.guid} in state {job.state}: {reason}")
        return JobPollResult(
            job=job,
            error=PollTimeoutError(job, reason),
            attempts=attempts,
            elapsed=time.monotonic() - started,
        )

    def _finished(self, job: Job, attempts: int, started: float) -> JobPollResult:
        for message in job.warning_messages:
            self.logger.warning(f"Job {job.guid} ({job.operation}) warning: {message}")

        error = None
        if job.is_failed:
            error = JobFailedError(job)
            self.logger.error(str(error))
        else:
            self.logger.info(f"Job {job.guid} ({job.operation}) completed after {attempts} polls")
        return JobPollResult(
            job=job, error=error, attempts=attempts, elapsed=time.monotonic() - started
        )

    async def poll(self, job_id: str, cancel: Optional[CancelToken] = None) -> JobPollResult:
        """Poll a job until it is terminal, the deadline passes or the caller cancels.

        FAILED jobs and expired sessions are reported on the result together with
        the last fetched job, which is None only if no fetch got through.
        Transport and decode errors propagate.
        """
        started = time.monotonic()
        deadline, caller_deadline = self._deadline(started, cancel)

        if (cancel is not None and cancel.cancelled) or time.monotonic() >= deadline:
            return self._timed_out(None, cancel, caller_deadline, 0, started)

        job = await self._fetch_interruptible(job_id, cancel, deadline)
        if job is None:
            return self._timed_out(None, cancel, caller_deadline, 0, started)
        attempts = 1
        await self._handle_state_change(job, None)

        while not job.is_terminal:
            remaining = deadline - time.monotonic()
            if (cancel is not None and cancel.cancelled) or remaining <= 0:
                return self._timed_out(job, cancel, caller_deadline, attempts, started)

            if await self._wait_before_next_poll(
                min(self.config.poll_interval, remaining), cancel
            ):
                return self._timed_out(job, cancel, caller_deadline, attempts, started)
            if time.monotonic() >= deadline:
                return self._timed_out(job, cancel, caller_deadline, attempts, started)

            latest = await self._fetch_interruptible(job_id, cancel, deadline)
            if latest is None:
                return self._timed_out(job, cancel, caller_deadline, attempts, started)

            last_state = job.state
            job = latest
            attempts += 1
            await self._handle_state_change(job, last_state)

        return self._finished(job, attempts, started)

    async def resolve(self, job_id: str, cancel: Optional[CancelToken] = None) -> Job:
        """Block until the job completes; raise JobFailedError or PollTimeoutError otherwise"""
        result = await self.poll(job_id, cancel)
        return result.raise_for_error()
