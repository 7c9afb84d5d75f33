"""Exception hierarchy for control-plane calls and job polling."""

from typing import Optional

from pydantic import ValidationError

from capi_jobs_client.models import APIError, ErrorEnvelope, Job, TransportResponse


class CapiClientError(Exception):
    """Base exception for all client errors."""


class TransportError(CapiClientError):
    """The HTTP exchange failed or returned a non-2xx status."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        errors: Optional[list[APIError]] = None,
        body: bytes = b"",
    ):
        super().__init__(message)
        self.status = status
        self.errors = errors or []
        self.body = body

    @classmethod
    def from_response(
        cls, response: TransportResponse, context: str = "request failed"
    ) -> "TransportError":
        errors = _parse_error_envelope(response.body)
        if errors:
            first = errors[0]
            message = f"{context}: {first.title}: {first.detail}"
        else:
            text = response.body.decode("utf-8", errors="replace")
            message = f"{context}: status {response.status} - {text}"
        return cls(message, status=response.status, errors=errors, body=response.body)


class JobNotFoundError(TransportError):
    """The job resource does not exist (404)."""


class DecodeError(CapiClientError):
    """A response body could not be parsed into the expected shape."""


class JobFailedError(CapiClientError):
    """The job reached FAILED. The terminal job is kept on `.job`."""

    def __init__(self, job: Job):
        self.job = job
        super().__init__(
            f"job {job.guid} ({job.operation or 'unknown operation'}) "
            f"{job.state}: {job.error_summary()}"
        )


class PollTimeoutError(CapiClientError, TimeoutError):
    """Polling stopped before a terminal state was seen.

    `.job` holds the last successfully fetched job and `.reason` the deadline or
    cancellation that ended the session.
    """

    def __init__(self, job: Optional[Job], reason: BaseException):
        self.job = job
        self.reason = reason
        state = job.state if job is not None else "unknown"
        guid = job.guid if job is not None else "?"
        super().__init__(
            f"timeout waiting for job {guid} to complete "
            f"(last state: {state}): {reason}"
        )
        self.__cause__ = reason


class MalformedAsyncResponseError(CapiClientError):
    """A mutating response matched neither the inline nor the job shape."""

    def __init__(self, message: str, status: Optional[int] = None, location: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.location = location


class OperationCancelledError(CapiClientError):
    """Default reason recorded when a caller cancels without giving one."""


def _parse_error_envelope(body: bytes) -> list[APIError]:
    if not body:
        return []
    try:
        return ErrorEnvelope.model_validate_json(body).errors
    except ValidationError:
        return []
