from datetime import datetime
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_TIMEOUT = 300.0  # 5 minutes
DEFAULT_REQUEST_TIMEOUT = 30.0


class JobState(str, Enum):
    processing = "PROCESSING"
    complete = "COMPLETE"
    failed = "FAILED"


TERMINAL_STATES = frozenset({JobState.complete.value, JobState.failed.value})


class APIError(BaseModel):
    code: int = 0
    title: str = ""
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.title}: {self.detail} (code: {self.code})"


class ErrorEnvelope(BaseModel):
    """Body of a control-plane error response"""

    errors: list[APIError]


class JobWarning(BaseModel):
    detail: str


class Link(BaseModel):
    href: str
    method: Optional[str] = None


class Resource(BaseModel):
    """Envelope shared by every control-plane resource.

    Resource-specific fields are kept as extras so callers that only need the
    guid can still use this as their expected type.
    """

    model_config = ConfigDict(extra="allow")

    guid: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    links: dict[str, Link] = Field(default_factory=dict)


class Job(Resource):
    # Kept as a plain string: the control plane may add states we don't know.
    operation: str = ""
    state: str
    errors: list[APIError] = Field(default_factory=list)
    warnings: list[JobWarning] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_complete(self) -> bool:
        return self.state == JobState.complete.value

    @property
    def is_failed(self) -> bool:
        return self.state == JobState.failed.value

    @property
    def warning_messages(self) -> list[str]:
        return [warning.detail for warning in self.warnings]

    def error_summary(self) -> str:
        """Aggregate error details into one operator-facing message"""
        if not self.errors:
            return "no error details available"
        if len(self.errors) == 1:
            return self.errors[0].detail

        lines = ["multiple errors:"]
        for index, error in enumerate(self.errors, start=1):
            lines.append(f"  {index}. {error.detail}")
        return "\n".join(lines)


class JobPollingConfig(BaseModel):
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    poll_timeout: float = Field(default=DEFAULT_POLL_TIMEOUT, gt=0)


class ClientConfig(BaseModel):
    token: Optional[str] = None
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    user_agent: str = "capi-jobs-client"
    polling: JobPollingConfig = Field(default_factory=JobPollingConfig)


class TransportResponse(BaseModel):
    status: int
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


T = TypeVar("T")


class Resolved(BaseModel, Generic[T]):
    """The operation finished inline and returned its final resource"""

    model_config = ConfigDict(frozen=True)

    resource: T


class Pending(BaseModel):
    """The operation was accepted and is tracked by a job"""

    model_config = ConfigDict(frozen=True)

    job_id: str
    location: str


Outcome = Union[Resolved[T], Pending]


class JobPollResult(BaseModel):
    """Best-known job state together with how the poll session ended.

    `job` is set whenever at least one fetch succeeded, including when `error`
    reports a failed job or an expired deadline.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    job: Optional[Job] = None
    error: Optional[Exception] = None
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> Job:
        if self.error is not None:
            raise self.error
        return self.job
