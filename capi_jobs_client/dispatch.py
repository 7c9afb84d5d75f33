"""Classify mutating responses as finished inline or tracked by a job.

The control plane answers 202 with a ``Location`` header pointing at
``/v3/jobs/{guid}`` when it accepts work for background processing, and any
other 2xx with the final resource in the body when it completed inline.
"""

from typing import Optional, TypeVar
from urllib.parse import urlsplit

from loguru import logger
from pydantic import BaseModel, ValidationError

from capi_jobs_client.errors import DecodeError, MalformedAsyncResponseError, TransportError
from capi_jobs_client.models import Outcome, Pending, Resolved, Resource, TransportResponse

ACCEPTED = 202

M = TypeVar("M", bound=BaseModel)


def job_id_from_location(location: Optional[str]) -> str:
    if not location:
        raise MalformedAsyncResponseError("no job location returned", status=ACCEPTED)

    segments = [segment for segment in urlsplit(location).path.split("/") if segment]
    # The id is whatever follows the last "jobs" segment.
    for index in range(len(segments) - 2, -1, -1):
        if segments[index] == "jobs":
            return segments[index + 1]

    raise MalformedAsyncResponseError(
        f"location {location!r} does not point at a job", status=ACCEPTED, location=location
    )


def classify_response(
    response: TransportResponse, model: type[M] = Resource
) -> Outcome:
    if not response.ok:
        raise TransportError.from_response(response)

    if response.status == ACCEPTED:
        location = response.header("Location")
        job_id = job_id_from_location(location)
        logger.info(f"Request accepted asynchronously as job {job_id}")
        return Pending(job_id=job_id, location=location)

    if not response.body:
        raise MalformedAsyncResponseError(
            f"status {response.status} carried neither a resource nor a job location",
            status=response.status,
        )

    try:
        resource = model.model_validate_json(response.body)
    except ValidationError as e:
        raise DecodeError(f"parsing {model.__name__} from status {response.status}: {e}") from e

    logger.debug(f"Request completed synchronously with status {response.status}")
    return Resolved[model](resource=resource)
