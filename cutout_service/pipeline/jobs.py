"""
Remote Job Submission & Polling

JobSubmitter issues exactly one submission request and returns the job
handle. JobPoller drives an explicit state machine over status queries:

    running --(query: running)--> sleep(delay) --> running
    running --(query: completed | failed)--> terminal (returned)

Completed and failed are absorbing. Any status outside the known
vocabulary is a protocol violation and stops the loop immediately.
"""

import time
import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from cutout_service.core.exceptions import (
    SubmissionError,
    PollQueryError,
    PollTimeoutError,
)
from cutout_service.core.logging import get_logger, LogContext
from cutout_service.core.metrics import record_job_service_call, record_poll_attempts
from cutout_service.modules.cutout.models import (
    CutoutOptions,
    JobCredentials,
    JobHandle,
    JobState,
    JobStatus,
    PollPolicy,
)

logger = get_logger(__name__)

# Upstream vocabulary mapped onto the three known states
STATUS_VALUES = {
    "running": JobState.RUNNING,
    "pending": JobState.RUNNING,
    "not_started": JobState.RUNNING,
    "succeeded": JobState.COMPLETED,
    "completed": JobState.COMPLETED,
    "failed": JobState.FAILED,
}

# Upstream bodies are kept short in errors and logs
BODY_SNIPPET_LENGTH = 2000


def build_cutout_payload(resource_location: str, options: Optional[CutoutOptions] = None) -> Dict[str, Any]:
    """Request body for the remove-background job."""
    options = options or CutoutOptions()
    return {
        "image": {
            "source": {
                "url": resource_location
            }
        },
        "mode": options.mode,
        "output": {
            "mediaType": options.media_type
        },
        "trim": options.trim,
        "colorDecontamination": options.color_decontamination
    }


def _dig(data: Any, *path) -> Any:
    for step in path:
        if isinstance(step, int):
            if not isinstance(data, list) or len(data) <= step:
                return None
        elif not isinstance(data, dict):
            return None
        data = data[step] if isinstance(step, int) else data.get(step)
    return data


def extract_result_location(body: Dict[str, Any]) -> Optional[str]:
    """Find the output URL in a completed status payload."""
    candidates = (
        ("result", "outputs", 0, "destination", "url"),
        ("outputs", 0, "destination", "url"),
        ("outputs", 0, "_links", "self", "href"),
        ("output", "href"),
        ("href",),
    )
    for path in candidates:
        location = _dig(body, *path)
        if isinstance(location, str) and location:
            return location
    return None


def extract_error(body: Dict[str, Any]) -> Any:
    """Find the failure detail in a failed status payload."""
    for field in ("error", "errors", "errorDetails", "message"):
        if body.get(field):
            return body[field]
    return "job failed without error detail"


def parse_job_status(body: Any) -> JobStatus:
    """
    Interpret one status payload.

    Raises:
        PollQueryError: missing or unknown status, or a completed job
            without a result location
    """
    if not isinstance(body, dict):
        raise PollQueryError("Status response is not a JSON object")

    raw_status = body.get("status")
    state = STATUS_VALUES.get(str(raw_status).lower()) if raw_status is not None else None
    if state is None:
        raise PollQueryError(f"Unrecognized job status: {raw_status!r}", body=str(body)[:BODY_SNIPPET_LENGTH])

    if state is JobState.COMPLETED:
        location = extract_result_location(body)
        if not location:
            raise PollQueryError("Completed job reported no result location", body=str(body)[:BODY_SNIPPET_LENGTH])
        return JobStatus(state=state, result_location=location, raw=body)

    if state is JobState.FAILED:
        return JobStatus(state=state, error=extract_error(body), raw=body)

    return JobStatus(state=state, raw=body)


class JobSubmitter:
    """Single-attempt submission of a job to the remote service."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self._transport = transport

    async def submit(
        self,
        resource_location: str,
        credentials: JobCredentials,
        options: Optional[CutoutOptions] = None
    ) -> JobHandle:
        """
        Submit resource_location for processing.

        Raises:
            SubmissionError: transport failure, non-2xx status (status code
                and body are attached), or a response without a job id
        """
        payload = build_cutout_payload(resource_location, options)
        headers = {"Content-Type": "application/json", **credentials.headers()}

        logger.info("job_submitting", endpoint=self.endpoint, resource=resource_location)
        logger.debug("job_submit_payload", payload=payload)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(self.endpoint, json=payload, headers=headers)
            except httpx.HTTPError as e:
                record_job_service_call("submit", 0)
                logger.error("job_submit_failed", error=str(e), error_type=type(e).__name__)
                raise SubmissionError(f"Job submission request failed: {e}") from e

        record_job_service_call("submit", response.status_code)

        if not response.is_success:
            body = response.text[:BODY_SNIPPET_LENGTH]
            logger.error("job_submit_rejected", http_status=response.status_code, body=body)
            raise SubmissionError(
                f"Job submission failed with status code {response.status_code}: {body}",
                http_status=response.status_code,
                body=body
            )

        try:
            content = response.json()
        except ValueError as e:
            raise SubmissionError(
                "Job submission returned a non-JSON body",
                http_status=response.status_code,
                body=response.text[:BODY_SNIPPET_LENGTH]
            ) from e

        job_id = None
        if isinstance(content, dict):
            job_id = content.get("jobId") or content.get("job_id") or content.get("id")
        if not job_id:
            raise SubmissionError(
                "Job submission response carried no job id",
                http_status=response.status_code,
                body=response.text[:BODY_SNIPPET_LENGTH]
            )

        handle = JobHandle(
            job_id=str(job_id),
            created_at=datetime.utcnow(),
            status_url=content.get("statusUrl") or _dig(content, "_links", "self", "href")
        )
        logger.info("job_submitted", job_id=handle.job_id, status_url=handle.status_url)
        return handle


class JobPoller:
    """Poll a job's status until it reaches a terminal state or the budget runs out."""

    def __init__(
        self,
        status_url_template: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.status_url_template = status_url_template
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self._clock = clock

    def status_url(self, handle: JobHandle) -> str:
        return handle.status_url or self.status_url_template.format(job_id=handle.job_id)

    async def query(
        self,
        handle: JobHandle,
        credentials: JobCredentials,
        client: Optional[httpx.AsyncClient] = None
    ) -> JobStatus:
        """
        Issue one status query.

        Raises:
            PollQueryError: the state of the job could not be learned
        """
        if client is None:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as own_client:
                return await self.query(handle, credentials, client=own_client)

        url = self.status_url(handle)
        try:
            response = await client.get(url, headers=credentials.headers())
        except httpx.HTTPError as e:
            record_job_service_call("status", 0)
            raise PollQueryError(f"Status query failed: {e}", job_id=handle.job_id) from e

        record_job_service_call("status", response.status_code)

        if not response.is_success:
            body = response.text[:BODY_SNIPPET_LENGTH]
            raise PollQueryError(
                f"Status query failed with status code {response.status_code}",
                http_status=response.status_code,
                body=body,
                job_id=handle.job_id
            )

        try:
            content = response.json()
        except ValueError as e:
            raise PollQueryError(
                "Status query returned a non-JSON body",
                http_status=response.status_code,
                body=response.text[:BODY_SNIPPET_LENGTH],
                job_id=handle.job_id
            ) from e

        try:
            return parse_job_status(content)
        except PollQueryError as e:
            e.job_id = handle.job_id
            raise

    async def poll(
        self,
        handle: JobHandle,
        policy: PollPolicy,
        credentials: JobCredentials
    ) -> JobStatus:
        """
        Query until completed or failed; returns only terminal statuses.

        Raises:
            PollTimeoutError: attempt or time budget exhausted while running
            PollQueryError: a query failed or returned an unknown status
        """
        started = self._clock()
        attempts = 0

        with LogContext(job_id=handle.job_id, stage="poll"):
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                while True:
                    attempts += 1
                    try:
                        status = await self.query(handle, credentials, client=client)
                    except PollQueryError:
                        record_poll_attempts("query_error", attempts)
                        logger.error("job_poll_query_failed", attempts=attempts)
                        raise

                    logger.info("job_poll_tick", attempt=attempts, status=status.state.value)

                    if status.is_terminal:
                        record_poll_attempts(status.state.value, attempts)
                        logger.info(
                            "job_poll_finished",
                            status=status.state.value,
                            attempts=attempts,
                            elapsed_seconds=round(self._clock() - started, 3)
                        )
                        return status

                    elapsed = self._clock() - started
                    if policy.max_attempts is not None and attempts >= policy.max_attempts:
                        record_poll_attempts("timeout", attempts)
                        raise PollTimeoutError(
                            f"Job still running after {attempts} status queries",
                            attempts=attempts,
                            elapsed_seconds=elapsed,
                            job_id=handle.job_id
                        )
                    if (
                        policy.max_duration_seconds is not None
                        and elapsed + policy.delay_seconds > policy.max_duration_seconds
                    ):
                        record_poll_attempts("timeout", attempts)
                        raise PollTimeoutError(
                            f"Job still running after {elapsed:.1f}s",
                            attempts=attempts,
                            elapsed_seconds=elapsed,
                            job_id=handle.job_id
                        )

                    await self._sleep(policy.delay_seconds)
