import json

import httpx
import pytest

from cutout_service.core.exceptions import SubmissionError, PollQueryError, PollTimeoutError
from cutout_service.modules.cutout.models import (
    CutoutOptions,
    JobCredentials,
    JobHandle,
    JobState,
    PollPolicy,
)
from cutout_service.pipeline.jobs import (
    JobPoller,
    JobSubmitter,
    build_cutout_payload,
    extract_result_location,
    parse_job_status,
)

SUBMIT_URL = "https://image.example.com/v2/remove-background"
STATUS_TEMPLATE = "https://image.example.com/v2/status/{job_id}"
RESULT_URL = "https://cdn.example.com/out/lamp-cutout.png"

CREDENTIALS = JobCredentials(api_key="client-123", access_token="token-abc")

RUNNING = {"status": "running"}
COMPLETED = {"status": "succeeded", "output": {"href": RESULT_URL}}
FAILED = {"status": "failed", "error": {"code": "InputValidationError"}}


class FakeClock:
    """Monotonic clock that only moves when the fake sleep is awaited."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def scripted_transport(bodies, status_code=200):
    """Answer status queries with the given bodies in order."""
    requests = []
    remaining = list(bodies)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json=remaining.pop(0))

    return httpx.MockTransport(handler), requests


def make_poller(transport, clock):
    return JobPoller(STATUS_TEMPLATE, transport=transport, sleep=clock.sleep, clock=clock)


# =============================================================================
# Status parsing
# =============================================================================

@pytest.mark.parametrize("raw,expected", [
    ("running", JobState.RUNNING),
    ("pending", JobState.RUNNING),
    ("not_started", JobState.RUNNING),
    ("succeeded", JobState.COMPLETED),
    ("FAILED", JobState.FAILED),
])
def test_parse_job_status_maps_vocabulary(raw, expected):
    body = {"status": raw, "output": {"href": RESULT_URL}}

    assert parse_job_status(body).state is expected


def test_parse_job_status_rejects_unknown_status():
    with pytest.raises(PollQueryError):
        parse_job_status({"status": "unknown"})


def test_parse_job_status_rejects_missing_status():
    with pytest.raises(PollQueryError):
        parse_job_status({"output": {"href": RESULT_URL}})


def test_parse_job_status_requires_location_on_completion():
    with pytest.raises(PollQueryError):
        parse_job_status({"status": "succeeded"})


def test_parse_job_status_carries_failure_detail():
    status = parse_job_status(FAILED)

    assert status.is_terminal
    assert status.error == {"code": "InputValidationError"}


def test_extract_result_location_prefers_destination_url():
    body = {
        "result": {"outputs": [{"destination": {"url": "https://a.example.com/x.png"}}]},
        "output": {"href": "https://b.example.com/y.png"},
    }

    assert extract_result_location(body) == "https://a.example.com/x.png"


def test_extract_result_location_reads_output_links():
    body = {"outputs": [{"_links": {"self": {"href": RESULT_URL}}}]}

    assert extract_result_location(body) == RESULT_URL


def test_build_cutout_payload_shape():
    payload = build_cutout_payload(
        "https://bucket.s3.amazonaws.com/lamp.png",
        CutoutOptions(media_type="image/webp", trim=False)
    )

    assert payload["image"]["source"]["url"] == "https://bucket.s3.amazonaws.com/lamp.png"
    assert payload["output"]["mediaType"] == "image/webp"
    assert payload["trim"] is False
    assert payload["mode"] == "cutout"


# =============================================================================
# Submission
# =============================================================================

@pytest.mark.asyncio
async def test_submit_returns_handle_and_sends_credentials():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, json={"jobId": "job-42"})

    submitter = JobSubmitter(SUBMIT_URL, transport=httpx.MockTransport(handler))
    handle = await submitter.submit("https://cdn.example.com/lamp.png", CREDENTIALS)

    assert handle.job_id == "job-42"
    assert len(seen) == 1
    request = seen[0]
    assert request.method == "POST"
    assert request.headers["x-api-key"] == "client-123"
    assert request.headers["authorization"] == "Bearer token-abc"
    assert json.loads(request.content)["image"]["source"]["url"] == "https://cdn.example.com/lamp.png"


@pytest.mark.asyncio
async def test_submit_keeps_status_link_from_response():
    def handler(request):
        return httpx.Response(200, json={
            "jobId": "job-42",
            "_links": {"self": {"href": "https://image.example.com/status/job-42"}},
        })

    submitter = JobSubmitter(SUBMIT_URL, transport=httpx.MockTransport(handler))
    handle = await submitter.submit("https://cdn.example.com/lamp.png", CREDENTIALS)

    assert handle.status_url == "https://image.example.com/status/job-42"


@pytest.mark.asyncio
async def test_submit_rejection_carries_status_and_body():
    def handler(request):
        return httpx.Response(403, text='{"error_code":"403003","message":"Api Key is invalid"}')

    submitter = JobSubmitter(SUBMIT_URL, transport=httpx.MockTransport(handler))

    with pytest.raises(SubmissionError) as exc_info:
        await submitter.submit("https://cdn.example.com/lamp.png", CREDENTIALS)

    assert exc_info.value.http_status == 403
    assert "Api Key is invalid" in exc_info.value.body
    assert exc_info.value.stage == "submit"


@pytest.mark.asyncio
async def test_submit_without_job_id_raises():
    def handler(request):
        return httpx.Response(200, json={"status": "accepted"})

    submitter = JobSubmitter(SUBMIT_URL, transport=httpx.MockTransport(handler))

    with pytest.raises(SubmissionError):
        await submitter.submit("https://cdn.example.com/lamp.png", CREDENTIALS)


@pytest.mark.asyncio
async def test_submit_transport_failure_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    submitter = JobSubmitter(SUBMIT_URL, transport=httpx.MockTransport(handler))

    with pytest.raises(SubmissionError) as exc_info:
        await submitter.submit("https://cdn.example.com/lamp.png", CREDENTIALS)

    assert exc_info.value.http_status is None


# =============================================================================
# Polling
# =============================================================================

@pytest.mark.asyncio
async def test_poll_completes_after_two_delays_and_three_queries():
    clock = FakeClock()
    transport, requests = scripted_transport([RUNNING, RUNNING, COMPLETED])
    poller = make_poller(transport, clock)

    status = await poller.poll(
        JobHandle(job_id="job-42"),
        PollPolicy(delay_seconds=5, max_attempts=3),
        CREDENTIALS
    )

    assert status.state is JobState.COMPLETED
    assert status.result_location == RESULT_URL
    assert len(requests) == 3
    assert clock.sleeps == [5, 5]


@pytest.mark.asyncio
async def test_poll_queries_before_first_delay():
    clock = FakeClock()
    transport, requests = scripted_transport([COMPLETED])
    poller = make_poller(transport, clock)

    status = await poller.poll(JobHandle(job_id="job-42"), PollPolicy(max_attempts=3), CREDENTIALS)

    assert status.state is JobState.COMPLETED
    assert len(requests) == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_poll_returns_failed_status_without_raising():
    clock = FakeClock()
    transport, requests = scripted_transport([RUNNING, FAILED])
    poller = make_poller(transport, clock)

    status = await poller.poll(JobHandle(job_id="job-42"), PollPolicy(max_attempts=5), CREDENTIALS)

    assert status.state is JobState.FAILED
    assert len(requests) == 2
    assert clock.sleeps == [5.0]


@pytest.mark.asyncio
async def test_poll_times_out_when_attempts_are_exhausted():
    clock = FakeClock()
    transport, requests = scripted_transport([RUNNING] * 3)
    poller = make_poller(transport, clock)

    with pytest.raises(PollTimeoutError) as exc_info:
        await poller.poll(
            JobHandle(job_id="job-42"),
            PollPolicy(delay_seconds=5, max_attempts=3),
            CREDENTIALS
        )

    assert exc_info.value.attempts == 3
    assert exc_info.value.code == 504
    assert exc_info.value.job_id == "job-42"
    assert len(requests) == 3
    assert clock.sleeps == [5, 5]


@pytest.mark.asyncio
async def test_poll_times_out_when_duration_is_exhausted():
    clock = FakeClock()
    transport, requests = scripted_transport([RUNNING] * 10)
    poller = make_poller(transport, clock)

    with pytest.raises(PollTimeoutError):
        await poller.poll(
            JobHandle(job_id="job-42"),
            PollPolicy(delay_seconds=5, max_duration_seconds=12),
            CREDENTIALS
        )

    # Queries at t=0, 5, 10; another delay would overrun 12 seconds
    assert len(requests) == 3
    assert clock.sleeps == [5, 5]


@pytest.mark.asyncio
async def test_poll_stops_on_unknown_status():
    clock = FakeClock()
    transport, requests = scripted_transport([{"status": "unknown"}, COMPLETED])
    poller = make_poller(transport, clock)

    with pytest.raises(PollQueryError) as exc_info:
        await poller.poll(JobHandle(job_id="job-42"), PollPolicy(max_attempts=5), CREDENTIALS)

    assert exc_info.value.job_id == "job-42"
    assert len(requests) == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_poll_query_http_error_is_not_a_job_failure():
    clock = FakeClock()
    transport, requests = scripted_transport([{"message": "Internal error"}], status_code=500)
    poller = make_poller(transport, clock)

    with pytest.raises(PollQueryError) as exc_info:
        await poller.poll(JobHandle(job_id="job-42"), PollPolicy(max_attempts=5), CREDENTIALS)

    assert exc_info.value.details["http_status"] == 500
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_query_uses_handle_status_url_when_present():
    clock = FakeClock()
    transport, requests = scripted_transport([RUNNING, RUNNING])
    poller = make_poller(transport, clock)

    await poller.query(JobHandle(job_id="job-42"), CREDENTIALS)
    await poller.query(
        JobHandle(job_id="job-42", status_url="https://image.example.com/jobs/job-42"),
        CREDENTIALS
    )

    assert str(requests[0].url) == "https://image.example.com/v2/status/job-42"
    assert str(requests[1].url) == "https://image.example.com/jobs/job-42"
    assert requests[0].headers["x-api-key"] == "client-123"
