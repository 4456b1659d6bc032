"""
Cutout Orchestrator

Composes the stages of one request, strictly in order:

1. upload (optional) - stage the source into object storage
2. submit            - hand the resource location to the job service
3. poll              - wait for the job to reach a terminal state

Every stage boundary is a hard stop: an error ends the run and reaches
the caller with the originating stage attached. Nothing is retried.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from cutout_service.core.exceptions import CutoutBaseException, ClientInputError, JobFailed
from cutout_service.core.logging import get_logger, LogContext
from cutout_service.core.metrics import track_stage_latency, record_job_completion
from cutout_service.modules.cutout.models import (
    FinalResult,
    JobState,
    PollPolicy,
    SubmissionInput,
    UploadRequest,
    UploadResult,
)
from cutout_service.pipeline.jobs import JobSubmitter, JobPoller
from cutout_service.pipeline.uploader import StreamingUploader

logger = get_logger(__name__)


@contextmanager
def pipeline_stage(stage: str, job_id: Optional[str] = None):
    """Logging context and latency tracking for one stage."""
    with LogContext(job_id=job_id, stage=stage), track_stage_latency(stage):
        try:
            yield
        except CutoutBaseException as e:
            if e.stage is None:
                e.stage = stage
            raise


class CutoutOrchestrator:
    """Run upload, submit and poll for a single request."""

    def __init__(
        self,
        submitter: JobSubmitter,
        poller: JobPoller,
        poll_policy: PollPolicy,
        uploader: Optional[StreamingUploader] = None
    ):
        self.submitter = submitter
        self.poller = poller
        self.poll_policy = poll_policy
        self.uploader = uploader

    async def run(
        self,
        upload_request: Optional[UploadRequest],
        submission: SubmissionInput,
        poll_policy: Optional[PollPolicy] = None
    ) -> FinalResult:
        """
        Execute the pipeline and assemble the final result.

        poll_policy overrides the orchestrator default for this run.

        Raises:
            ClientInputError: nothing to submit
            FetchError, StorageError: staging failed
            SubmissionError: the job service refused the job
            PollQueryError, PollTimeoutError: the job state could not be resolved
            JobFailed: the job reported failure
        """
        if upload_request is None and not submission.source_url:
            raise ClientInputError.for_missing(params=["imageUrl"])

        source_url = upload_request.url if upload_request is not None else submission.source_url
        start_time = datetime.utcnow()
        failure_stage = "upload"

        try:
            staged: Optional[UploadResult] = None
            resource_location = submission.source_url
            if upload_request is not None:
                if self.uploader is None:
                    raise RuntimeError("Staging requested but no uploader is configured")
                with pipeline_stage("upload"):
                    staged = await self.uploader.upload(upload_request)
                resource_location = staged.fetchable_location

            failure_stage = "submit"
            with pipeline_stage("submit"):
                handle = await self.submitter.submit(
                    resource_location,
                    submission.credentials,
                    submission.options
                )

            failure_stage = "poll"
            with pipeline_stage("poll", job_id=handle.job_id):
                status = await self.poller.poll(
                    handle,
                    poll_policy or self.poll_policy,
                    submission.credentials
                )

                if status.state is JobState.FAILED:
                    raise JobFailed(
                        f"Job {handle.job_id} failed: {status.error}",
                        error=status.error,
                        job_id=handle.job_id
                    )
        except Exception:
            record_job_completion("failed", failure_stage=failure_stage)
            raise

        duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
        record_job_completion("completed")

        with LogContext(job_id=handle.job_id):
            logger.info(
                "cutout_completed",
                source=source_url,
                output=status.result_location,
                staged=staged is not None,
                duration_ms=duration_ms
            )

        return FinalResult(
            source_url=source_url,
            output_location=status.result_location,
            job_id=handle.job_id,
            staged=staged,
            details=status.raw
        )
