"""
Job Status Endpoint

GET /api/v1/jobs/{job_id} - Query the current status of a remote job once,
without polling.
"""

from typing import Optional, Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from cutout_service.api.dependencies import extract_job_credentials, get_poller
from cutout_service.core.logging import get_logger, LogContext
from cutout_service.modules.cutout.models import JobHandle
from cutout_service.pipeline.jobs import JobPoller

logger = get_logger(__name__)
router = APIRouter()


class JobStatusResponse(BaseModel):
    """Single observation of a job."""
    jobId: str
    status: str
    terminal: bool
    resultLocation: Optional[str] = None
    error: Optional[Any] = None


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job_status(
    job_id: str,
    request: Request,
    poller: JobPoller = Depends(get_poller)
):
    """Get the current status of a submitted job."""
    credentials = extract_job_credentials(request.headers)

    with LogContext(job_id=job_id, stage="status"):
        status = await poller.query(JobHandle(job_id=job_id), credentials)
        logger.info("job_status_queried", status=status.state.value)

    return JobStatusResponse(
        jobId=job_id,
        status=status.state.value,
        terminal=status.is_terminal,
        resultLocation=status.result_location,
        error=status.error
    )
