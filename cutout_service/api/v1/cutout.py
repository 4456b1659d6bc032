"""
Cutout Endpoint - Background Removal Orchestration

POST /api/v1/cutout - Optionally stage the image, submit the
background-removal job and wait for its result.

The request does not complete until the job reaches a terminal state
or the poll budget is exhausted.
"""

from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from cutout_service.api.dependencies import (
    extract_job_credentials,
    get_orchestrator,
    get_settings,
)
from cutout_service.api.v1.upload import UploadParams, UploadResponse
from cutout_service.core.config import Settings
from cutout_service.core.logging import get_logger
from cutout_service.modules.cutout.models import (
    CutoutOptions,
    PollPolicy,
    SubmissionInput,
    UploadRequest,
    find_missing,
)
from cutout_service.pipeline.orchestrator import CutoutOrchestrator

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Request/Response Schemas
# =============================================================================

class OptionsParams(BaseModel):
    """Output settings for the job."""
    model_config = ConfigDict(populate_by_name=True)

    mode: str = "cutout"
    media_type: str = Field("image/png", alias="mediaType")
    trim: bool = True
    color_decontamination: int = Field(1, alias="colorDecontamination")

    def to_options(self) -> CutoutOptions:
        return CutoutOptions(
            mode=self.mode,
            media_type=self.media_type,
            trim=self.trim,
            color_decontamination=self.color_decontamination
        )


class PollParams(BaseModel):
    """Per-request overrides of the poll policy."""
    model_config = ConfigDict(populate_by_name=True)

    delay_seconds: Optional[float] = Field(None, alias="delaySeconds", gt=0)
    max_attempts: Optional[int] = Field(None, alias="maxAttempts", ge=1)
    max_duration_seconds: Optional[float] = Field(None, alias="maxDurationSeconds", gt=0)

    def to_policy(self, default: PollPolicy) -> PollPolicy:
        return PollPolicy(
            delay_seconds=self.delay_seconds or default.delay_seconds,
            max_attempts=self.max_attempts or default.max_attempts,
            max_duration_seconds=self.max_duration_seconds or default.max_duration_seconds
        )


class CutoutParams(BaseModel):
    """Cutout request body."""
    model_config = ConfigDict(populate_by_name=True)

    image_url: Optional[str] = Field(None, alias="imageUrl")
    api_key: Optional[str] = Field(None, alias="x-api-key")
    stage: Optional[UploadParams] = None
    options: OptionsParams = Field(default_factory=OptionsParams)
    poll: Optional[PollParams] = None


class CutoutResponse(BaseModel):
    """Finalized cutout result."""
    success: bool
    originalImage: str
    processedImage: str
    jobId: str
    staged: Optional[UploadResponse] = None
    details: Dict[str, Any] = {}
    message: str = "Background successfully removed from image"


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", response_model=CutoutResponse)
async def cutout_image(
    request: Request,
    params: Optional[CutoutParams] = None,
    orchestrator: CutoutOrchestrator = Depends(get_orchestrator),
    cfg: Settings = Depends(get_settings)
):
    """
    Remove the background of an image.

    Flow:
    1. Stage the image into object storage when `stage` is given
    2. Submit the (staged or original) URL to the job service
    3. Poll until the job completes or fails
    """
    params = params or CutoutParams()

    missing = find_missing({"imageUrl": params.image_url}, ["imageUrl"])
    if params.stage is not None:
        missing += [f"stage.{name}" for name in find_missing({"bucket": params.stage.bucket}, ["bucket"])]
    credentials = extract_job_credentials(request.headers, params.api_key, missing_params=missing)

    upload_request = None
    if params.stage is not None:
        stage_params = params.stage.to_params(cfg.FETCH_TIMEOUT_SECONDS)
        stage_params["url"] = params.image_url
        if not stage_params["presign_seconds"]:
            # Fallback location for private objects and stores without a public URL
            stage_params["presign_seconds"] = cfg.DEFAULT_PRESIGN_SECONDS
        upload_request = UploadRequest.from_params(stage_params)

    submission = SubmissionInput(
        source_url=params.image_url,
        credentials=credentials,
        options=params.options.to_options()
    )
    policy = params.poll.to_policy(cfg.poll_policy()) if params.poll else None

    logger.info(
        "cutout_request_received",
        image_url=params.image_url,
        staged=upload_request is not None
    )
    result = await orchestrator.run(upload_request, submission, poll_policy=policy)

    return CutoutResponse(
        success=result.success,
        originalImage=result.source_url,
        processedImage=result.output_location,
        jobId=result.job_id,
        staged=UploadResponse.from_result(result.staged) if result.staged else None,
        details=result.details
    )
