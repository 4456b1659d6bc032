"""
Upload Endpoint - Stage a Remote Image

POST /api/v1/upload - Stream a remote URL into object storage
"""

from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from cutout_service.api.dependencies import get_settings, get_uploader
from cutout_service.core.config import Settings
from cutout_service.core.logging import get_logger
from cutout_service.modules.cutout.models import UploadRequest, UploadResult
from cutout_service.pipeline.uploader import StreamingUploader

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Request/Response Schemas
# =============================================================================

class UploadParams(BaseModel):
    """Staging parameters. Required fields are checked by the endpoint so
    that every missing one is reported together."""
    model_config = ConfigDict(populate_by_name=True)

    url: Optional[str] = None
    bucket: Optional[str] = None
    key: Optional[str] = None
    region: Optional[str] = None
    public: bool = False
    content_type: Optional[str] = Field(None, alias="contentType")
    cache_seconds: int = Field(0, alias="cacheSeconds", ge=0)
    sse: bool = False
    timeout_ms: Optional[int] = Field(None, alias="timeoutMs", gt=0)
    presign_seconds: int = Field(0, alias="presignSeconds", ge=0)

    def to_params(self, default_timeout_seconds: float) -> Dict[str, Any]:
        """Plain parameters for UploadRequest.from_params."""
        timeout_seconds = self.timeout_ms / 1000 if self.timeout_ms else default_timeout_seconds
        return {
            "url": self.url,
            "bucket": self.bucket,
            "key": self.key,
            "region": self.region,
            "public": self.public,
            "content_type": self.content_type,
            "cache_seconds": self.cache_seconds,
            "sse": self.sse,
            "timeout_seconds": timeout_seconds,
            "presign_seconds": self.presign_seconds,
        }


class UploadResponse(BaseModel):
    """Staged object description."""
    ok: bool = True
    bucket: str
    key: str
    contentType: str
    s3Uri: str
    publicUrl: Optional[str] = None
    presignedUrl: Optional[str] = None
    bytesUploaded: int = 0

    @classmethod
    def from_result(cls, result: UploadResult) -> "UploadResponse":
        return cls(
            ok=result.success,
            bucket=result.bucket,
            key=result.key,
            contentType=result.content_type,
            s3Uri=result.storage_uri,
            publicUrl=result.public_url,
            presignedUrl=result.presigned_url,
            bytesUploaded=result.bytes_uploaded
        )


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", response_model=UploadResponse)
async def upload_url(
    params: Optional[UploadParams] = None,
    uploader: StreamingUploader = Depends(get_uploader),
    cfg: Settings = Depends(get_settings)
):
    """
    Stage a remote image into object storage.

    The source is streamed into a multipart upload; the object key and
    content type are inferred from the URL when not given.
    """
    params = params or UploadParams()
    request = UploadRequest.from_params(params.to_params(cfg.FETCH_TIMEOUT_SECONDS))

    logger.info("upload_request_received", url=request.url, bucket=request.bucket)
    result = await uploader.upload(request)

    return UploadResponse.from_result(result)
