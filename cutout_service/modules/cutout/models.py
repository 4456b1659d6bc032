"""
Cutout Request Models

Request-scoped entities of the cutout pipeline:
- Upload request/result for staging a remote image into object storage
- Job handle and status for the remote processing job
- Poll policy bounding the status loop
- Explicit credential structs passed into each component

Nothing here is persisted; every instance lives for one request.
"""

from enum import Enum
from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field

from cutout_service.core.exceptions import ClientInputError


def find_missing(params: Dict[str, Any], required: List[str]) -> List[str]:
    """Return the required names whose values are absent or empty."""
    missing = []
    for name in required:
        value = params.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


# =============================================================================
# Credentials
# =============================================================================

class StorageCredentials(BaseModel):
    """Object store credentials and addressing."""
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    region: Optional[str] = "us-east-1"
    endpoint_url: Optional[str] = None
    public_base_url: Optional[str] = None


class JobCredentials(BaseModel):
    """Credentials for the remote job service."""
    api_key: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)

    def headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "Authorization": f"Bearer {self.access_token}",
        }


# =============================================================================
# Staging
# =============================================================================

class UploadRequest(BaseModel):
    """Stage a remote resource into a bucket."""
    url: str = Field(..., min_length=1)
    bucket: str = Field(..., min_length=1)
    key: Optional[str] = None
    content_type: Optional[str] = None
    region: Optional[str] = None
    public: bool = False
    cache_seconds: int = Field(default=0, ge=0)
    sse: bool = False
    timeout_seconds: float = Field(default=30.0, gt=0)
    presign_seconds: int = Field(default=0, ge=0)

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "UploadRequest":
        """Build a request, naming every missing required field at once."""
        missing = find_missing(params, ["url", "bucket"])
        if missing:
            raise ClientInputError.for_missing(params=missing)
        return cls(**{k: v for k, v in params.items() if v is not None})


class UploadResult(BaseModel):
    """Outcome of a staging upload. Immutable once produced."""
    model_config = ConfigDict(frozen=True)

    success: bool = True
    bucket: str
    key: str
    content_type: str
    storage_uri: str
    public_url: Optional[str] = None
    presigned_url: Optional[str] = None
    bytes_uploaded: int = 0

    @property
    def fetchable_location(self) -> str:
        """Best location a remote service can fetch the object from."""
        return self.public_url or self.presigned_url or self.storage_uri


# =============================================================================
# Remote Job
# =============================================================================

class JobState(str, Enum):
    """Remote job states. Completed and failed are absorbing."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED})


class JobHandle(BaseModel):
    """Opaque identifier of a submitted job."""
    job_id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    status_url: Optional[str] = None


class JobStatus(BaseModel):
    """One observation of a remote job's state."""
    state: JobState
    result_location: Optional[str] = None
    error: Optional[Any] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class PollPolicy(BaseModel):
    """Bounds of a poll loop. Exceeding a configured maximum is a timeout."""
    delay_seconds: float = Field(default=5.0, gt=0)
    max_attempts: Optional[int] = Field(default=None, ge=1)
    max_duration_seconds: Optional[float] = Field(default=None, gt=0)


class CutoutOptions(BaseModel):
    """Output settings sent with the job submission."""
    mode: str = "cutout"
    media_type: str = "image/png"
    trim: bool = True
    color_decontamination: int = 1


class SubmissionInput(BaseModel):
    """What to submit and with which credentials."""
    source_url: Optional[str] = None
    credentials: JobCredentials
    options: CutoutOptions = Field(default_factory=CutoutOptions)


class FinalResult(BaseModel):
    """Assembled result of an orchestrated run."""
    success: bool = True
    source_url: str
    output_location: str
    job_id: str
    staged: Optional[UploadResult] = None
    details: Dict[str, Any] = Field(default_factory=dict)
