"""
Global Exception Handling

Provides the error taxonomy of the cutout pipeline and structured
error responses for the FastAPI application.
"""

import traceback
from typing import Optional, Dict, Any, List
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cutout_service.core.logging import get_logger, job_id_var

logger = get_logger(__name__)

PROCESSING_FAILED_MESSAGE = "processing failed"


# =============================================================================
# Custom Exceptions
# =============================================================================

class CutoutBaseException(Exception):
    """Base exception for the cutout service."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        job_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.job_id = job_id or job_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.code < 500


class ClientInputError(CutoutBaseException):
    """Raised when required request fields are missing or invalid."""

    def __init__(self, message: str, missing: Optional[List[str]] = None, **kwargs):
        super().__init__(message, code=400, **kwargs)
        self.missing = list(missing or [])
        self.details["missing"] = self.missing

    @classmethod
    def for_missing(
        cls,
        params: Optional[List[str]] = None,
        headers: Optional[List[str]] = None
    ) -> "ClientInputError":
        params = params or []
        headers = headers or []
        parts = []
        if params:
            parts.append(f"missing parameter(s) '{', '.join(params)}'")
        if headers:
            parts.append(f"missing header(s) '{', '.join(headers)}'")
        return cls(" and ".join(parts), missing=params + headers)


class FetchError(CutoutBaseException):
    """Raised when the remote source cannot be retrieved."""

    def __init__(self, message: str, url: Optional[str] = None, http_status: Optional[int] = None, **kwargs):
        kwargs.setdefault("stage", "fetch")
        super().__init__(message, code=502, **kwargs)
        self.details["url"] = url
        self.details["http_status"] = http_status


class StorageError(CutoutBaseException):
    """Raised when the object store rejects a write."""

    def __init__(self, message: str, bucket: Optional[str] = None, key: Optional[str] = None, **kwargs):
        kwargs.setdefault("stage", "upload")
        super().__init__(message, code=502, **kwargs)
        self.details["bucket"] = bucket
        self.details["key"] = key


class SubmissionError(CutoutBaseException):
    """Raised when the job service refuses a submission."""

    def __init__(self, message: str, http_status: Optional[int] = None, body: Optional[str] = None, **kwargs):
        kwargs.setdefault("stage", "submit")
        super().__init__(message, code=502, **kwargs)
        self.http_status = http_status
        self.body = body
        self.details["http_status"] = http_status
        self.details["body"] = body


class PollQueryError(CutoutBaseException):
    """Raised when a status query fails or returns something we cannot read.

    This is distinct from the job reporting failure: it means the job's
    state is unknown.
    """

    def __init__(self, message: str, http_status: Optional[int] = None, body: Optional[str] = None, **kwargs):
        kwargs.setdefault("stage", "poll")
        super().__init__(message, code=502, **kwargs)
        self.details["http_status"] = http_status
        self.details["body"] = body


class PollTimeoutError(CutoutBaseException):
    """Raised when the poll budget runs out while the job is still running."""

    def __init__(self, message: str, attempts: int, elapsed_seconds: float, **kwargs):
        kwargs.setdefault("stage", "poll")
        super().__init__(message, code=504, **kwargs)
        self.attempts = attempts
        self.details["attempts"] = attempts
        self.details["elapsed_seconds"] = round(elapsed_seconds, 3)


class JobFailed(CutoutBaseException):
    """Raised when the remote job reaches the failed state."""

    def __init__(self, message: str, error: Any = None, **kwargs):
        kwargs.setdefault("stage", "poll")
        super().__init__(message, code=502, **kwargs)
        self.error = error
        self.details["error"] = error


# =============================================================================
# Response Builders
# =============================================================================

def build_error_body(exc: CutoutBaseException, expose_details: bool = False) -> Dict[str, Any]:
    """Build the caller-facing body for a pipeline error.

    Client errors name the missing fields. Server errors carry a generic
    message; upstream detail is only attached when explicitly allowed.
    """
    body: Dict[str, Any] = {
        "success": False,
        "code": exc.code,
        "stage": exc.stage,
        "job_id": exc.job_id or job_id_var.get(),
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
    if isinstance(exc, ClientInputError):
        body["error"] = exc.message
        body["missing"] = exc.missing
    else:
        body["error"] = PROCESSING_FAILED_MESSAGE
        if expose_details:
            body["details"] = {"message": exc.message, **exc.details}
    return body


# =============================================================================
# Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI, expose_details: bool = False):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(CutoutBaseException)
    async def cutout_exception_handler(request: Request, exc: CutoutBaseException):
        log = logger.warning if exc.is_client_error else logger.error
        log(
            "cutout_exception",
            error=exc.message,
            error_type=type(exc).__name__,
            code=exc.code,
            stage=exc.stage,
            details=exc.details,
            path=str(request.url.path)
        )

        return JSONResponse(
            status_code=exc.code,
            content=build_error_body(exc, expose_details=expose_details)
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        job_id = job_id_var.get()

        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "job_id": job_id,
                "code": 500,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )
