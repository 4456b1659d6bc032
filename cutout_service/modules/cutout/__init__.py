"""
Cutout Module

Request-scoped models for staging, job submission and polling.
"""

from cutout_service.modules.cutout.models import (
    CutoutOptions,
    FinalResult,
    JobCredentials,
    JobHandle,
    JobState,
    JobStatus,
    PollPolicy,
    StorageCredentials,
    SubmissionInput,
    UploadRequest,
    UploadResult,
)

__all__ = [
    "CutoutOptions",
    "FinalResult",
    "JobCredentials",
    "JobHandle",
    "JobState",
    "JobStatus",
    "PollPolicy",
    "StorageCredentials",
    "SubmissionInput",
    "UploadRequest",
    "UploadResult",
]
