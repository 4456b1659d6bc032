"""
FastAPI Dependencies for the Cutout Service

Provides dependency injection for:
- Settings
- Object store and streaming uploader (per-request)
- Job submitter and poller (per-request)
- Orchestrator composed from the above
- Job service credentials taken from request headers

Tests replace any of these through app.dependency_overrides.
"""

from typing import List, Mapping, Optional

from fastapi import Depends

from cutout_service.core.config import settings, Settings
from cutout_service.core.exceptions import ClientInputError
from cutout_service.core.storage import IObjectStore, get_object_store as build_object_store
from cutout_service.modules.cutout.models import JobCredentials
from cutout_service.pipeline.jobs import JobSubmitter, JobPoller
from cutout_service.pipeline.orchestrator import CutoutOrchestrator
from cutout_service.pipeline.uploader import StreamingUploader


def get_settings() -> Settings:
    return settings


def get_object_store(cfg: Settings = Depends(get_settings)) -> IObjectStore:
    return build_object_store(
        cfg.storage_credentials(),
        part_size=cfg.UPLOAD_PART_SIZE_BYTES,
        queue_size=cfg.UPLOAD_QUEUE_SIZE
    )


def get_uploader(store: IObjectStore = Depends(get_object_store)) -> StreamingUploader:
    return StreamingUploader(store)


def get_submitter(cfg: Settings = Depends(get_settings)) -> JobSubmitter:
    return JobSubmitter(cfg.CUTOUT_API_URL, timeout=cfg.CUTOUT_API_TIMEOUT_SECONDS)


def get_poller(cfg: Settings = Depends(get_settings)) -> JobPoller:
    return JobPoller(cfg.CUTOUT_STATUS_URL_TEMPLATE, timeout=cfg.CUTOUT_API_TIMEOUT_SECONDS)


def get_orchestrator(
    uploader: StreamingUploader = Depends(get_uploader),
    submitter: JobSubmitter = Depends(get_submitter),
    poller: JobPoller = Depends(get_poller),
    cfg: Settings = Depends(get_settings)
) -> CutoutOrchestrator:
    return CutoutOrchestrator(submitter, poller, cfg.poll_policy(), uploader=uploader)


def get_bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    """Token from an 'Authorization: Bearer <token>' header."""
    authorization = headers.get("authorization") or ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def extract_job_credentials(
    headers: Mapping[str, str],
    body_api_key: Optional[str] = None,
    missing_params: Optional[List[str]] = None
) -> JobCredentials:
    """
    Build job service credentials from request headers.

    The API key may come from the x-api-key header or the request body.
    Missing body parameters found by the caller are reported together
    with missing headers in a single error.

    Raises:
        ClientInputError: naming each missing parameter and header
    """
    token = get_bearer_token(headers)
    api_key = headers.get("x-api-key") or body_api_key

    missing = []
    if not token:
        missing.append("Authorization")
    if not api_key:
        missing.append("x-api-key")
    if missing or missing_params:
        raise ClientInputError.for_missing(params=missing_params, headers=missing)

    return JobCredentials(api_key=api_key, access_token=token)
