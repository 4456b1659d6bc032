"""
API v1 Router Module - Cutout Service

All v1 endpoints are prefixed with /api/v1/

Endpoints:
- /api/v1/upload  - Stage a remote image into object storage
- /api/v1/cutout  - Stage (optional), submit and poll a background-removal job
- /api/v1/jobs    - Single status query for a submitted job
- /api/v1/metrics - Prometheus metrics
"""

from fastapi import APIRouter

from cutout_service.api.v1.upload import router as upload_router
from cutout_service.api.v1.cutout import router as cutout_router
from cutout_service.api.v1.jobs import router as jobs_router
from cutout_service.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(upload_router, prefix="/upload", tags=["upload"])
api_v1_router.include_router(cutout_router, prefix="/cutout", tags=["cutout"])
api_v1_router.include_router(jobs_router, prefix="/jobs", tags=["jobs"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
