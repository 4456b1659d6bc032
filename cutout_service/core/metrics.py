"""
Prometheus Metrics for Observability

Tracks stage latency, job service calls, polling and uploads.
Exposes /api/v1/metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "cutout_stage_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

# Remote job service calls (submit / status)
job_service_calls_total = Counter(
    "cutout_job_service_calls_total",
    "Total number of calls to the remote job service",
    labelnames=["operation", "status", "http_status"]
)

# Status queries needed per job
poll_attempts = Histogram(
    "cutout_poll_attempts",
    "Status queries issued before a job reached a terminal state",
    labelnames=["outcome"],
    buckets=[1, 2, 3, 5, 10, 20, 40, 60, 120]
)

# Jobs Counter
jobs_total = Counter(
    "cutout_jobs_total",
    "Total number of cutout jobs processed",
    labelnames=["status", "failure_stage"]
)

# Bytes streamed into object storage
uploaded_bytes_total = Counter(
    "cutout_uploaded_bytes_total",
    "Total bytes streamed from sources into object storage"
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# Application Info
app_info = Info(
    "cutout_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("upload"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_job_service_call(operation: str, http_status: int = 0):
    """Record a call to the remote job service (0 means no response)."""
    status = "success" if 200 <= http_status < 300 else "error"
    job_service_calls_total.labels(
        operation=operation,
        status=status,
        http_status=str(http_status)
    ).inc()


def record_poll_attempts(outcome: str, attempts: int):
    """Record how many status queries a poll loop issued."""
    poll_attempts.labels(outcome=outcome).observe(attempts)


def record_job_completion(status: str, failure_stage: str = "none"):
    """Record job completion."""
    jobs_total.labels(status=status, failure_stage=failure_stage).inc()


def record_uploaded_bytes(count: int):
    """Record bytes streamed into storage."""
    if count > 0:
        uploaded_bytes_total.inc(count)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
