"""
Health Check Endpoints
======================

API health check endpoints for monitoring and Kubernetes probes.

The pipeline depends on two external services:
- Ollama for every text-generation stage
- Google Cloud (Storage + Speech-to-Text) for transcription

Both checks are lightweight: an HTTP call to Ollama's model list and a
credentials lookup for Google Cloud. Neither runs inference or a speech job.
"""

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

import google.auth
import psutil
import requests
from fastapi import APIRouter, Depends, HTTPException, status
from google.auth.exceptions import DefaultCredentialsError
from pydantic import BaseModel, Field

from api.dependencies import get_pipeline
from config import Settings, get_settings
from core.pipeline import ConsultationPipeline


logger = logging.getLogger(__name__)

router = APIRouter()

CRITICAL_SERVICES = ("api", "ollama", "google_cloud")


class ServiceStatus(str, Enum):
    """Service and overall health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ServiceCheckResult(BaseModel):
    """Result of an individual service health check."""
    status: ServiceStatus = Field(description="Service health status")
    message: Optional[str] = Field(None, description="Status message or error details")
    latency_ms: Optional[float] = Field(None, description="Check latency in milliseconds")


class SystemMetrics(BaseModel):
    """System resource metrics."""
    cpu_percent: float = Field(description="CPU usage percentage")
    memory_percent: float = Field(description="Memory usage percentage")
    memory_available_mb: float = Field(description="Available memory in MB")
    disk_usage_percent: float = Field(description="Disk usage percentage")


class HealthCheckResponse(BaseModel):
    """Comprehensive health check response."""
    status: ServiceStatus = Field(description="Overall health status")
    timestamp: str = Field(description="ISO 8601 timestamp of the health check")
    services: Dict[str, ServiceCheckResult] = Field(description="Individual service statuses")
    system_metrics: SystemMetrics = Field(description="System resource metrics")


class ProbeResponse(BaseModel):
    """Kubernetes liveness / readiness probe response."""
    status: str = Field(description="Probe status")
    message: Optional[str] = Field(None, description="Status message")
    timestamp: str = Field(description="ISO 8601 timestamp")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def check_ollama(settings: Settings) -> ServiceCheckResult:
    """
    Check Ollama connectivity and model availability via ``/api/tags``.

    Args:
        settings: Application settings

    Returns:
        ServiceCheckResult with Ollama health status
    """
    if settings.use_mock_backends:
        return ServiceCheckResult(status=ServiceStatus.HEALTHY, message="Mock text generator")

    start_time = time.time()
    try:
        response = requests.get(f"{settings.ollama_base_url}/api/tags", timeout=2)
    except requests.exceptions.Timeout:
        return ServiceCheckResult(
            status=ServiceStatus.UNHEALTHY,
            message=f"Ollama connection timeout (2s) at {settings.ollama_base_url}"
        )
    except requests.exceptions.ConnectionError:
        logger.warning(f"Cannot connect to Ollama at {settings.ollama_base_url}")
        return ServiceCheckResult(
            status=ServiceStatus.UNHEALTHY,
            message=f"Cannot connect to Ollama at {settings.ollama_base_url}"
        )

    if response.status_code != 200:
        return ServiceCheckResult(
            status=ServiceStatus.UNHEALTHY,
            message=f"Ollama API returned status {response.status_code}"
        )

    model_names = [m.get("name", "").split(":")[0] for m in response.json().get("models", [])]
    configured = settings.ollama_model.split(":")[0]
    if not any(configured in name for name in model_names):
        return ServiceCheckResult(
            status=ServiceStatus.UNHEALTHY,
            message=(
                f"Model '{settings.ollama_model}' not found. Available: {', '.join(model_names)}. "
                f"Run: ollama pull {settings.ollama_model}"
            )
        )

    return ServiceCheckResult(
        status=ServiceStatus.HEALTHY,
        message=f"Model '{settings.ollama_model}' available",
        latency_ms=round((time.time() - start_time) * 1000, 2)
    )


def check_google_cloud(settings: Settings) -> ServiceCheckResult:
    """
    Check that Google Cloud application-default credentials are available.

    Does not call Storage or Speech-to-Text; a missing bucket or recognizer
    is provisioned on first use anyway.
    """
    if settings.use_mock_backends:
        return ServiceCheckResult(status=ServiceStatus.HEALTHY, message="Mock storage and speech backends")

    try:
        _, project = google.auth.default()
    except DefaultCredentialsError as e:
        logger.warning(f"Google Cloud credentials not found: {e}")
        return ServiceCheckResult(
            status=ServiceStatus.UNHEALTHY,
            message="Application default credentials not found"
        )

    if project and project != settings.gcp_project_id:
        return ServiceCheckResult(
            status=ServiceStatus.DEGRADED,
            message=f"Credentials project '{project}' differs from configured '{settings.gcp_project_id}'"
        )
    return ServiceCheckResult(
        status=ServiceStatus.HEALTHY,
        message=f"Project '{settings.gcp_project_id}', speech location '{settings.speech_location}'"
    )


def get_system_metrics() -> SystemMetrics:
    """
    Gather system resource metrics.

    Returns:
        SystemMetrics with CPU, memory, and disk usage
    """
    try:
        memory = psutil.virtual_memory()
        return SystemMetrics(
            cpu_percent=round(psutil.cpu_percent(interval=0.1), 2),
            memory_percent=round(memory.percent, 2),
            memory_available_mb=round(memory.available / (1024 * 1024), 2),
            disk_usage_percent=round(psutil.disk_usage('/').percent, 2)
        )
    except Exception as e:
        logger.error(f"Failed to gather system metrics: {e}")
        return SystemMetrics(
            cpu_percent=0.0,
            memory_percent=0.0,
            memory_available_mb=0.0,
            disk_usage_percent=0.0
        )


def determine_overall_status(services: Dict[str, ServiceCheckResult]) -> ServiceStatus:
    """
    Determine overall health from individual service statuses.

    - UNHEALTHY: a critical service is unhealthy
    - DEGRADED: any service is unhealthy or degraded
    - HEALTHY: everything is healthy
    """
    for name in CRITICAL_SERVICES:
        if name in services and services[name].status == ServiceStatus.UNHEALTHY:
            return ServiceStatus.UNHEALTHY

    if any(s.status != ServiceStatus.HEALTHY for s in services.values()):
        return ServiceStatus.DEGRADED
    return ServiceStatus.HEALTHY


@router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Comprehensive health check",
    description="Returns HTTP 200 with per-service status; use the 'status' field for overall health.",
)
async def health_check(
    pipeline: ConsultationPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings)
) -> HealthCheckResponse:
    services = {
        "api": ServiceCheckResult(status=ServiceStatus.HEALTHY, message="API is running"),
        "ollama": check_ollama(settings),
        "google_cloud": check_google_cloud(settings),
    }
    overall_status = determine_overall_status(services)

    logger.info(f"Health check completed: {overall_status.value}")
    if overall_status != ServiceStatus.HEALTHY:
        unhealthy = [name for name, check in services.items() if check.status != ServiceStatus.HEALTHY]
        logger.warning(f"Unhealthy/degraded services: {unhealthy}")

    return HealthCheckResponse(
        status=overall_status,
        timestamp=_now(),
        services=services,
        system_metrics=get_system_metrics()
    )


@router.get(
    "/health/ready",
    response_model=ProbeResponse,
    summary="Kubernetes readiness probe",
)
async def readiness_probe(
    pipeline: ConsultationPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings)
) -> ProbeResponse:
    """Ready when the pipeline is loaded and Ollama answers."""
    ollama_result = check_ollama(settings)
    if ollama_result.status == ServiceStatus.UNHEALTHY:
        logger.warning(f"Readiness probe failed: {ollama_result.message}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Ollama not ready: {ollama_result.message}"
        )

    return ProbeResponse(
        status="ready",
        message="Application is ready to serve traffic",
        timestamp=_now()
    )


@router.get(
    "/health/live",
    response_model=ProbeResponse,
    summary="Kubernetes liveness probe",
)
async def liveness_probe() -> ProbeResponse:
    """Confirms the process can respond; checks no dependencies."""
    return ProbeResponse(status="alive", timestamp=_now())
