"""Operational endpoints for triggering license jobs from an external cron."""
from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, status

from ... import scheduler
from ..schemas.admin import JobRunResponse
from ..services import licensing as licensing_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _require_job_secret(authorization: Optional[str]) -> None:
    secret = licensing_services.get_licensing_config().cleanup_secret_key
    if not secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Job trigger is not configured")
    scheme, _, presented = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(presented.strip().encode(), secret.encode()):
        logger.warning("Rejected job trigger with invalid credentials")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/jobs/{job}", response_model=JobRunResponse)
def run_job(job: str, authorization: Optional[str] = Header(None)) -> JobRunResponse:
    _require_job_secret(authorization)
    try:
        license_job = scheduler.LicenseJob(job)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job: {job}") from exc
    report = scheduler.run_license_job(license_job)
    return JobRunResponse(job=license_job.value, report=report.model_dump(mode="json"))
