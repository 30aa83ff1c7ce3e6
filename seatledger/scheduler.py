"""Daily background workers for license jobs."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from threading import Event, Lock, Thread
from typing import Callable, Dict, Optional, Tuple

from pydantic import BaseModel

from .app.services.licensing import (
    get_change_scheduler,
    get_notification_trigger,
    get_orphan_cleanup,
)

logger = logging.getLogger(__name__)


class LicenseJob(str, Enum):
    APPLY_SCHEDULED_CHANGES = "apply-scheduled-changes"
    CLEANUP_ORPHANED_ORGS = "cleanup-orphaned-orgs"
    LICENSE_EXPIRY = "license-expiry"


# Hour (UTC) each job runs at.
JOB_SCHEDULE: Dict[LicenseJob, int] = {
    LicenseJob.APPLY_SCHEDULED_CHANGES: 2,
    LicenseJob.CLEANUP_ORPHANED_ORGS: 3,
    LicenseJob.LICENSE_EXPIRY: 9,
}

_scheduler_lock = Lock()
_workers: Dict[str, "_JobWorker"] = {}


def _empty_metrics() -> Dict[str, object]:
    return {
        "runs": 0,
        "items_processed": 0,
        "failures": 0,
        "last_run_at": None,
        "last_success_at": None,
        "last_error": None,
    }


_JOB_METRICS: Dict[str, Dict[str, object]] = {job.value: _empty_metrics() for job in LicenseJob}
_metrics_lock = Lock()


def _record_run_start(job: LicenseJob, started_at: datetime) -> None:
    with _metrics_lock:
        metrics = _JOB_METRICS[job.value]
        metrics["runs"] = int(metrics.get("runs", 0)) + 1
        metrics["last_run_at"] = started_at


def _record_run_success(job: LicenseJob, completed_at: datetime, processed: int, failures: int) -> None:
    with _metrics_lock:
        metrics = _JOB_METRICS[job.value]
        metrics["items_processed"] = int(metrics.get("items_processed", 0)) + processed
        metrics["failures"] = int(metrics.get("failures", 0)) + failures
        metrics["last_success_at"] = completed_at
        metrics["last_error"] = None


def _record_run_failure(job: LicenseJob, error: Exception) -> None:
    with _metrics_lock:
        metrics = _JOB_METRICS[job.value]
        metrics["failures"] = int(metrics.get("failures", 0)) + 1
        metrics["last_error"] = f"{type(error).__name__}: {error}"


def _apply_scheduled_changes(now: datetime) -> Tuple[BaseModel, int, int]:
    report = get_change_scheduler().apply_due_changes(now)
    return report, report.changes_applied, report.failures


def _cleanup_orphaned_orgs(now: datetime) -> Tuple[BaseModel, int, int]:
    report = get_orphan_cleanup().sweep()
    return report, report.orphaned_orgs_deleted, len(report.failed_deletions)


def _send_license_expiry(now: datetime) -> Tuple[BaseModel, int, int]:
    report = get_notification_trigger().send_expiry_reminders(now)
    return report, report.notifications_sent, report.failures


_JOB_RUNNERS: Dict[LicenseJob, Callable[[datetime], Tuple[BaseModel, int, int]]] = {
    LicenseJob.APPLY_SCHEDULED_CHANGES: _apply_scheduled_changes,
    LicenseJob.CLEANUP_ORPHANED_ORGS: _cleanup_orphaned_orgs,
    LicenseJob.LICENSE_EXPIRY: _send_license_expiry,
}


def run_license_job(job: LicenseJob, *, now: Optional[datetime] = None) -> BaseModel:
    """Run ``job`` once and return its report. Safe to call while a worker is running."""

    current_time = now or datetime.now(timezone.utc)
    if current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)

    _record_run_start(job, current_time)
    try:
        report, processed, failures = _JOB_RUNNERS[job](current_time)
    except Exception as exc:
        _record_run_failure(job, exc)
        logger.exception("License job failed", extra={"job": job.value})
        raise
    _record_run_success(job, current_time, processed, failures)
    logger.info(
        "License job completed",
        extra={"job": job.value, "items_processed": processed, "failures": failures},
    )
    return report


class _JobWorker(Thread):
    def __init__(self, job: LicenseJob, *, initial_delay: float, interval: float):
        super().__init__(daemon=True)
        self.job = job
        self._initial_delay = max(0.0, initial_delay)
        self._interval = max(1.0, interval)
        self._stop = Event()

    def stop(self) -> None:
        self._stop.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        if self._stop.wait(self._initial_delay):
            return
        while not self._stop.is_set():
            try:
                run_license_job(self.job)
            except Exception:
                # Logged inside run_license_job; the next tick retries.
                pass
            if self._stop.wait(self._interval):
                break


def _seconds_until(hour: int, minute: int = 0, *, now: Optional[datetime] = None) -> float:
    current = now or datetime.now(timezone.utc)
    target = current.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= current:
        target += timedelta(days=1)
    return max((target - current).total_seconds(), 0.0)


def start_license_scheduler() -> None:
    with _scheduler_lock:
        if _workers:
            return
        delays: Dict[str, float] = {}
        for job, hour in JOB_SCHEDULE.items():
            delay = _seconds_until(hour)
            _workers[job.value] = _JobWorker(job, initial_delay=delay, interval=24 * 60 * 60)
            delays[f"{job.value}_initial_delay_seconds"] = round(delay, 2)
        for worker in _workers.values():
            worker.start()
        logger.info("License scheduler started", extra=delays)


def shutdown_license_scheduler() -> None:
    with _scheduler_lock:
        workers = list(_workers.values())
        for worker in workers:
            worker.stop()
        for worker in workers:
            worker.join(timeout=1.0)
        _workers.clear()
        logger.info("License scheduler stopped")


def get_job_metrics() -> Dict[str, Dict[str, object]]:
    with _metrics_lock:
        snapshot: Dict[str, Dict[str, object]] = {}
        for key, value in _JOB_METRICS.items():
            snapshot[key] = {
                **value,
                "last_run_at": value["last_run_at"].isoformat() if value.get("last_run_at") else None,
                "last_success_at": value["last_success_at"].isoformat() if value.get("last_success_at") else None,
            }
        return snapshot


def _reset_metrics_for_testing() -> None:  # pragma: no cover - used in tests only
    with _metrics_lock:
        for metrics in _JOB_METRICS.values():
            metrics.update(_empty_metrics())


__all__ = [
    "JOB_SCHEDULE",
    "LicenseJob",
    "get_job_metrics",
    "run_license_job",
    "shutdown_license_scheduler",
    "start_license_scheduler",
]
