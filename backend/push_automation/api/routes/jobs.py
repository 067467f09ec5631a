"""
Automation job routes.

- GET /api/jobs, GET /api/jobs/{job_id}: inspection
- POST /api/jobs/{job_id}/cancel: idempotent cancellation
- POST /api/jobs/process: manual sweep trigger
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from push_automation.api.dependencies import get_dispatcher, get_tenant_id, verify_sweep_token
from push_automation.api.schemas.automation import JobListResponse, JobResponse, SweepResponse
from push_automation.database.session import get_db_session
from push_automation.jobs.processor import JobProcessor
from push_automation.jobs.scheduler import JobScheduler
from push_automation.models.automation_job import AutomationJob, AutomationJobStatus
from push_automation.platform.errors import ValidationError
from push_automation.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def _job_to_response(job: AutomationJob) -> JobResponse:
    return JobResponse(
        id=job.id,
        rule_id=job.rule_id,
        customer_id=job.customer_id,
        correlation_key=job.correlation_key,
        status=job.status.value,
        due_at=job.due_at,
        executed_at=job.executed_at,
        completed_at=job.completed_at,
        result=job.result,
        error_message=job.error_message,
    )


@router.get("", response_model=JobListResponse)
async def list_jobs(
    tenant_id: str = Depends(get_tenant_id),
    db_session: Session = Depends(get_db_session),
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(50, ge=1, le=200, description="Maximum jobs to return"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
):
    job_status = None
    if status_filter:
        try:
            job_status = AutomationJobStatus(status_filter.lower())
        except ValueError:
            raise ValidationError(
                f"Unknown job status: {status_filter}",
                details={"allowed": [s.value for s in AutomationJobStatus]},
            )

    jobs = JobScheduler(db_session).list_jobs(tenant_id, status=job_status, limit=limit, offset=offset)
    return JobListResponse(jobs=[_job_to_response(job) for job in jobs])


@router.post("/process", response_model=SweepResponse, dependencies=[Depends(verify_sweep_token)])
async def process_jobs(
    db_session: Session = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Run one sweep over due jobs of every tenant."""
    stats = await JobProcessor(db_session, dispatcher).run_sweep()
    return SweepResponse(
        processed=stats.processed,
        completed=stats.completed,
        failed=stats.failed,
        skipped=stats.skipped,
    )


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db_session: Session = Depends(get_db_session),
):
    return _job_to_response(JobScheduler(db_session).get_job(tenant_id, job_id))


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(
    job_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db_session: Session = Depends(get_db_session),
):
    """Cancel a queued job; terminal jobs are returned unchanged."""
    job = JobScheduler(db_session).cancel_job(tenant_id, job_id, reason="merchant_cancelled")
    return _job_to_response(job)
