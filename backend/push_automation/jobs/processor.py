"""
Job processor.

One sweep:
1. Select up to JOB_BATCH_SIZE queued jobs with due_at <= now in a single
   query, tagging each with its tenant's priority class (0 = tenant has
   priority_jobs, 1 = everyone else) and ordering by (class, due_at).
   Priority tenants are never starved behind a standard-tenant backlog.
2. Run the batch concurrently, at most JOB_CONCURRENCY jobs dispatching
   at a time. Each job:
   - claims itself with a conditional update (queued -> running); a sweep
     that loses the race skips the job silently
   - looks up its rule (missing rule -> failed with NotFound)
   - executes according to the rule type
   - ends completed (delivery summary stored) or failed (error stored)

Failures are terminal; nothing is retried. A failure in one job never
aborts the batch. Sweeps are triggered externally (cron worker or the
manual sweep route) and may overlap across instances.

Jobs of one batch share the processor's session. Each job commits before
its dispatch await and again right after it, so no job's pending changes
are ever open while another job runs.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from push_automation.config.settings import JOB_BATCH_SIZE, JOB_CONCURRENCY
from push_automation.models.automation_job import AutomationJob, AutomationJobStatus
from push_automation.models.automation_rule import (
    CartRecoveryConfig,
    RuleConfig,
    RuleType,
    ScheduledPushConfig,
)
from push_automation.models.base import as_utc, utcnow
from push_automation.models.plan_limits import PlanLimits
from push_automation.models.usage_log import UsageFeature
from push_automation.platform.errors import AppError, ValidationError
from push_automation.services.notification_dispatcher import (
    DeliverySummary,
    DispatchTarget,
    NotificationDispatcher,
)
from push_automation.services.plan_limits import PlanLimitsService
from push_automation.services.quota_ledger import QuotaLedger
from push_automation.services.rule_store import RuleStore

logger = logging.getLogger(__name__)

PRIORITY_CLASS = 0
STANDARD_CLASS = 1


@dataclass
class SweepStats:
    """Counters for one sweep."""
    selected: int = 0
    processed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    job_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "selected": self.selected,
            "processed": self.processed,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
        }


class JobProcessor:
    """Executes due automation jobs."""

    def __init__(
        self,
        db_session: Session,
        dispatcher: NotificationDispatcher,
        batch_size: int = JOB_BATCH_SIZE,
        concurrency: int = JOB_CONCURRENCY,
        quota_ledger: Optional[QuotaLedger] = None,
    ):
        self.db = db_session
        self.dispatcher = dispatcher
        self.batch_size = batch_size
        self.concurrency = max(concurrency, 1)
        self.quota = quota_ledger or QuotaLedger(db_session, PlanLimitsService(db_session))
        self.rules = RuleStore(db_session)
        self._executors: Dict[RuleType, Callable[[AutomationJob, RuleConfig], Awaitable[DeliverySummary]]] = {
            RuleType.CART_RECOVERY: self._execute_cart_recovery,
            RuleType.SCHEDULED_PUSH: self._execute_scheduled_push,
        }

    # =========================================================================
    # Selection
    # =========================================================================

    def select_due_jobs(self, now: Optional[datetime] = None) -> List[AutomationJob]:
        """Due queued jobs, priority tenants first, then by due time."""
        now = as_utc(now)
        priority_class = case(
            (PlanLimits.priority_jobs.is_(True), PRIORITY_CLASS),
            else_=STANDARD_CLASS,
        )
        return (
            self.db.query(AutomationJob)
            .outerjoin(PlanLimits, PlanLimits.tenant_id == AutomationJob.tenant_id)
            .filter(
                AutomationJob.status == AutomationJobStatus.QUEUED,
                AutomationJob.due_at <= now,
            )
            .order_by(priority_class.asc(), AutomationJob.due_at.asc(), AutomationJob.id.asc())
            .limit(self.batch_size)
            .all()
        )

    def claim_job(self, job_id: str, now: Optional[datetime] = None) -> bool:
        """
        Transition queued -> running.

        Returns:
            False if another sweep (or a cancellation) got there first
        """
        claimed = (
            self.db.query(AutomationJob)
            .filter(
                AutomationJob.id == job_id,
                AutomationJob.status == AutomationJobStatus.QUEUED,
            )
            .update(
                {
                    AutomationJob.status: AutomationJobStatus.RUNNING,
                    AutomationJob.executed_at: as_utc(now),
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return claimed == 1

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute_job(self, job: AutomationJob) -> AutomationJob:
        """
        Execute a claimed (running) job and record its terminal state.

        Never raises; errors end up on the job.
        """
        job_id = job.id
        tenant_id = job.tenant_id

        try:
            rule = self.rules.get_rule(tenant_id, job.rule_id)
            config = rule.parsed_config()
            executor = self._executors.get(rule.rule_type)
            if executor is None:
                raise ValidationError(f"No executor for rule type {rule.rule_type}")

            summary = await executor(job, config)

            job.mark_completed(summary.to_dict())
            self.db.commit()

            logger.info(
                "automation_job.completed",
                extra={
                    "tenant_id": tenant_id,
                    "job_id": job_id,
                    "rule_id": rule.id,
                    "attempted": summary.attempted,
                    "succeeded": summary.succeeded,
                },
            )

        except Exception as e:
            error_message = str(e) or type(e).__name__
            result = {"error": error_message}
            if isinstance(e, SQLAlchemyError):
                self.db.rollback()
            if isinstance(e, AppError):
                result["code"] = e.code

            job.mark_failed(error_message, result=result)
            self.db.commit()

            logger.warning(
                "automation_job.failed",
                extra={
                    "tenant_id": tenant_id,
                    "job_id": job_id,
                    "rule_id": job.rule_id,
                    "error_type": type(e).__name__,
                    "error": error_message,
                },
            )

        return job

    async def _execute_cart_recovery(self, job: AutomationJob, config: RuleConfig) -> DeliverySummary:
        if not isinstance(config, CartRecoveryConfig):
            raise ValidationError("cart recovery job has a non cart-recovery rule config")
        if not job.customer_id:
            raise ValidationError("cart recovery job has no customer")

        # Fails closed: an exhausted daily quota fails the job
        self.quota.check_limit(job.tenant_id, UsageFeature.CART_RECOVERY)
        self.db.commit()

        data = {"type": "cart_recovery", "jobId": job.id}
        if job.correlation_key:
            data["cartId"] = job.correlation_key

        summary = await self.dispatcher.dispatch(
            DispatchTarget(tenant_id=job.tenant_id, customer_id=job.customer_id),
            config.title,
            config.body,
            data=data,
        )
        self.quota.record_usage(job.tenant_id, UsageFeature.CART_RECOVERY)
        return summary

    async def _execute_scheduled_push(self, job: AutomationJob, config: RuleConfig) -> DeliverySummary:
        if not isinstance(config, ScheduledPushConfig):
            raise ValidationError("scheduled push job has a non scheduled-push rule config")

        # Already charged at campaign creation
        return await self.dispatcher.dispatch(
            DispatchTarget(tenant_id=job.tenant_id, customer_id=job.customer_id),
            config.title,
            config.body,
            data={"type": "scheduled_push", "ruleId": job.rule_id, "jobId": job.id},
        )

    # =========================================================================
    # Batch Processing
    # =========================================================================

    async def _run_one(self, job: AutomationJob, semaphore: asyncio.Semaphore, stats: SweepStats) -> None:
        async with semaphore:
            job_id = job.id
            if not self.claim_job(job_id):
                stats.skipped += 1
                logger.debug("automation_job.claim_lost", extra={"job_id": job_id})
                return

            job = self.db.get(AutomationJob, job_id)
            await self.execute_job(job)

            stats.processed += 1
            stats.job_ids.append(job_id)
            if job.status == AutomationJobStatus.COMPLETED:
                stats.completed += 1
            else:
                stats.failed += 1

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepStats:
        """
        Select and execute one batch of due jobs.

        Returns:
            SweepStats; processed counts the jobs this sweep claimed
        """
        stats = SweepStats()
        jobs = self.select_due_jobs(now or utcnow())
        stats.selected = len(jobs)

        if not jobs:
            logger.debug("No due automation jobs to process")
            return stats

        semaphore = asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(
            *(self._run_one(job, semaphore, stats) for job in jobs),
            return_exceptions=True,
        )
        for outcome in results:
            if isinstance(outcome, Exception):
                logger.error(
                    "Error processing automation job",
                    extra={"error": str(outcome)},
                    exc_info=outcome,
                )

        logger.info("automation_sweep.completed", extra=stats.to_dict())
        return stats

    def process_due_jobs(self, now: Optional[datetime] = None) -> SweepStats:
        """Sync entrypoint for run_sweep (cron worker)."""
        return asyncio.run(self.run_sweep(now))
