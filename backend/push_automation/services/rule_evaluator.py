"""
Rule evaluator.

Given a recorded event, finds the tenant's active rules and decides which
jobs to schedule or cancel:

- CART_RECOVERY rule + CART_ABANDONED event: one job per event, due after
  the rule's delay, only for identified customers and only when the
  tenant's cart-recovery capability is enabled
- ORDER_CREATED (once per event, independent of rules): cancel queued
  cart-recovery jobs for the customer and/or Storefront cart id

evaluate() never raises: automation failures are logged and rolled back so
event ingestion is unaffected. Re-evaluating the same event creates new
jobs; callers evaluate each event at most once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from push_automation.jobs.scheduler import JobScheduler
from push_automation.models.automation_job import AutomationJob
from push_automation.models.automation_rule import AutomationRule, CartRecoveryConfig, RuleType
from push_automation.models.base import as_utc
from push_automation.models.event_record import EventKind
from push_automation.services.plan_limits import PlanLimitsService
from push_automation.services.rule_store import RuleStore

logger = logging.getLogger(__name__)

# Storefront cart id (gid://shopify/Cart/...). The checkout cart_token carried by
# Shopify orders is a different identifier and never matches it.
CART_KEY_FIELDS = ("cartId", "cart_id")


def cart_key_from_payload(payload: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Extract the cart correlation key from an event payload, if any."""
    if not payload:
        return None
    for key in CART_KEY_FIELDS:
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return None


@dataclass
class EvaluationContext:
    tenant_id: str
    event_kind: EventKind
    payload: Mapping[str, Any]
    customer_id: Optional[str]
    now: datetime
    event_id: Optional[str] = None


@dataclass
class EvaluationResult:
    """What one evaluation did."""
    jobs_created: List[str] = field(default_factory=list)
    jobs_cancelled: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class RuleEvaluator:
    """Matches events against a tenant's active rules."""

    def __init__(
        self,
        db_session: Session,
        scheduler: Optional[JobScheduler] = None,
        plan_limits: Optional[PlanLimitsService] = None,
    ):
        self.db = db_session
        self.plan_limits = plan_limits or PlanLimitsService(db_session)
        self.scheduler = scheduler or JobScheduler(db_session, plan_limits=self.plan_limits)
        self.rules = RuleStore(db_session)
        self._rule_handlers: Dict[RuleType, Callable[[AutomationRule, EvaluationContext], List[AutomationJob]]] = {
            RuleType.CART_RECOVERY: self._evaluate_cart_recovery,
            RuleType.SCHEDULED_PUSH: self._evaluate_scheduled_push,
        }

    def evaluate(
        self,
        tenant_id: str,
        event_kind: EventKind,
        payload: Optional[Mapping[str, Any]] = None,
        customer_id: Optional[str] = None,
        now: Optional[datetime] = None,
        event_id: Optional[str] = None,
    ) -> EvaluationResult:
        """
        Evaluate one event and commit the resulting job changes.

        Never raises; failures are logged and reported in the result.
        """
        result = EvaluationResult()
        try:
            context = EvaluationContext(
                tenant_id=tenant_id,
                event_kind=EventKind(event_kind),
                payload=payload or {},
                customer_id=customer_id or None,
                now=as_utc(now),
                event_id=event_id,
            )
            self._evaluate(context, result)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            result.jobs_created = []
            result.jobs_cancelled = 0
            result.error = str(e)
            logger.error(
                "rule_evaluation.failed",
                extra={
                    "tenant_id": tenant_id,
                    "event_id": event_id,
                    "event_kind": str(event_kind),
                    "error": str(e),
                },
                exc_info=True,
            )
            return result

        logger.info(
            "rule_evaluation.completed",
            extra={
                "tenant_id": tenant_id,
                "event_id": event_id,
                "event_kind": context.event_kind.value,
                "jobs_created": len(result.jobs_created),
                "jobs_cancelled": result.jobs_cancelled,
            },
        )
        return result

    def _evaluate(self, context: EvaluationContext, result: EvaluationResult) -> None:
        for rule in self.rules.list_active_rules(context.tenant_id):
            handler = self._rule_handlers.get(rule.rule_type)
            if handler is None:
                continue
            try:
                jobs = handler(rule, context)
            except ValueError as e:
                # Malformed config on one rule must not block the others
                logger.warning(
                    "rule_evaluation.rule_skipped",
                    extra={
                        "tenant_id": context.tenant_id,
                        "rule_id": rule.id,
                        "error": str(e),
                    },
                )
                continue
            result.jobs_created.extend(job.id for job in jobs)

        if context.event_kind == EventKind.ORDER_CREATED:
            result.jobs_cancelled = self.scheduler.cancel_cart_recovery_jobs(
                context.tenant_id,
                customer_id=context.customer_id,
                correlation_key=cart_key_from_payload(context.payload),
                reason="order_created",
            )

    def _evaluate_cart_recovery(self, rule: AutomationRule, context: EvaluationContext) -> List[AutomationJob]:
        if context.event_kind != EventKind.CART_ABANDONED:
            return []

        # Anonymous carts are not recoverable
        if not context.customer_id:
            logger.debug(
                "rule_evaluation.cart_recovery_anonymous",
                extra={"tenant_id": context.tenant_id, "rule_id": rule.id},
            )
            return []

        limits = self.plan_limits.get_or_initialize(context.tenant_id)
        if not limits.cart_recovery_enabled:
            logger.info(
                "rule_evaluation.cart_recovery_disabled",
                extra={"tenant_id": context.tenant_id, "rule_id": rule.id},
            )
            return []

        config = rule.parsed_config()
        if not isinstance(config, CartRecoveryConfig):
            raise ValueError(f"rule {rule.id} has no cart recovery config")

        job = self.scheduler.create_job(
            context.tenant_id,
            rule,
            due_at=context.now + timedelta(minutes=config.delay_minutes),
            customer_id=context.customer_id,
            correlation_key=cart_key_from_payload(context.payload),
        )
        return [job]

    def _evaluate_scheduled_push(self, rule: AutomationRule, context: EvaluationContext) -> List[AutomationJob]:
        # Campaign rules are driven by create_campaign, not by events
        return []
