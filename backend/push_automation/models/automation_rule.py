"""
Automation rule model.

A rule is tenant-owned configuration: a type, a status and a config blob.
The blob is stored as JSON but always read through parse_rule_config(),
which returns one of a closed set of typed variants:

- CartRecoveryConfig(delay_minutes, title, body)
- ScheduledPushConfig(title, body, audience)

Rules are created at onboarding (default cart-recovery rule) or by
campaign creation (one scheduled-push rule per campaign) and afterwards
only mutated by status toggles.
"""

import enum
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from sqlalchemy import Column, Enum, Index, JSON, String
from sqlalchemy.dialects.postgresql import JSONB

from push_automation.config.settings import DEFAULT_RECOVERY_DELAY_MINUTES
from push_automation.db_base import Base
from push_automation.models.base import TimestampMixin, TenantScopedMixin


JSONType = JSON().with_variant(JSONB(), "postgresql")

DEFAULT_RECOVERY_TITLE = "You forgot something! 🛒"
DEFAULT_RECOVERY_BODY = "Your cart is waiting. Complete your purchase now!"


class RuleType(str, enum.Enum):
    """Automation kinds."""
    CART_RECOVERY = "CART_RECOVERY"
    SCHEDULED_PUSH = "SCHEDULED_PUSH"


class RuleStatus(str, enum.Enum):
    """Rule status; only active rules are evaluated."""
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class AudienceSelector(str, enum.Enum):
    """Campaign audiences."""
    ALL = "all"
    LOGGED_IN = "logged_in"
    CART_OWNERS = "cart_owners"


RULE_TYPE_ENUM = Enum(
    RuleType,
    name="automation_rule_type",
    create_constraint=True,
    metadata=Base.metadata,
    validate_strings=True,
    values_callable=lambda enum: [e.value for e in enum],
)

RULE_STATUS_ENUM = Enum(
    RuleStatus,
    name="automation_rule_status",
    create_constraint=True,
    metadata=Base.metadata,
    validate_strings=True,
    values_callable=lambda enum: [e.value for e in enum],
)


@dataclass(frozen=True)
class CartRecoveryConfig:
    delay_minutes: int = DEFAULT_RECOVERY_DELAY_MINUTES
    title: str = DEFAULT_RECOVERY_TITLE
    body: str = DEFAULT_RECOVERY_BODY

    def to_dict(self) -> dict:
        return {
            "delay_minutes": self.delay_minutes,
            "title": self.title,
            "body": self.body,
        }


@dataclass(frozen=True)
class ScheduledPushConfig:
    title: str
    body: str
    audience: AudienceSelector = AudienceSelector.ALL

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "body": self.body,
            "audience": self.audience.value,
        }


RuleConfig = Union[CartRecoveryConfig, ScheduledPushConfig]


def _parse_cart_recovery(raw: Mapping[str, Any]) -> CartRecoveryConfig:
    delay = raw.get("delay_minutes")
    if delay in (None, ""):
        delay = DEFAULT_RECOVERY_DELAY_MINUTES
    try:
        delay = int(delay)
    except (TypeError, ValueError):
        raise ValueError(f"delay_minutes must be an integer, got {raw.get('delay_minutes')!r}")
    if delay < 0:
        raise ValueError("delay_minutes must not be negative")
    return CartRecoveryConfig(
        delay_minutes=delay,
        title=raw.get("title") or DEFAULT_RECOVERY_TITLE,
        body=raw.get("body") or DEFAULT_RECOVERY_BODY,
    )


def _parse_scheduled_push(raw: Mapping[str, Any]) -> ScheduledPushConfig:
    title = raw.get("title")
    body = raw.get("body")
    if not title or not body:
        raise ValueError("scheduled push config requires title and body")
    try:
        audience = AudienceSelector(raw.get("audience") or AudienceSelector.ALL.value)
    except ValueError:
        raise ValueError(f"unknown audience: {raw.get('audience')!r}")
    return ScheduledPushConfig(title=title, body=body, audience=audience)


_CONFIG_PARSERS = {
    RuleType.CART_RECOVERY: _parse_cart_recovery,
    RuleType.SCHEDULED_PUSH: _parse_scheduled_push,
}


def parse_rule_config(rule_type: RuleType, raw: Optional[Mapping[str, Any]]) -> RuleConfig:
    """
    Parse a stored config blob into its typed variant.

    Raises:
        ValueError: unknown rule type or malformed config
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ValueError("rule config must be an object")
    parser = _CONFIG_PARSERS.get(RuleType(rule_type))
    if parser is None:
        raise ValueError(f"no config parser for rule type {rule_type}")
    return parser(raw)


class AutomationRule(Base, TimestampMixin, TenantScopedMixin):
    """Tenant-owned automation rule definition."""

    __tablename__ = "automation_rules"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    rule_type = Column(
        RULE_TYPE_ENUM,
        nullable=False,
        comment="CART_RECOVERY or SCHEDULED_PUSH"
    )

    status = Column(
        RULE_STATUS_ENUM,
        nullable=False,
        default=RuleStatus.ACTIVE,
        comment="ACTIVE or PAUSED"
    )

    config = Column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Type-specific configuration (see parse_rule_config)"
    )

    __table_args__ = (
        Index("ix_automation_rules_tenant_status", "tenant_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<AutomationRule(id={self.id}, tenant_id={self.tenant_id}, "
            f"type={self.rule_type}, status={self.status})>"
        )

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE

    def parsed_config(self) -> RuleConfig:
        return parse_rule_config(self.rule_type, self.config)
