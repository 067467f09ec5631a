from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Mapping

FEATURE_SCHEDULING = "scheduling"
FEATURE_CART_RECOVERY = "cart_recovery"
FEATURE_PRIORITY_JOBS = "priority_jobs"

LIMIT_PUSH_CAMPAIGNS_PER_MONTH = "push_campaigns_per_month"
LIMIT_SCHEDULED_CAMPAIGNS_PER_MONTH = "scheduled_campaigns_per_month"
LIMIT_CART_RECOVERIES_PER_DAY = "cart_recoveries_per_day"

REQUIRED_LIMIT_KEYS = frozenset({
    LIMIT_PUSH_CAMPAIGNS_PER_MONTH,
    LIMIT_SCHEDULED_CAMPAIGNS_PER_MONTH,
    LIMIT_CART_RECOVERIES_PER_DAY,
})


class PlanTier(str, Enum):
    """Subscription tiers."""
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True)
class PlanDefinition:
    """Plan defaults from config/plans.json."""

    plan_key: str
    display_name: str
    feature_keys: FrozenSet[str]
    limits: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "plan_key", self.plan_key.strip())
        object.__setattr__(self, "display_name", self.display_name.strip())
        object.__setattr__(self, "feature_keys", frozenset(k.strip() for k in self.feature_keys))
        object.__setattr__(
            self,
            "limits",
            MappingProxyType({k.strip(): int(v) for k, v in dict(self.limits).items()}),
        )

    def has_feature(self, feature_key: str) -> bool:
        return str(feature_key).strip() in self.feature_keys

    def limit(self, limit_key: str) -> int:
        return self.limits.get(limit_key, 0)


@dataclass(frozen=True)
class PlansConfig:
    """Parsed plan mapping loaded from config/plans.json."""

    plans: Mapping[str, PlanDefinition]

    def __post_init__(self) -> None:
        object.__setattr__(self, "plans", MappingProxyType(dict(self.plans)))

    def find_by_display_name(self, display_name: str) -> PlanDefinition | None:
        wanted = str(display_name).strip().lower()
        for plan in self.plans.values():
            if plan.display_name.lower() == wanted:
                return plan
        return None
