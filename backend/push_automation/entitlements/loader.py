from __future__ import annotations

import json
from pathlib import Path
from threading import RLock
from typing import Dict, List, Optional

from push_automation.config.settings import PLANS_CONFIG_PATH
from push_automation.entitlements.models import (
    REQUIRED_LIMIT_KEYS,
    PlanDefinition,
    PlansConfig,
    PlanTier,
)


def normalize_plan_key(plan_key: str) -> str:
    normalized = str(plan_key).strip().lower()
    if normalized.startswith("plan_"):
        return normalized[len("plan_"):]
    return normalized


class PlanLoader:
    """Loads tier definitions from config/plans.json with reload support."""

    def __init__(self, config_path: str = PLANS_CONFIG_PATH) -> None:
        self._config_path = Path(config_path)
        self._lock = RLock()
        self._config: PlansConfig
        self.reload()

    def reload(self) -> None:
        """Reload config from disk."""
        raw = self._read_config_file()
        parsed = self._parse_config(raw)
        with self._lock:
            self._config = parsed

    def get_plan(self, plan_key: str) -> PlanDefinition:
        if not str(plan_key).strip():
            raise ValueError("plan_key is required")
        with self._lock:
            plan = self._config.plans.get(normalize_plan_key(plan_key))
        if plan is None:
            raise KeyError(f"unknown plan_key: {plan_key}")
        return plan

    def resolve_tier(self, plan_name: Optional[str]) -> PlanTier:
        """
        Map a plan key or Shopify subscription name ("Pro") to a tier.

        Unknown names resolve to the free tier.
        """
        if not plan_name or not str(plan_name).strip():
            return PlanTier.FREE
        with self._lock:
            plan = self._config.plans.get(normalize_plan_key(plan_name))
            if plan is None:
                plan = self._config.find_by_display_name(plan_name)
        if plan is None:
            return PlanTier.FREE
        try:
            return PlanTier(plan.plan_key)
        except ValueError:
            return PlanTier.FREE

    def _read_config_file(self) -> dict:
        with self._config_path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        if not isinstance(raw, dict):
            raise ValueError("plans config must contain a top-level object")
        return raw

    @staticmethod
    def _parse_config(raw: dict) -> PlansConfig:
        plans_raw = raw.get("plans")
        if not isinstance(plans_raw, dict):
            raise ValueError("plans config must include an object field named 'plans'")

        plans: Dict[str, PlanDefinition] = {}
        for plan_key, plan_data in plans_raw.items():
            if not isinstance(plan_key, str) or not plan_key.strip():
                raise ValueError("each plan key must be a non-empty string")
            if not isinstance(plan_data, dict):
                raise ValueError(f"plan '{plan_key}' must be an object")

            features = plan_data.get("features", [])
            if not isinstance(features, list):
                raise ValueError(f"plan '{plan_key}' features must be a list of feature keys")

            normalized_features: List[str] = []
            for feature_key in features:
                if not isinstance(feature_key, str) or not feature_key.strip():
                    raise ValueError(f"plan '{plan_key}' has invalid feature key: {feature_key!r}")
                normalized_features.append(feature_key)

            limits = plan_data.get("limits", {})
            if not isinstance(limits, dict):
                raise ValueError(f"plan '{plan_key}' limits must be an object")

            normalized_limits: Dict[str, int] = {}
            for limit_key, limit_value in limits.items():
                if not isinstance(limit_key, str) or not limit_key.strip():
                    raise ValueError(f"plan '{plan_key}' has invalid limit key: {limit_key!r}")
                normalized_limits[limit_key.strip()] = int(limit_value)

            missing = REQUIRED_LIMIT_KEYS - set(normalized_limits)
            if missing:
                raise ValueError(f"plan '{plan_key}' is missing limits: {sorted(missing)}")

            key = normalize_plan_key(plan_key)
            plans[key] = PlanDefinition(
                plan_key=key,
                display_name=str(plan_data.get("display_name") or key.title()),
                feature_keys=frozenset(normalized_features),
                limits=normalized_limits,
            )

        if PlanTier.FREE.value not in plans:
            raise ValueError("plans config must define the 'free' plan")

        return PlansConfig(plans=plans)


_default_loader: Optional[PlanLoader] = None


def get_plan_loader() -> PlanLoader:
    """Process-wide loader for the configured plans file."""
    global _default_loader
    if _default_loader is None:
        _default_loader = PlanLoader()
    return _default_loader
