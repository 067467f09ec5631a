"""Configuration module for the automation core."""

from push_automation.config.settings import (
    DEFAULT_RECOVERY_DELAY_MINUTES,
    JOB_BATCH_SIZE,
    JOB_CONCURRENCY,
    QUOTA_TIMEZONE,
    PLANS_CONFIG_PATH,
)

__all__ = [
    "DEFAULT_RECOVERY_DELAY_MINUTES",
    "JOB_BATCH_SIZE",
    "JOB_CONCURRENCY",
    "QUOTA_TIMEZONE",
    "PLANS_CONFIG_PATH",
]
