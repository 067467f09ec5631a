"""
Runtime settings for the automation core.

All values come from environment variables with safe defaults.
"""

import os
from pathlib import Path

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "")

# Job processor: jobs selected per sweep across both priority lanes
JOB_BATCH_SIZE = int(os.getenv("JOB_BATCH_SIZE", "50"))

# Job processor: jobs of one batch allowed to dispatch at the same time
JOB_CONCURRENCY = int(os.getenv("JOB_CONCURRENCY", "10"))

# Cart recovery delay when a rule does not configure one
DEFAULT_RECOVERY_DELAY_MINUTES = int(os.getenv("DEFAULT_RECOVERY_DELAY_MINUTES", "30"))

# Timezone used for quota windows ("1st of the month", "midnight today")
QUOTA_TIMEZONE = os.getenv("QUOTA_TIMEZONE", "UTC")

# Plan definitions (tiers, capability flags, limits)
PLANS_CONFIG_PATH = os.getenv(
    "PLANS_CONFIG_PATH",
    str(Path(__file__).resolve().parent / "plans.json"),
)

# Shopify webhook HMAC secret
SHOPIFY_API_SECRET = os.getenv("SHOPIFY_API_SECRET", "")

# Expo push transport
EXPO_PUSH_URL = os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
EXPO_ACCESS_TOKEN = os.getenv("EXPO_ACCESS_TOKEN", "")
EXPO_TIMEOUT_SECONDS = float(os.getenv("EXPO_TIMEOUT_SECONDS", "15"))

# Optional shared secret for the manual sweep trigger route
JOB_SWEEP_TOKEN = os.getenv("JOB_SWEEP_TOKEN", "")
