"""
Shopify webhook helpers.

SECURITY:
- Every webhook body MUST be verified against X-Shopify-Hmac-Sha256
- tenant is derived from X-Shopify-Shop-Domain, never from the payload
"""

import base64
import hashlib
import hmac
import logging
from typing import Any, Mapping, Optional

from push_automation.config import settings

logger = logging.getLogger(__name__)


def verify_webhook_signature(
    payload: bytes,
    signature: Optional[str],
    secret: Optional[str] = None,
) -> bool:
    """
    Verify Shopify webhook HMAC signature.

    Args:
        payload: Raw request body bytes
        signature: X-Shopify-Hmac-Sha256 header value
        secret: Webhook secret (uses SHOPIFY_API_SECRET if not provided)

    Returns:
        True if signature is valid
    """
    secret = secret or settings.SHOPIFY_API_SECRET
    if not secret:
        logger.error("SHOPIFY_API_SECRET not configured for webhook verification")
        return False
    if not signature:
        return False

    computed_hmac = hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).digest()
    computed_signature = base64.b64encode(computed_hmac).decode("utf-8")

    return hmac.compare_digest(computed_signature, signature)


def customer_id_from_order(order: Mapping[str, Any]) -> Optional[str]:
    """Shopify customer ID of an orders/create payload, as a string."""
    customer = order.get("customer") or {}
    customer_id = customer.get("id")
    return str(customer_id) if customer_id not in (None, "") else None


def subscription_from_payload(payload: Mapping[str, Any]) -> dict:
    """
    Extract plan name, status and GID from an app_subscriptions/update payload.
    """
    subscription = payload.get("app_subscription") or {}
    return {
        "plan_name": subscription.get("name"),
        "status": subscription.get("status"),
        "shopify_subscription_id": subscription.get("admin_graphql_api_id"),
    }
