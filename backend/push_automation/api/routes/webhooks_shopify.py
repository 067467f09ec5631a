"""
Shopify webhook handlers.

SECURITY:
- All webhooks MUST verify HMAC signature
- No authentication middleware (webhooks are from Shopify, not users)
- tenant_id is derived from shop_domain, never from payload

Processing errors are logged and answered with 200 so Shopify does not
retry a webhook we have already received.
"""

import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session, sessionmaker

from push_automation.api.dependencies import get_evaluation_session_factory
from push_automation.database.session import get_db_session
from push_automation.integrations.shopify.webhooks import (
    customer_id_from_order,
    subscription_from_payload,
    verify_webhook_signature,
)
from push_automation.models.event_record import EventKind
from push_automation.services.event_recorder import EventRecorder, EvaluationTask, run_evaluation_task
from push_automation.services.tenant_setup import TenantSetupService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/shopify", tags=["webhooks"])


async def verify_webhook(request: Request, x_shopify_hmac_sha256: str) -> dict:
    """
    Verify Shopify webhook HMAC signature and parse the JSON body.

    Raises:
        HTTPException: 401 on invalid signature, 400 on invalid JSON
    """
    body = await request.body()

    if not verify_webhook_signature(body, x_shopify_hmac_sha256):
        logger.warning("Invalid webhook signature", extra={
            "path": request.url.path,
        })
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature"
        )

    try:
        return json.loads(body)
    except json.JSONDecodeError:
        logger.error("Invalid webhook JSON payload", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload"
        )


@router.post("/orders-create")
async def handle_order_created(
    request: Request,
    background_tasks: BackgroundTasks,
    x_shopify_shop_domain: str = Header(..., alias="X-Shopify-Shop-Domain"),
    x_shopify_hmac_sha256: str = Header(..., alias="X-Shopify-Hmac-Sha256"),
    db_session: Session = Depends(get_db_session),
    session_factory: sessionmaker = Depends(get_evaluation_session_factory),
):
    """
    Handle orders/create webhook.

    Records an ORDER_CREATED event; its evaluation cancels the customer's
    queued cart-recovery jobs.
    """
    order = await verify_webhook(request, x_shopify_hmac_sha256)

    try:
        tenant = TenantSetupService(db_session).get_tenant_by_shop(x_shopify_shop_domain)
        if tenant is None:
            logger.warning("Order webhook for unknown shop", extra={
                "shop_domain": x_shopify_shop_domain,
            })
            return {"status": "ignored"}

        payload = {
            "orderId": order.get("id"),
            "cartToken": order.get("cart_token"),
            "totalPrice": order.get("total_price"),
            "currency": order.get("currency"),
        }

        def enqueue(task: EvaluationTask) -> None:
            background_tasks.add_task(run_evaluation_task, task, session_factory)

        event = EventRecorder(db_session, task_sink=enqueue).record(
            tenant.id,
            EventKind.ORDER_CREATED,
            payload={k: v for k, v in payload.items() if v is not None},
            customer_id=customer_id_from_order(order),
        )
        return {"status": "processed", "event_id": event.id}

    except Exception as e:
        logger.error("Failed to process order webhook", extra={
            "shop_domain": x_shopify_shop_domain,
            "error": str(e),
        }, exc_info=True)
        return {"status": "error", "message": str(e)}


@router.post("/app-subscriptions-update")
async def handle_subscription_update(
    request: Request,
    x_shopify_shop_domain: str = Header(..., alias="X-Shopify-Shop-Domain"),
    x_shopify_hmac_sha256: str = Header(..., alias="X-Shopify-Hmac-Sha256"),
    db_session: Session = Depends(get_db_session),
):
    """
    Handle app_subscriptions/update webhook.

    Resyncs the tenant's plan limits; non-active subscriptions fall back
    to free-tier limits.
    """
    payload = await verify_webhook(request, x_shopify_hmac_sha256)
    subscription = subscription_from_payload(payload)

    logger.info("Received subscription update webhook", extra={
        "shop_domain": x_shopify_shop_domain,
        "subscription_status": subscription["status"],
    })

    try:
        service = TenantSetupService(db_session)
        tenant = service.ensure_tenant(shop_domain=x_shopify_shop_domain)
        limits = service.apply_subscription_update(
            tenant.id,
            plan_name=subscription["plan_name"],
            status=subscription["status"],
            shopify_subscription_id=subscription["shopify_subscription_id"],
        )
        return {"status": "processed", "plan": limits.plan}

    except Exception as e:
        logger.error("Failed to process subscription webhook", extra={
            "shop_domain": x_shopify_shop_domain,
            "error": str(e),
        }, exc_info=True)
        return {"status": "error", "message": str(e)}
