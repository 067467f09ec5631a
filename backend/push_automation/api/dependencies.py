"""
Shared FastAPI dependencies.

The merchant auth/session layer is external: it forwards the resolved
tenant in the X-Tenant-ID header.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session, sessionmaker

from push_automation.config import settings
from push_automation.database.session import get_db_session, get_session_factory
from push_automation.integrations.expo import DatabaseDeviceTokenProvider, ExpoPushDispatcher
from push_automation.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


def get_tenant_id(x_tenant_id: str = Header(..., alias="X-Tenant-ID")) -> str:
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing tenant context",
        )
    return tenant_id


def get_dispatcher(db_session: Session = Depends(get_db_session)) -> NotificationDispatcher:
    return ExpoPushDispatcher(DatabaseDeviceTokenProvider(db_session))


def get_evaluation_session_factory() -> sessionmaker:
    """Session factory used by background rule evaluation."""
    return get_session_factory()


def verify_sweep_token(
    x_job_sweep_token: Optional[str] = Header(None, alias="X-Job-Sweep-Token"),
) -> None:
    """Guard the manual sweep trigger when JOB_SWEEP_TOKEN is configured."""
    expected = settings.JOB_SWEEP_TOKEN
    if not expected:
        return
    if not x_job_sweep_token or not hmac.compare_digest(expected, x_job_sweep_token):
        logger.warning("Invalid job sweep token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid job sweep token",
        )
