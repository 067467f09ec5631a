"""
Expo push client.

NotificationDispatcher implementation over the Expo push API.

- Device tokens come from an injected DeviceTokenProvider
- Tokens that are not Expo push tokens are skipped
- Messages are sent in chunks of 100 (Expo's per-request maximum)
- Tickets with status "ok" count as successes
- DispatchFailureError is raised only when every chunk failed
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx
from sqlalchemy.orm import Session

from push_automation.config import settings
from push_automation.models.customer import PushToken
from push_automation.platform.errors import DispatchFailureError
from push_automation.services.notification_dispatcher import (
    DeliverySummary,
    DispatchTarget,
    NotificationDispatcher,
)

logger = logging.getLogger(__name__)

EXPO_CHUNK_SIZE = 100
EXPO_TOKEN_PREFIXES = ("ExponentPushToken[", "ExpoPushToken[")


def is_expo_push_token(token: Optional[str]) -> bool:
    return bool(token) and token.startswith(EXPO_TOKEN_PREFIXES) and token.endswith("]")


@dataclass
class ExpoConfig:
    """Expo configuration from environment."""
    push_url: str = settings.EXPO_PUSH_URL
    access_token: Optional[str] = None
    timeout_seconds: float = settings.EXPO_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "ExpoConfig":
        return cls(
            push_url=settings.EXPO_PUSH_URL,
            access_token=settings.EXPO_ACCESS_TOKEN or None,
            timeout_seconds=settings.EXPO_TIMEOUT_SECONDS,
        )

    def headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers


class DeviceTokenProvider(ABC):
    @abstractmethod
    def get_tokens(self, target: DispatchTarget) -> List[str]:
        """Registered push tokens for the target."""


class DatabaseDeviceTokenProvider(DeviceTokenProvider):
    """Reads tokens from the push_tokens table."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_tokens(self, target: DispatchTarget) -> List[str]:
        query = self.db.query(PushToken.token).filter(PushToken.tenant_id == target.tenant_id)
        if not target.is_broadcast:
            query = query.filter(PushToken.shopify_customer_id == target.customer_id)
        return [row[0] for row in query.order_by(PushToken.token.asc()).all()]


class ExpoPushDispatcher(NotificationDispatcher):
    """Delivers notifications through the Expo push service."""

    def __init__(
        self,
        token_provider: DeviceTokenProvider,
        config: Optional[ExpoConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.token_provider = token_provider
        self.config = config or ExpoConfig.from_env()
        self._http_client = http_client

    async def dispatch(
        self,
        target: DispatchTarget,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> DeliverySummary:
        tokens = self.token_provider.get_tokens(target)
        valid = [token for token in tokens if is_expo_push_token(token)]
        skipped = len(tokens) - len(valid)
        if skipped:
            logger.warning(
                "expo.invalid_tokens_skipped",
                extra={"tenant_id": target.tenant_id, "skipped": skipped},
            )

        if not valid:
            logger.info(
                "expo.no_devices",
                extra={"tenant_id": target.tenant_id, "customer_id": target.customer_id},
            )
            return DeliverySummary(attempted=0, succeeded=0)

        messages = [
            {
                "to": token,
                "sound": "default",
                "title": title,
                "body": body,
                "data": data or {},
            }
            for token in valid
        ]
        chunks = [
            messages[i:i + EXPO_CHUNK_SIZE]
            for i in range(0, len(messages), EXPO_CHUNK_SIZE)
        ]

        if self._http_client is not None:
            succeeded, errors = await self._send_chunks(self._http_client, chunks)
        else:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                succeeded, errors = await self._send_chunks(client, chunks)
        failed_chunks = len(errors)

        if failed_chunks == len(chunks):
            raise DispatchFailureError(
                "Expo push delivery failed",
                details={"chunks": len(chunks), "errors": errors[:5]},
            )

        summary = DeliverySummary(attempted=len(valid), succeeded=succeeded)
        logger.info(
            "expo.dispatched",
            extra={
                "tenant_id": target.tenant_id,
                "customer_id": target.customer_id,
                "attempted": summary.attempted,
                "succeeded": summary.succeeded,
                "failed_chunks": failed_chunks,
            },
        )
        return summary

    async def _send_chunks(self, client: httpx.AsyncClient, chunks: List[List[dict]]) -> Tuple[int, List[str]]:
        succeeded = 0
        errors: List[str] = []
        for chunk in chunks:
            ok, error = await self._send_chunk(client, chunk)
            succeeded += ok
            if error:
                errors.append(error)
        return succeeded, errors

    async def _send_chunk(self, client: httpx.AsyncClient, chunk: List[dict]) -> Tuple[int, Optional[str]]:
        """
        Send one chunk.

        Returns:
            (ok_ticket_count, error or None)
        """
        try:
            response = await client.post(
                self.config.push_url,
                json=chunk,
                headers=self.config.headers(),
            )
            response.raise_for_status()
            tickets = response.json().get("data") or []
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "expo.chunk_failed",
                extra={"size": len(chunk), "error": str(e)},
            )
            return 0, str(e)

        ok = 0
        for ticket in tickets:
            if ticket.get("status") == "ok":
                ok += 1
            else:
                logger.warning(
                    "expo.ticket_error",
                    extra={
                        "ticket_message": ticket.get("message"),
                        "details": ticket.get("details"),
                    },
                )
        return ok, None
