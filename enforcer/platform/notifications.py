"""Expired-key notification sinks.

Delivery is best effort: a sink logs its own failures and never raises into
the expiry sweep.
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx

from enforcer.utils.logger import get_logger

logger = get_logger(__name__)


class LoggingNotificationSink:
    """Default sink: records the notification in the structured log only."""

    async def notify_expired_key(self, principal_id: int) -> None:
        logger.info("expired_key_notification", principal_id=principal_id, channel="log")


class WebhookNotificationSink:
    """POSTs an ``ssh_key_expired`` JSON event to a configured URL."""

    def __init__(self, http_client: httpx.AsyncClient, webhook_url: str) -> None:
        self._http = http_client
        self._url = webhook_url

    async def notify_expired_key(self, principal_id: int) -> None:
        payload = {
            "event": "ssh_key_expired",
            "principal_id": principal_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            response = await self._http.post(self._url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "expired_key_notification_failed",
                principal_id=principal_id,
                url=self._url,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return
        logger.info("expired_key_notification", principal_id=principal_id, channel="webhook")
