"""
Webhook implementation of the notification service.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

import aiohttp

from rxpipeline.application.ports.services.notification_service import NotificationService
from rxpipeline.core.config import NotificationSettings, get_settings
from rxpipeline.core.exceptions import NotificationError

logger = logging.getLogger(__name__)


class WebhookNotificationService(NotificationService):
    """Posts status updates as JSON to ``NOTIFICATION_WEBHOOK_URL``.

    Without a URL the update is only logged, which keeps local runs working.
    """

    def __init__(self, settings: Optional[NotificationSettings] = None):
        self._settings = settings or get_settings().notification

    async def notify(
        self,
        prescription_id: str,
        owner_id: str,
        status: str,
        reason: Optional[str] = None,
    ) -> None:
        payload = {
            "event": "prescription_status_changed",
            "prescription_id": prescription_id,
            "owner_id": owner_id,
            "status": status,
            "reason": reason,
            "sent_at": datetime.utcnow().isoformat(),
        }

        url = self._settings.webhook_url
        if not url:
            logger.info(json.dumps(payload))
            return

        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload) as response:
                    if response.status >= 300:
                        error_text = await response.text()
                        raise NotificationError(
                            f"Webhook returned {response.status}",
                            {"status": response.status, "body": error_text[:500]},
                        )
        except asyncio.TimeoutError as e:
            raise NotificationError(f"Webhook timed out after {self._settings.timeout_seconds}s") from e
        except aiohttp.ClientError as e:
            raise NotificationError(str(e)) from e

        logger.info(f"Status notification delivered: prescription={prescription_id}, status={status}")
