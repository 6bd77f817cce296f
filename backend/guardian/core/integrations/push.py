"""
Web Push Notifications
======================

Sends browser push notifications to stored subscriptions using VAPID.
Without VAPID keys configured the notifier runs in logging-only mode and
reports every send as delivered.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional

import structlog
from pywebpush import WebPushException, webpush

from guardian.core.config import settings

logger = structlog.get_logger()


@dataclass
class DeliveryResult:
    """Outcome of one push delivery."""
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    should_unsubscribe: bool = False  # endpoint is gone (404/410)


class PushNotifier:
    """Web Push sender."""

    def __init__(
        self,
        public_key: Optional[str] = None,
        private_key: Optional[str] = None,
        subject: Optional[str] = None,
    ):
        self.public_key = public_key if public_key is not None else settings.VAPID_PUBLIC_KEY
        self.private_key = private_key if private_key is not None else settings.VAPID_PRIVATE_KEY
        self.subject = subject or settings.VAPID_SUBJECT

    @property
    def enabled(self) -> bool:
        return bool(self.public_key and self.private_key)

    async def send(
        self,
        subscription_info: dict[str, Any],
        title: str,
        body: str,
        data: Optional[dict[str, Any]] = None,
        ttl: int = 86400,
    ) -> DeliveryResult:
        """Send one notification to one subscription."""
        payload = json.dumps({"title": title, "body": body, "data": data or {}})

        if not self.enabled:
            logger.info("push_notification_logged", title=title, body=body, mode="disabled")
            return DeliveryResult(success=True)

        try:
            response = await asyncio.to_thread(
                webpush,
                subscription_info=subscription_info,
                data=payload,
                vapid_private_key=self.private_key,
                vapid_claims={"sub": self.subject},
                ttl=ttl,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            logger.warning("push_notification_failed", title=title, status_code=status_code, error=str(e))
            return DeliveryResult(
                success=False,
                status_code=status_code,
                error=str(e),
                should_unsubscribe=status_code in (404, 410),
            )

        logger.debug("push_notification_sent", title=title)
        return DeliveryResult(success=True, status_code=getattr(response, "status_code", 201))


def get_push_notifier() -> PushNotifier:
    """Dependency: notifier built from settings."""
    return PushNotifier()
