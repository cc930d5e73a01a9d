"""
Notification service for recipient lifecycle events

Notifications are fire-and-forget: they run as background tasks after a
transition has committed and never affect its outcome.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx

from ..config import settings
from ..models.recipient import Enrollment

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for delivering distribution and rejection notices"""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.timeout = timeout or settings.notification_timeout_seconds
        self._tasks: Set[asyncio.Task] = set()
        self.client: Optional[httpx.AsyncClient] = None

    def notify(self, event: str, enrollment: Enrollment) -> Optional[asyncio.Task]:
        """Schedule delivery of a lifecycle event without waiting for it"""
        payload = self._build_payload(event, enrollment)
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(payload))
        except RuntimeError:
            logger.warning(f"No running event loop, dropping {event} notification for {enrollment.id}")
            return None

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    def _build_payload(event: str, enrollment: Enrollment) -> Dict[str, Any]:
        return {
            "event": event,
            "enrollment_id": enrollment.id,
            "program_id": enrollment.program_id,
            "individual_id": enrollment.individual_id,
            "state": enrollment.state,
            "granted_amount": enrollment.granted_amount,
            "remark": enrollment.remark,
            "proof_reference": enrollment.proof_reference
        }

    async def _deliver(self, payload: Dict[str, Any]) -> bool:
        logger.info(
            f"Notification {payload['event']}: enrollment {payload['enrollment_id']} "
            f"(program {payload['program_id']}, individual {payload['individual_id']})"
        )
        if not self.webhook_url:
            return True

        try:
            if self.client is None:
                self.client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
            response = await self.client.post(self.webhook_url, json=payload)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Notification webhook failed for {payload['enrollment_id']}: {e}")
            return False

    async def drain(self):
        """Wait for in-flight notifications"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self):
        """Finish pending deliveries and close the HTTP client"""
        await self.drain()
        if self.client is not None:
            await self.client.aclose()
            self.client = None


# Global notification service instance
notification_service = NotificationService()
