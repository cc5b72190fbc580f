"""
Notification service for alert push messages
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from app.core.config import settings

logger = logging.getLogger(__name__)

class PushNotificationService:
    """Sends push notifications through Firebase Cloud Messaging"""

    def __init__(self):
        self.enabled = settings.FCM_ENABLED
        self.fcm_config = {
            "url": settings.FCM_URL,
            "server_key": settings.FCM_SERVER_KEY,
            "timeout": settings.FCM_TIMEOUT_SECONDS,
        }
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info("Notification service initialized")

    async def notify(self, title: str, body: str, token: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """
        Send one push message to a device token

        Args:
            title: Notification title
            body: Notification body
            token: Destination device token
            data: Optional data payload delivered with the notification

        Returns:
            True if sent successfully, False otherwise
        """
        if not token:
            logger.warning(f"Skipping notification without destination token: {title}")
            return False

        logger.info(f"ALERT: {title} - {body}")
        if not self.enabled:
            return True

        if not self.fcm_config["server_key"]:
            logger.warning("Push notifications not configured")
            return False

        message = {
            "to": token,
            "notification": {"title": title, "body": body},
            "data": data or {},
        }
        headers = {
            "Authorization": f"key={self.fcm_config['server_key']}",
            "Content-Type": "application/json",
        }
        try:
            session = await self._get_session()
            timeout = aiohttp.ClientTimeout(total=self.fcm_config["timeout"])
            async with session.post(self.fcm_config["url"], json=message, headers=headers, timeout=timeout) as response:
                if response.status >= 400:
                    logger.error(f"Push notification rejected with status {response.status}: {title}")
                    return False
                result = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Error sending push notification: {e}")
            return False

        failures = int((result or {}).get("failure", 0) or 0)
        if failures:
            logger.error(f"Push notification failed for {title}: {result.get('results')}")
            return False

        logger.info(f"Push notification sent successfully: {title}")
        return True

    def is_enabled(self) -> bool:
        """Check if push delivery is enabled and configured"""
        return bool(self.enabled and self.fcm_config["server_key"])

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session
