"""
Webhook notification sink: POSTs the outbound transfer record as JSON.
"""
import asyncio
import logging
from typing import Iterable, List, Optional

import aiohttp

from core.models import TransferNotification

logger = logging.getLogger(__name__)


class WebhookSink:
    """Posts every delivered transfer to each configured URL."""

    def __init__(self, urls: Iterable[str], timeout: float = 5.0):
        self.urls: List[str] = [u for u in urls if u]
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def deliver(self, notification: TransferNotification):
        """Send transfer record to all webhook endpoints."""
        payload = notification.to_message()
        for url in self.urls:
            try:
                async with self._get_session().post(
                    url, json=payload, timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status >= 400:
                        logger.warning(f"Webhook {url} -> HTTP {response.status}")
                    else:
                        logger.debug(f"Webhook {url} -> HTTP {response.status}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Webhook {url} failed: {e!r}")

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
