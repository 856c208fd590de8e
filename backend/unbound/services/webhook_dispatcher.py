"""
Webhook dispatcher.

WHAT: Best-effort fan-out of event notifications to subscriber URLs
WHY: Agents learn about deal/proof changes without polling
HOW: httpx AsyncClient per fan-out, one bounded-timeout POST per subscriber,
     gathered with return_exceptions so one failure never touches another.
     dispatch() never blocks or raises: it schedules a detached task.

Delivery format:
    body    {"event", "timestamp", "data", "webhook_id"}
    headers X-Webhook-Event, X-Webhook-Timestamp and, when the subscription
            has a secret, X-Webhook-Signature: sha256=<hex HMAC of the body>
"""

import asyncio
import hashlib
import hmac
import json
import threading
from typing import Any, Dict, List, Optional, Set

import httpx

from ..core.config import settings
from ..models.agent import WebhookSubscription
from ..store.base import Store
from ..utils.logger import get_logger
from ..utils.timeutil import isoformat_z, utcnow

logger = get_logger(__name__)


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 signature header value for a webhook body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookDispatcher:
    """
    Asynchronous, best-effort webhook delivery.

    WHAT: dispatch(event, data) for the engines; deliver(event, data) for awaiting callers
    WHY: A notification failure must never affect the transition that caused it
    HOW: Detached asyncio task on the running loop, or a daemon thread when none runs
    """

    def __init__(
        self,
        store: Store,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.timeout = timeout if timeout is not None else settings.WEBHOOK_TIMEOUT_SECONDS
        self._transport = transport
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(self, event: str, data: Dict[str, Any]) -> None:
        """Schedule delivery and return immediately (fire-and-forget)."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self._deliver_safely(event, data))
            # Keep a reference so the task is not garbage-collected mid-flight
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            thread = threading.Thread(
                target=asyncio.run,
                args=(self._deliver_safely(event, data),),
                name=f"webhook-{event}",
                daemon=True,
            )
            thread.start()

    async def _deliver_safely(self, event: str, data: Dict[str, Any]) -> None:
        try:
            await self.deliver(event, data)
        except Exception as e:
            logger.warning(f"[webhook] dispatch of {event} failed: {e}")

    async def deliver(self, event: str, data: Dict[str, Any]) -> List[bool]:
        """
        Deliver an event to every subscriber and wait for all attempts.

        Returns:
            One success flag per subscriber, in subscription order
        """
        webhooks = self.store.get_webhooks_for_event(event)
        if not webhooks:
            return []

        timestamp = isoformat_z(utcnow())
        async with httpx.AsyncClient(transport=self._transport) as client:
            results = await asyncio.gather(
                *(self._post(client, wh, event, timestamp, data) for wh in webhooks),
                return_exceptions=True,
            )

        delivered = []
        for wh, result in zip(webhooks, results):
            if isinstance(result, BaseException):
                logger.warning(f"[webhook] {wh.id} -> {wh.url} failed: {result}")
                delivered.append(False)
            else:
                delivered.append(result)
        return delivered

    async def _post(
        self,
        client: httpx.AsyncClient,
        webhook: WebhookSubscription,
        event: str,
        timestamp: str,
        data: Dict[str, Any],
    ) -> bool:
        payload = {
            "event": event,
            "timestamp": timestamp,
            "data": data,
            "webhook_id": webhook.id,
        }
        body = json.dumps(payload, default=str).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "User-Agent": settings.WEBHOOK_USER_AGENT,
            "X-Webhook-Event": event,
            "X-Webhook-Timestamp": timestamp,
        }
        if webhook.secret:
            headers["X-Webhook-Signature"] = sign_payload(webhook.secret, body)

        response = await client.post(webhook.url, content=body, headers=headers, timeout=self.timeout)
        if response.is_success:
            return True
        logger.warning(f"[webhook] {webhook.id} -> {webhook.url} returned {response.status_code}")
        return False
