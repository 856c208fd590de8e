"""
Agent registry and webhook subscriptions.

WHAT: Register/discover agents and manage their webhook subscriptions
WHY: Deals resolve counterpart contact details; subscribers receive events
HOW: Thin validation layer over the store
"""

import secrets
import string
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..models.agent import WEBHOOK_EVENTS, Agent, WebhookSubscription
from ..store.base import Store
from ..utils.exceptions import AgentNotFoundException, ValidationException, WebhookNotFoundException
from ..utils.logger import get_logger
from ..utils.timeutil import epoch_ms, utcnow

logger = get_logger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


class AgentRegistry:
    """Agent discovery plus webhook subscription management."""

    def __init__(self, store: Store):
        self.store = store

    def register_agent(
        self,
        agent_id: str,
        name: str,
        description: str = "",
        capabilities: Optional[List[str]] = None,
        contact: Optional[Dict[str, Any]] = None,
    ) -> Agent:
        """Create an agent, or refresh an existing one (registered_at is kept)."""
        errors = [
            {"field": field, "error": "required"}
            for field, value in (("id", agent_id), ("name", name))
            if not value
        ]
        if errors:
            raise ValidationException("id and name are required to register an agent", field_errors=errors)

        now = utcnow()
        agent = self.store.upsert_agent(Agent(
            id=agent_id,
            name=name,
            description=description or "",
            capabilities=capabilities or [],
            contact=contact or {},
            registered_at=now,
            last_seen=now,
        ))
        logger.info(f"Agent registered: {agent.id} ({len(agent.capabilities)} capabilities)")
        return agent

    def get_agent(self, agent_id: str) -> Agent:
        agent = self.store.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundException(agent_id)
        return agent

    def list_agents(self, capability: Optional[str] = None) -> List[Agent]:
        return self.store.list_agents(capability=capability)

    # ========== Webhooks ==========

    def subscribe(
        self,
        agent_id: str,
        url: str,
        events: Optional[List[str]] = None,
        secret: Optional[str] = None,
    ) -> WebhookSubscription:
        """
        Register a webhook; events default to every known event.

        Raises:
            ValidationException: missing agent_id, non-https url, or unknown events
        """
        if not agent_id:
            raise ValidationException(
                "agent_id is required",
                field_errors=[{"field": "agent_id", "error": "required"}]
            )
        parsed = urlparse(url or "")
        if parsed.scheme != "https" or not parsed.netloc:
            raise ValidationException(
                "Webhook URL must be an absolute HTTPS URL",
                field_errors=[{"field": "url", "error": "must use https"}]
            )

        selected = list(events) if events else list(WEBHOOK_EVENTS)
        invalid = [e for e in selected if e not in WEBHOOK_EVENTS]
        if invalid:
            raise ValidationException(
                f"Invalid events: {', '.join(invalid)}",
                field_errors=[{"field": "events", "error": f"valid events are {', '.join(WEBHOOK_EVENTS)}"}]
            )

        now = utcnow()
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
        webhook = self.store.create_webhook(WebhookSubscription(
            id=f"wh_{epoch_ms(now)}_{suffix}",
            agent_id=agent_id,
            url=url,
            events=selected,
            secret=secret or None,
            created_at=now,
        ))
        logger.info(f"Webhook {webhook.id} registered for {agent_id}: {', '.join(selected)}")
        return webhook

    def list_webhooks(self, agent_id: Optional[str] = None) -> List[WebhookSubscription]:
        return self.store.list_webhooks(agent_id=agent_id)

    def unsubscribe(self, webhook_id: str) -> None:
        if not self.store.delete_webhook(webhook_id):
            raise WebhookNotFoundException(webhook_id)
        logger.info(f"Webhook deleted: {webhook_id}")
