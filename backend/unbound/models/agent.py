"""
Agent registry and webhook subscription models.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


WEBHOOK_EVENTS = [
    "deal.proposed",
    "deal.accepted",
    "deal.countered",
    "deal.rejected",
    "deal.message",
    "deal.completed",
    "deal.expired",
    "proof.committed",
    "proof.submitted",
    "proof.verified",
    "proof.challenged",
    "proof.expired",
]


class Agent(BaseModel):
    id: str
    name: str
    description: str = ""
    capabilities: List[str] = Field(default_factory=list)
    contact: Dict[str, Any] = Field(default_factory=dict)
    registered_at: datetime
    last_seen: datetime


class WebhookSubscription(BaseModel):
    id: str
    agent_id: str
    url: str
    events: List[str]
    secret: Optional[str] = None
    active: bool = True
    created_at: datetime
