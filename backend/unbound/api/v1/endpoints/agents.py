"""
Agent registry and webhook subscription endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from ....core.container import Services, get_services
from ....models.agent import Agent
from ....models.api_schemas import (
    AgentListResponse,
    CreateWebhookRequest,
    RegisterAgentRequest,
    WebhookListResponse,
    WebhookResponse,
)

router = APIRouter()


# ========== Agents ==========

@router.post("/agents", response_model=Agent, status_code=status.HTTP_201_CREATED)
async def register_agent(request: RegisterAgentRequest, services: Services = Depends(get_services)):
    return services.registry.register_agent(
        agent_id=request.id,
        name=request.name,
        description=request.description,
        capabilities=request.capabilities,
        contact=request.contact,
    )


@router.get("/agents", response_model=AgentListResponse)
async def list_agents(capability: Optional[str] = None, services: Services = Depends(get_services)):
    """List agents, optionally keeping those with a matching capability substring."""
    agents = services.registry.list_agents(capability=capability)
    return AgentListResponse(agents=agents, count=len(agents))


@router.get("/agents/{agent_id}", response_model=Agent)
async def get_agent(agent_id: str, services: Services = Depends(get_services)):
    return services.registry.get_agent(agent_id)


# ========== Webhooks ==========

@router.post("/webhooks", response_model=WebhookResponse, status_code=status.HTTP_201_CREATED)
async def create_webhook(request: CreateWebhookRequest, services: Services = Depends(get_services)):
    """
    Subscribe to events.

    WHAT: Register an https endpoint for deal/proof events
    WHY: Agents get notified instead of polling
    HOW: Deliveries are POSTed as JSON and signed with HMAC-SHA256 when a secret is given
    """
    webhook = services.registry.subscribe(
        agent_id=request.agent_id,
        url=request.url,
        events=request.events,
        secret=request.secret,
    )
    return WebhookResponse.from_subscription(webhook)


@router.get("/webhooks", response_model=WebhookListResponse)
async def list_webhooks(agent_id: Optional[str] = None, services: Services = Depends(get_services)):
    webhooks = [WebhookResponse.from_subscription(w) for w in services.registry.list_webhooks(agent_id)]
    return WebhookListResponse(webhooks=webhooks, count=len(webhooks))


@router.delete("/webhooks/{webhook_id}")
async def delete_webhook(webhook_id: str, services: Services = Depends(get_services)):
    services.registry.unsubscribe(webhook_id)
    return {"deleted": True, "webhook_id": webhook_id}
