"""
Deal endpoints.

WHAT: Propose, act on, complete, expire and query deals
WHY: HTTP surface over the deal engine
HOW: Thin FastAPI handlers; business errors propagate to the central handlers
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ....core.container import Services, get_services
from ....models.api_schemas import (
    CompleteDealRequest,
    DealActionRequest,
    DealDetailResponse,
    DealListResponse,
    DealResponse,
    ExpireDealsResponse,
    ProposeDealRequest,
)

router = APIRouter()


@router.post("/deals", response_model=DealResponse, status_code=status.HTTP_201_CREATED)
async def propose_deal(request: ProposeDealRequest, services: Services = Depends(get_services)):
    """
    Propose a deal.

    WHAT: Open a deal with a priced suggestion
    WHY: Entry point of every negotiation
    HOW: DealEngine.propose_deal; auto-accepts when max_price_usdc covers the suggestion
    """
    result = services.deals.propose_deal(
        proposer_id=request.agent_id,
        service=request.service,
        terms=request.terms,
        target_id=request.target_id,
    )
    return DealResponse(
        deal=result.deal,
        message=result.message,
        auto_accepted=result.auto_accepted,
        payment=result.payment,
    )


@router.post("/deals/expire", response_model=ExpireDealsResponse)
async def expire_deals(services: Services = Depends(get_services)):
    """Sweep proposed/countered deals idle past the expiry window."""
    expired = services.deals.expire_stale_deals()
    return ExpireDealsResponse(expired=[d.id for d in expired], count=len(expired))


@router.post("/deals/{deal_id}/actions", response_model=DealResponse)
async def act_on_deal(deal_id: str, request: DealActionRequest, services: Services = Depends(get_services)):
    """
    Act on a deal.

    Raises:
        InvalidActionException, MissingCounterPriceException (400)
        DealNotFoundException (404)
        DealClosedException, InvalidTransitionException (409)
    """
    result = services.deals.act_on_deal(
        deal_id=deal_id,
        action=request.action,
        agent_id=request.agent_id,
        payload=request.to_payload(),
    )
    return DealResponse(deal=result.deal, message=result.message, payment=result.payment)


@router.post("/deals/{deal_id}/complete", response_model=DealResponse)
async def complete_deal(
    deal_id: str,
    request: Optional[CompleteDealRequest] = None,
    services: Services = Depends(get_services),
):
    result = services.deals.complete_deal(deal_id, agent_id=request.agent_id if request else None)
    return DealResponse(deal=result.deal, message=result.message)


@router.get("/deals/{deal_id}", response_model=DealDetailResponse)
async def get_deal(deal_id: str, services: Services = Depends(get_services)):
    view = services.deals.get_deal(deal_id)
    return DealDetailResponse(
        deal=view.deal,
        messages=view.messages,
        next_actions=view.next_actions,
        payment=view.payment,
    )


@router.get("/deals", response_model=DealListResponse)
async def list_deals(
    agent_id: Optional[str] = None,
    deal_status: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    services: Services = Depends(get_services),
):
    deals = services.deals.list_deals(agent_id=agent_id, status=deal_status, limit=limit)
    return DealListResponse(deals=deals, count=len(deals))
