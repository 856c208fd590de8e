"""
Pricing endpoints.

WHAT: Price estimates and pricing intelligence
WHY: Agents can check a price before proposing; operators tune counters
HOW: FastAPI handlers around PricingOracle
"""

import json
from typing import Optional

from fastapi import APIRouter, Depends

from ....core.config import settings
from ....core.container import Services, get_services
from ....models.api_schemas import (
    PriceEstimateResponse,
    PricingDashboardResponse,
    PricingInsightsResponse,
    SuggestCounterRequest,
)
from ....models.pricing import AgentPricingProfile, CounterRecommendation
from ....utils.exceptions import ValidationException

router = APIRouter()


@router.get("/pricing/estimate", response_model=PriceEstimateResponse)
async def estimate_price(
    service: str,
    terms: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """
    Estimate the price of a service.

    Args:
        service: Service kind
        terms: JSON-encoded terms object (optional; table defaults apply)
    """
    parsed_terms = {}
    if terms:
        try:
            parsed_terms = json.loads(terms)
        except json.JSONDecodeError:
            raise ValidationException(
                "terms must be a JSON object",
                field_errors=[{"field": "terms", "error": "invalid JSON"}]
            )
    suggestion = services.oracle.suggest_price(service, parsed_terms)
    return PriceEstimateResponse(service=service, suggested_price=suggestion, currency=settings.PAYMENT_CURRENCY)


@router.get("/pricing/insights/{service}", response_model=PricingInsightsResponse)
async def pricing_insights(service: str, services: Services = Depends(get_services)):
    insights = services.oracle.get_pricing_insights(service)
    return PricingInsightsResponse(service=service, has_data=insights is not None, insights=insights)


@router.get("/pricing/agents/{agent_id}", response_model=AgentPricingProfile)
async def agent_pricing_profile(agent_id: str, services: Services = Depends(get_services)):
    return services.oracle.get_agent_pricing_profile(agent_id)


@router.get("/pricing/dashboard", response_model=PricingDashboardResponse)
async def pricing_dashboard(services: Services = Depends(get_services)):
    return PricingDashboardResponse(services=services.oracle.get_pricing_dashboard())


@router.post("/pricing/suggest-counter", response_model=CounterRecommendation)
async def suggest_counter(request: SuggestCounterRequest, services: Services = Depends(get_services)):
    return services.oracle.suggest_counter_response(
        service=request.service,
        agent_id=request.agent_id,
        our_price=request.our_price,
        their_counter=request.their_counter,
    )
