"""
Pricing domain models.

WHAT: Price suggestions, history entries and pricing intelligence results
WHY: Consistent typing between the oracle, the deal engine and the API
HOW: Pydantic v2 models
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
import enum

from pydantic import BaseModel, Field


class PricingOutcome(str, enum.Enum):
    """Outcome recorded for each priced negotiation step."""
    ACCEPTED = "accepted"
    COUNTERED = "countered"
    REJECTED = "rejected"


NegotiationStyle = Literal[
    "quick_decider", "aggressive_negotiator", "moderate_negotiator", "balanced", "unknown"
]
Confidence = Literal["high", "medium", "low"]


class PriceSuggestion(BaseModel):
    """Deterministic price for a service and its terms."""
    amount: float
    breakdown: str


class PricingHistoryEntry(BaseModel):
    id: Optional[int] = None
    service: str
    terms: Dict[str, Any] = Field(default_factory=dict)
    suggested_price: float
    final_price: Optional[float] = None
    agent_id: str
    outcome: PricingOutcome
    counter_price: Optional[float] = None
    created_at: datetime


class PricingInsights(BaseModel):
    """Aggregates over a service's recent history."""
    service: str
    sample_size: int
    base_price: float
    acceptance_rate: float
    avg_counter_percentage: float
    recommended_initial: float
    price_elasticity: float


class AgentPricingProfile(BaseModel):
    """How a counterparty has negotiated in the past."""
    agent_id: str
    is_new_agent: bool
    total_deals: int = 0
    acceptance_rate: float = 0.0
    avg_discount_requested: float = 0.0
    last_deal_at: Optional[datetime] = None
    services_used: List[str] = Field(default_factory=list)
    negotiation_style: NegotiationStyle = "unknown"


class CounterRecommendation(BaseModel):
    recommended_price: float
    reasoning: str
    confidence: Confidence


class ServicePricingSummary(BaseModel):
    """One dashboard row."""
    service: str
    total_negotiations: int
    accepted: int
    countered: int
    rejected: int
    acceptance_rate: float
    avg_suggested: float
    avg_final: Optional[float] = None
    avg_discount_pct: float
