"""
Pydantic API schemas for the v1 endpoints.

WHAT: Request and response models for FastAPI
WHY: Type-safe validation and serialization at the HTTP boundary
HOW: Pydantic v2 models; domain models are embedded directly in responses
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .agent import Agent, WebhookSubscription
from .deal import Deal, DealMessage
from .pricing import PriceSuggestion, PricingInsights, ServicePricingSummary
from .proof import EvidenceItem, Proof


# ========== Deals ==========

class ProposeDealRequest(BaseModel):
    """Open a new deal."""
    agent_id: str = Field(..., min_length=1, description="Proposing agent")
    service: str = Field(..., min_length=1, description="Service kind (banking, physical, ...)")
    terms: Dict[str, Any] = Field(..., description="Service terms; may include max_price_usdc")
    target_id: Optional[str] = Field(default=None, description="Counterparty; defaults to the platform")


class CounterTerms(BaseModel):
    price_usdc: Optional[float] = None
    justification: Optional[str] = None


class DealActionRequest(BaseModel):
    """Accept, counter, reject or message on an existing deal."""
    agent_id: str = Field(..., min_length=1)
    action: str = Field(..., description="accept | counter | reject | message")
    message: Optional[str] = Field(default=None, max_length=4000)
    counter_price: Optional[float] = Field(default=None, description="Required for counter")
    counter_terms: Optional[CounterTerms] = Field(default=None, description="Alternative counter price container")
    justification: Optional[str] = None
    reason: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        counter_price = self.counter_price
        justification = self.justification
        if self.counter_terms is not None:
            if counter_price is None:
                counter_price = self.counter_terms.price_usdc
            justification = justification or self.counter_terms.justification
        return {
            "message": self.message,
            "counter_price": counter_price,
            "justification": justification,
            "reason": self.reason,
        }


class CompleteDealRequest(BaseModel):
    agent_id: Optional[str] = None


class DealResponse(BaseModel):
    deal: Deal
    message: Optional[DealMessage] = None
    auto_accepted: bool = False
    payment: Optional[Dict[str, Any]] = None


class DealDetailResponse(BaseModel):
    deal: Deal
    messages: List[DealMessage]
    next_actions: List[str]
    payment: Optional[Dict[str, Any]] = None


class DealListResponse(BaseModel):
    deals: List[Deal]
    count: int


class ExpireDealsResponse(BaseModel):
    expired: List[str]
    count: int


# ========== Proofs ==========

class CommitProofRequest(BaseModel):
    operator_id: str = Field(..., min_length=1)
    plan_hash: str = Field(..., description="SHA-256 hex digest of the plan text")
    deal_id: Optional[str] = None
    request_id: Optional[str] = None
    deadline: Optional[datetime] = Field(default=None, description="Defaults to 72h from now")


class SubmitEvidenceRequest(BaseModel):
    plan_text: str = Field(..., min_length=1)
    evidence: List[EvidenceItem] = Field(..., min_length=1)


class VerifyProofRequest(BaseModel):
    verified_by: Optional[str] = None


class ChallengeProofRequest(BaseModel):
    challenger: Optional[str] = None
    reason: Optional[str] = None


class ProofListResponse(BaseModel):
    proofs: List[Proof]
    count: int


class ProofSweepResponse(BaseModel):
    expired: List[str]
    verified: List[str]


# ========== Pricing ==========

class PriceEstimateResponse(BaseModel):
    service: str
    suggested_price: PriceSuggestion
    currency: str


class PricingInsightsResponse(BaseModel):
    service: str
    has_data: bool
    insights: Optional[PricingInsights] = None


class SuggestCounterRequest(BaseModel):
    service: str = Field(..., min_length=1)
    agent_id: str = Field(..., min_length=1)
    our_price: float
    their_counter: float


class PricingDashboardResponse(BaseModel):
    services: List[ServicePricingSummary]


# ========== Agents & webhooks ==========

class RegisterAgentRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    capabilities: List[str] = Field(default_factory=list)
    contact: Dict[str, Any] = Field(default_factory=dict)


class AgentListResponse(BaseModel):
    agents: List[Agent]
    count: int


class CreateWebhookRequest(BaseModel):
    agent_id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    events: Optional[List[str]] = Field(default=None, description="Defaults to every event")
    secret: Optional[str] = None


class WebhookResponse(BaseModel):
    """Subscription view; the secret is never echoed back."""
    id: str
    agent_id: str
    url: str
    events: List[str]
    active: bool
    signed: bool
    created_at: datetime

    @classmethod
    def from_subscription(cls, webhook: WebhookSubscription) -> "WebhookResponse":
        return cls(
            id=webhook.id,
            agent_id=webhook.agent_id,
            url=webhook.url,
            events=webhook.events,
            active=webhook.active,
            signed=bool(webhook.secret),
            created_at=webhook.created_at,
        )


class WebhookListResponse(BaseModel):
    webhooks: List[WebhookResponse]
    count: int

