"""
Deal domain models.

WHAT: Deal, transcript entry, status/action vocabularies and per-service terms
WHY: Typed values crossing the engine/store boundary instead of free-form dicts
HOW: Pydantic v2 models; terms are tagged by service with an open extension
"""

from datetime import datetime
from typing import Any, Dict, Optional, Type
import enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..utils.exceptions import ValidationException


class DealStatus(str, enum.Enum):
    """Deal status values."""
    PROPOSED = "proposed"
    COUNTERED = "countered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    COMPLETED = "completed"


TERMINAL_DEAL_STATUSES = frozenset({DealStatus.REJECTED, DealStatus.COMPLETED})
OPEN_DEAL_STATUSES = frozenset({DealStatus.PROPOSED, DealStatus.COUNTERED})


class DealAction(str, enum.Enum):
    """Transcript action values."""
    PROPOSE = "propose"
    COUNTER = "counter"
    ACCEPT = "accept"
    REJECT = "reject"
    MESSAGE = "message"


# ========== Per-service terms ==========

class ServiceTerms(BaseModel):
    """Common terms; unknown keys are kept as the open extension."""

    model_config = ConfigDict(extra="allow")

    max_price_usdc: Optional[float] = Field(
        default=None, ge=0, description="Agent-side maximum price; triggers auto-accept when it covers the suggestion"
    )


class BankingTerms(ServiceTerms):
    type: str = "ach_transfer"
    amount: float = Field(default=1000.0, ge=0)
    currency: str = "USD"


class PhysicalTerms(ServiceTerms):
    estimated_duration: float = Field(default=2.0, gt=0, description="Hours")


class EmploymentTerms(ServiceTerms):
    hours_per_month: float = Field(default=40.0, gt=0)


class ProxyTerms(ServiceTerms):
    proxy_type: Optional[str] = None


class BackupTerms(ServiceTerms):
    plan: str = "standard"


class CustomTerms(ServiceTerms):
    pass


TERMS_BY_SERVICE: Dict[str, Type[ServiceTerms]] = {
    "banking": BankingTerms,
    "physical": PhysicalTerms,
    "employment": EmploymentTerms,
    "proxy": ProxyTerms,
    "backup": BackupTerms,
}


def parse_terms(service: str, raw: Any) -> ServiceTerms:
    """
    Validate raw terms against the model for the service kind.

    Raises:
        ValidationException: terms are not a mapping or fail field validation
    """
    if not isinstance(raw, dict):
        raise ValidationException(
            "terms must be an object",
            field_errors=[{"field": "terms", "error": "expected an object"}]
        )
    model = TERMS_BY_SERVICE.get(service, CustomTerms)
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise ValidationException(
            f"Invalid terms for service '{service}'",
            field_errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
                for err in e.errors()
            ]
        ) from e


# ========== Deal records ==========

class Deal(BaseModel):
    """A negotiation over a priced service."""

    id: str
    proposer_id: str
    target_id: str
    service: str
    terms: Dict[str, Any]
    status: DealStatus
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DEAL_STATUSES

    @property
    def suggested_amount(self) -> Optional[float]:
        suggested = self.terms.get("suggested_price") or {}
        return suggested.get("amount")

    @property
    def agreed_price(self) -> Optional[float]:
        """Price owed once accepted: the agreed final price, else the suggestion, else the agent offer."""
        if self.terms.get("final_price") is not None:
            return self.terms["final_price"]
        amount = self.suggested_amount
        if amount is not None:
            return amount
        return self.terms.get("agent_proposed_price")


class DealMessage(BaseModel):
    """Immutable transcript entry."""

    id: Optional[int] = None
    deal_id: str
    from_agent: str
    action: DealAction
    content: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
