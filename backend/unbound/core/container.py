"""
Service wiring.

WHAT: One shared set of engines over one store
WHY: Endpoints need the same store, oracle and dispatcher instances
HOW: Lazily built singleton exposed through get_services(), which FastAPI
     injects with Depends (tests override it with an in-memory container)
"""

from dataclasses import dataclass
from typing import Optional

from ..services.agent_registry import AgentRegistry
from ..services.commitment_ledger import CommitmentLedger
from ..services.deal_engine import DealEngine
from ..services.pricing_oracle import PricingOracle
from ..services.webhook_dispatcher import WebhookDispatcher
from ..store.base import Store


@dataclass
class Services:
    store: Store
    oracle: PricingOracle
    dispatcher: WebhookDispatcher
    deals: DealEngine
    proofs: CommitmentLedger
    registry: AgentRegistry


def build_services(store: Store, dispatcher: Optional[WebhookDispatcher] = None) -> Services:
    oracle = PricingOracle(store)
    dispatcher = dispatcher or WebhookDispatcher(store)
    return Services(
        store=store,
        oracle=oracle,
        dispatcher=dispatcher,
        deals=DealEngine(store, oracle, dispatcher),
        proofs=CommitmentLedger(store, dispatcher),
        registry=AgentRegistry(store),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Shared services over the SQL store."""
    global _services
    if _services is None:
        from ..store.sql import SqlStore
        _services = build_services(SqlStore())
    return _services
