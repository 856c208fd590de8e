"""
Persistent store abstraction.

WHAT: The only durable-state interface the engines depend on
WHY: Keep deal/proof logic independent of a concrete database client
HOW: Abstract base class; every status change is one atomic conditional update
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..models.agent import Agent, WebhookSubscription
from ..models.deal import Deal, DealMessage, DealStatus
from ..models.pricing import PricingHistoryEntry
from ..models.proof import Proof, ProofStatus


class StatusConflict(Exception):
    """Conditional update lost: the record is no longer in an expected status."""

    def __init__(self, record_id: str, current_status: str):
        super().__init__(f"{record_id} is in '{current_status}' status")
        self.record_id = record_id
        self.current_status = current_status


class Store(ABC):
    """
    Durable keyed store.

    Transition methods compare-and-swap on the current status: the update only
    applies when the stored status is one of the expected values, otherwise
    StatusConflict is raised with the status actually found. Nothing is
    persisted when a transition fails.
    """

    # ========== Agents ==========

    @abstractmethod
    def upsert_agent(self, agent: Agent) -> Agent:
        """Register an agent, or refresh name/contact/capabilities and last_seen."""

    @abstractmethod
    def get_agent(self, agent_id: str) -> Optional[Agent]:
        ...

    @abstractmethod
    def list_agents(self, capability: Optional[str] = None) -> List[Agent]:
        """List agents, keeping those with a capability containing the substring."""

    # ========== Deals ==========

    @abstractmethod
    def create_deal(self, deal: Deal, messages: List[DealMessage]) -> Deal:
        """Insert a deal in its initial status together with its opening transcript, all or nothing."""

    @abstractmethod
    def get_deal(self, deal_id: str) -> Optional[Deal]:
        ...

    @abstractmethod
    def get_deal_messages(self, deal_id: str) -> List[DealMessage]:
        """Transcript in insertion order."""

    @abstractmethod
    def list_deals(
        self,
        agent_id: Optional[str] = None,
        status: Optional[DealStatus] = None,
        limit: int = 50,
    ) -> List[Deal]:
        """Newest first; agent_id matches proposer or target."""

    @abstractmethod
    def transition_deal(
        self,
        deal_id: str,
        from_statuses: Iterable[DealStatus],
        to_status: Optional[DealStatus],
        message: DealMessage,
        now: datetime,
        terms_update: Optional[Dict[str, Any]] = None,
    ) -> Deal:
        """
        Atomically move a deal and append one transcript entry.

        to_status=None keeps the status (a plain message) but still requires the
        current status to be in from_statuses.

        Raises:
            DealNotFoundException: unknown deal_id
            StatusConflict: current status not in from_statuses
        """

    @abstractmethod
    def list_stale_deals(self, statuses: Iterable[DealStatus], updated_before: datetime) -> List[Deal]:
        ...

    # ========== Proofs ==========

    @abstractmethod
    def create_proof(self, proof: Proof) -> Proof:
        ...

    @abstractmethod
    def get_proof(self, proof_id: str) -> Optional[Proof]:
        ...

    @abstractmethod
    def list_proofs(
        self,
        deal_id: Optional[str] = None,
        request_id: Optional[str] = None,
        status: Optional[ProofStatus] = None,
    ) -> List[Proof]:
        """Newest first."""

    @abstractmethod
    def transition_proof(
        self,
        proof_id: str,
        from_status: ProofStatus,
        changes: Dict[str, Any],
        now: datetime,
    ) -> Proof:
        """
        Atomically apply field changes when the proof is still in from_status.

        plan_hash is never writable.

        Raises:
            ProofNotFoundException: unknown proof_id
            StatusConflict: current status differs from from_status
        """

    # ========== Pricing history ==========

    @abstractmethod
    def add_pricing_history(self, entry: PricingHistoryEntry) -> PricingHistoryEntry:
        ...

    @abstractmethod
    def list_pricing_history(
        self,
        service: Optional[str] = None,
        agent_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[PricingHistoryEntry]:
        """Entries created strictly after `since`, oldest first."""

    # ========== Webhooks ==========

    @abstractmethod
    def create_webhook(self, webhook: WebhookSubscription) -> WebhookSubscription:
        ...

    @abstractmethod
    def list_webhooks(self, agent_id: Optional[str] = None) -> List[WebhookSubscription]:
        ...

    @abstractmethod
    def get_webhooks_for_event(self, event: str) -> List[WebhookSubscription]:
        """Active subscriptions that include the event."""

    @abstractmethod
    def delete_webhook(self, webhook_id: str) -> bool:
        ...


PROTECTED_PROOF_FIELDS = frozenset({"id", "plan_hash", "operator_id", "created_at"})


def check_proof_changes(changes: Dict[str, Any]) -> None:
    """Reject writes to fields fixed at commit time."""
    forbidden = PROTECTED_PROOF_FIELDS.intersection(changes)
    if forbidden:
        raise ValueError(f"Proof fields are immutable: {', '.join(sorted(forbidden))}")
