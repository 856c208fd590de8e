"""
In-process store.

WHAT: Store implementation over plain dicts
WHY: Fast isolated engine tests and single-process demos
HOW: A single lock makes each call (including compare-and-swap) atomic;
     records are deep-copied in and out so callers never share state
"""

import itertools
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .base import Store, StatusConflict, check_proof_changes
from ..models.agent import Agent, WebhookSubscription
from ..models.deal import Deal, DealMessage, DealStatus
from ..models.pricing import PricingHistoryEntry
from ..models.proof import Proof, ProofStatus
from ..utils.exceptions import DealNotFoundException, ProofNotFoundException


class MemoryStore(Store):
    """Dict-backed store guarded by one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._agents: Dict[str, Agent] = {}
        self._deals: Dict[str, Deal] = {}
        self._messages: Dict[str, List[DealMessage]] = {}
        self._proofs: Dict[str, Proof] = {}
        self._history: List[PricingHistoryEntry] = []
        self._webhooks: Dict[str, WebhookSubscription] = {}
        self._ids = itertools.count(1)

    # ========== Agents ==========

    def upsert_agent(self, agent: Agent) -> Agent:
        with self._lock:
            existing = self._agents.get(agent.id)
            if existing is not None:
                agent = agent.model_copy(update={"registered_at": existing.registered_at})
            self._agents[agent.id] = agent.model_copy(deep=True)
            return agent.model_copy(deep=True)

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        with self._lock:
            agent = self._agents.get(agent_id)
            return agent.model_copy(deep=True) if agent else None

    def list_agents(self, capability: Optional[str] = None) -> List[Agent]:
        with self._lock:
            agents = sorted(self._agents.values(), key=lambda a: a.last_seen, reverse=True)
            if capability:
                needle = capability.lower()
                agents = [a for a in agents if any(needle in c.lower() for c in a.capabilities)]
            return [a.model_copy(deep=True) for a in agents]

    # ========== Deals ==========

    def create_deal(self, deal: Deal, messages: List[DealMessage]) -> Deal:
        with self._lock:
            if deal.id in self._deals:
                raise ValueError(f"Duplicate deal id: {deal.id}")
            self._deals[deal.id] = deal.model_copy(deep=True)
            self._messages[deal.id] = [m.model_copy(update={"id": next(self._ids)}, deep=True) for m in messages]
            return deal.model_copy(deep=True)

    def get_deal(self, deal_id: str) -> Optional[Deal]:
        with self._lock:
            deal = self._deals.get(deal_id)
            return deal.model_copy(deep=True) if deal else None

    def get_deal_messages(self, deal_id: str) -> List[DealMessage]:
        with self._lock:
            return [m.model_copy(deep=True) for m in self._messages.get(deal_id, [])]

    def list_deals(
        self,
        agent_id: Optional[str] = None,
        status: Optional[DealStatus] = None,
        limit: int = 50,
    ) -> List[Deal]:
        with self._lock:
            deals = [
                d for d in self._deals.values()
                if (not agent_id or agent_id in (d.proposer_id, d.target_id))
                and (not status or d.status == status)
            ]
            deals.sort(key=lambda d: d.created_at, reverse=True)
            return [d.model_copy(deep=True) for d in deals[:limit]]

    def transition_deal(
        self,
        deal_id: str,
        from_statuses: Iterable[DealStatus],
        to_status: Optional[DealStatus],
        message: DealMessage,
        now: datetime,
        terms_update: Optional[Dict[str, Any]] = None,
    ) -> Deal:
        with self._lock:
            deal = self._deals.get(deal_id)
            if deal is None:
                raise DealNotFoundException(deal_id)
            if deal.status not in set(from_statuses):
                raise StatusConflict(deal_id, deal.status.value)

            update: Dict[str, Any] = {"updated_at": now}
            if to_status is not None:
                update["status"] = to_status
            if terms_update:
                update["terms"] = {**deal.terms, **terms_update}
            deal = deal.model_copy(update=update, deep=True)
            self._deals[deal_id] = deal
            self._messages[deal_id].append(
                message.model_copy(update={"id": next(self._ids)}, deep=True)
            )
            return deal.model_copy(deep=True)

    def list_stale_deals(self, statuses: Iterable[DealStatus], updated_before: datetime) -> List[Deal]:
        wanted = set(statuses)
        with self._lock:
            deals = [
                d for d in self._deals.values()
                if d.status in wanted and d.updated_at < updated_before
            ]
            deals.sort(key=lambda d: d.updated_at)
            return [d.model_copy(deep=True) for d in deals]

    # ========== Proofs ==========

    def create_proof(self, proof: Proof) -> Proof:
        with self._lock:
            if proof.id in self._proofs:
                raise ValueError(f"Duplicate proof id: {proof.id}")
            self._proofs[proof.id] = proof.model_copy(deep=True)
            return proof.model_copy(deep=True)

    def get_proof(self, proof_id: str) -> Optional[Proof]:
        with self._lock:
            proof = self._proofs.get(proof_id)
            return proof.model_copy(deep=True) if proof else None

    def list_proofs(
        self,
        deal_id: Optional[str] = None,
        request_id: Optional[str] = None,
        status: Optional[ProofStatus] = None,
    ) -> List[Proof]:
        with self._lock:
            proofs = [
                p for p in self._proofs.values()
                if (not deal_id or p.deal_id == deal_id)
                and (not request_id or p.request_id == request_id)
                and (not status or p.status == status)
            ]
            proofs.sort(key=lambda p: p.created_at, reverse=True)
            return [p.model_copy(deep=True) for p in proofs]

    def transition_proof(
        self,
        proof_id: str,
        from_status: ProofStatus,
        changes: Dict[str, Any],
        now: datetime,
    ) -> Proof:
        check_proof_changes(changes)
        with self._lock:
            proof = self._proofs.get(proof_id)
            if proof is None:
                raise ProofNotFoundException(proof_id)
            if proof.status != from_status:
                raise StatusConflict(proof_id, proof.status.value)

            # Validate through the model so JSON-shaped values become typed fields
            data = proof.model_dump()
            data.update(changes)
            data["updated_at"] = now
            proof = Proof.model_validate(data)
            self._proofs[proof_id] = proof
            return proof.model_copy(deep=True)

    # ========== Pricing history ==========

    def add_pricing_history(self, entry: PricingHistoryEntry) -> PricingHistoryEntry:
        with self._lock:
            entry = entry.model_copy(update={"id": next(self._ids)}, deep=True)
            self._history.append(entry)
            return entry.model_copy(deep=True)

    def list_pricing_history(
        self,
        service: Optional[str] = None,
        agent_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[PricingHistoryEntry]:
        with self._lock:
            entries = [
                e for e in self._history
                if (not service or e.service == service)
                and (not agent_id or e.agent_id == agent_id)
                and (since is None or e.created_at > since)
            ]
            entries.sort(key=lambda e: (e.created_at, e.id))
            return [e.model_copy(deep=True) for e in entries]

    # ========== Webhooks ==========

    def create_webhook(self, webhook: WebhookSubscription) -> WebhookSubscription:
        with self._lock:
            self._webhooks[webhook.id] = webhook.model_copy(deep=True)
            return webhook.model_copy(deep=True)

    def list_webhooks(self, agent_id: Optional[str] = None) -> List[WebhookSubscription]:
        with self._lock:
            return [
                w.model_copy(deep=True) for w in self._webhooks.values()
                if not agent_id or w.agent_id == agent_id
            ]

    def get_webhooks_for_event(self, event: str) -> List[WebhookSubscription]:
        with self._lock:
            return [
                w.model_copy(deep=True) for w in self._webhooks.values()
                if w.active and event in w.events
            ]

    def delete_webhook(self, webhook_id: str) -> bool:
        with self._lock:
            return self._webhooks.pop(webhook_id, None) is not None
