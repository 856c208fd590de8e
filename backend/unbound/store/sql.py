"""
SQLAlchemy-backed store.

WHAT: Store implementation over the ORM tables in core.models
WHY: Durable state shared by every request
HOW: One transaction per call; transitions are UPDATE ... WHERE status IN (...)
     with a rowcount check, followed by the transcript insert in the same transaction
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .base import Store, StatusConflict, check_proof_changes
from ..core import models
from ..core.database import SessionLocal
from ..models.agent import Agent, WebhookSubscription
from ..models.deal import Deal, DealMessage, DealStatus
from ..models.pricing import PricingHistoryEntry
from ..models.proof import Proof, ProofStatus
from ..utils.exceptions import (
    BusinessException,
    DealNotFoundException,
    ProofNotFoundException,
    StorageException,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _agent_from_row(row: models.Agent) -> Agent:
    return Agent(
        id=row.id,
        name=row.name,
        description=row.description or "",
        capabilities=list(row.capabilities or []),
        contact=dict(row.contact or {}),
        registered_at=row.registered_at,
        last_seen=row.last_seen,
    )


def _deal_from_row(row: models.Deal) -> Deal:
    return Deal(
        id=row.id,
        proposer_id=row.proposer_id,
        target_id=row.target_id,
        service=row.service,
        terms=dict(row.terms or {}),
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _message_from_row(row: models.DealMessage) -> DealMessage:
    return DealMessage(
        id=row.id,
        deal_id=row.deal_id,
        from_agent=row.from_agent,
        action=row.action,
        content=dict(row.content or {}),
        created_at=row.created_at,
    )


def _proof_from_row(row: models.Proof) -> Proof:
    return Proof(
        id=row.id,
        deal_id=row.deal_id,
        request_id=row.request_id,
        operator_id=row.operator_id,
        status=row.status,
        plan_hash=row.plan_hash,
        plan_text=row.plan_text,
        evidence=row.evidence,
        evidence_hash=row.evidence_hash,
        deadline=row.deadline,
        challenge_window_ends=row.challenge_window_ends,
        challenges=list(row.challenges or []),
        verified_by=row.verified_by,
        verified_at=row.verified_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _history_from_row(row: models.PricingHistory) -> PricingHistoryEntry:
    return PricingHistoryEntry(
        id=row.id,
        service=row.service,
        terms=dict(row.terms or {}),
        suggested_price=row.suggested_price,
        final_price=row.final_price,
        agent_id=row.agent_id,
        outcome=row.outcome,
        counter_price=row.counter_price,
        created_at=row.created_at,
    )


def _webhook_from_row(row: models.Webhook) -> WebhookSubscription:
    return WebhookSubscription(
        id=row.id,
        agent_id=row.agent_id,
        url=row.url,
        events=list(row.events or []),
        secret=row.secret,
        active=row.active,
        created_at=row.created_at,
    )


def _message_row(message: DealMessage) -> models.DealMessage:
    return models.DealMessage(
        deal_id=message.deal_id,
        from_agent=message.from_agent,
        action=message.action,
        content=message.content,
        created_at=message.created_at,
    )


class SqlStore(Store):
    """
    Store over a SQLAlchemy session factory.

    WHAT: CRUD plus compare-and-swap transitions for deals and proofs
    WHY: Concurrent conflicting transitions must resolve with exactly one winner
    HOW: Conditional UPDATE and rowcount check inside a single transaction
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self, operation: str):
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except (BusinessException, StatusConflict, ValueError):
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Storage failure during {operation}: {e}", exc_info=True)
            raise StorageException(operation) from e
        finally:
            session.close()

    # ========== Agents ==========

    def upsert_agent(self, agent: Agent) -> Agent:
        with self._transaction("upsert_agent") as db:
            row = db.get(models.Agent, agent.id)
            if row is None:
                row = models.Agent(
                    id=agent.id,
                    registered_at=agent.registered_at,
                )
                db.add(row)
            row.name = agent.name
            row.description = agent.description
            row.capabilities = list(agent.capabilities)
            row.contact = dict(agent.contact)
            row.last_seen = agent.last_seen
            db.flush()
            return _agent_from_row(row)

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        with self._transaction("get_agent") as db:
            row = db.get(models.Agent, agent_id)
            return _agent_from_row(row) if row else None

    def list_agents(self, capability: Optional[str] = None) -> List[Agent]:
        with self._transaction("list_agents") as db:
            rows = db.query(models.Agent).order_by(models.Agent.last_seen.desc()).all()
            agents = [_agent_from_row(row) for row in rows]
        if capability:
            needle = capability.lower()
            agents = [a for a in agents if any(needle in c.lower() for c in a.capabilities)]
        return agents

    # ========== Deals ==========

    def create_deal(self, deal: Deal, messages: List[DealMessage]) -> Deal:
        with self._transaction("create_deal") as db:
            row = models.Deal(
                id=deal.id,
                proposer_id=deal.proposer_id,
                target_id=deal.target_id,
                service=deal.service,
                terms=deal.terms,
                status=deal.status,
                created_at=deal.created_at,
                updated_at=deal.updated_at,
            )
            db.add(row)
            db.flush()
            for message in messages:
                db.add(_message_row(message))
                db.flush()
            return _deal_from_row(row)

    def get_deal(self, deal_id: str) -> Optional[Deal]:
        with self._transaction("get_deal") as db:
            row = db.get(models.Deal, deal_id)
            return _deal_from_row(row) if row else None

    def get_deal_messages(self, deal_id: str) -> List[DealMessage]:
        with self._transaction("get_deal_messages") as db:
            rows = (
                db.query(models.DealMessage)
                .filter_by(deal_id=deal_id)
                .order_by(models.DealMessage.id.asc())
                .all()
            )
            return [_message_from_row(row) for row in rows]

    def list_deals(
        self,
        agent_id: Optional[str] = None,
        status: Optional[DealStatus] = None,
        limit: int = 50,
    ) -> List[Deal]:
        with self._transaction("list_deals") as db:
            query = db.query(models.Deal)
            if agent_id:
                query = query.filter(
                    or_(models.Deal.proposer_id == agent_id, models.Deal.target_id == agent_id)
                )
            if status:
                query = query.filter(models.Deal.status == status)
            rows = query.order_by(models.Deal.created_at.desc()).limit(limit).all()
            return [_deal_from_row(row) for row in rows]

    def transition_deal(
        self,
        deal_id: str,
        from_statuses: Iterable[DealStatus],
        to_status: Optional[DealStatus],
        message: DealMessage,
        now: datetime,
        terms_update: Optional[Dict[str, Any]] = None,
    ) -> Deal:
        values: Dict[str, Any] = {"updated_at": now}
        if to_status is not None:
            values["status"] = to_status

        with self._transaction("transition_deal") as db:
            result = db.execute(
                update(models.Deal)
                .where(models.Deal.id == deal_id, models.Deal.status.in_(list(from_statuses)))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = db.get(models.Deal, deal_id)
                if current is None:
                    raise DealNotFoundException(deal_id)
                raise StatusConflict(deal_id, current.status.value)

            # Row is write-locked by the UPDATE above; merge terms under that lock
            row = db.get(models.Deal, deal_id, populate_existing=True)
            if terms_update:
                row.terms = {**(row.terms or {}), **terms_update}
            db.add(_message_row(message))
            db.flush()
            return _deal_from_row(row)

    def list_stale_deals(self, statuses: Iterable[DealStatus], updated_before: datetime) -> List[Deal]:
        with self._transaction("list_stale_deals") as db:
            rows = (
                db.query(models.Deal)
                .filter(models.Deal.status.in_(list(statuses)), models.Deal.updated_at < updated_before)
                .order_by(models.Deal.updated_at.asc())
                .all()
            )
            return [_deal_from_row(row) for row in rows]

    # ========== Proofs ==========

    def create_proof(self, proof: Proof) -> Proof:
        with self._transaction("create_proof") as db:
            row = models.Proof(
                id=proof.id,
                deal_id=proof.deal_id,
                request_id=proof.request_id,
                operator_id=proof.operator_id,
                status=proof.status,
                plan_hash=proof.plan_hash,
                deadline=proof.deadline,
                challenges=[],
                created_at=proof.created_at,
                updated_at=proof.updated_at,
            )
            db.add(row)
            db.flush()
            return _proof_from_row(row)

    def get_proof(self, proof_id: str) -> Optional[Proof]:
        with self._transaction("get_proof") as db:
            row = db.get(models.Proof, proof_id)
            return _proof_from_row(row) if row else None

    def list_proofs(
        self,
        deal_id: Optional[str] = None,
        request_id: Optional[str] = None,
        status: Optional[ProofStatus] = None,
    ) -> List[Proof]:
        with self._transaction("list_proofs") as db:
            query = db.query(models.Proof)
            if deal_id:
                query = query.filter(models.Proof.deal_id == deal_id)
            if request_id:
                query = query.filter(models.Proof.request_id == request_id)
            if status:
                query = query.filter(models.Proof.status == status)
            rows = query.order_by(models.Proof.created_at.desc()).all()
            return [_proof_from_row(row) for row in rows]

    def transition_proof(
        self,
        proof_id: str,
        from_status: ProofStatus,
        changes: Dict[str, Any],
        now: datetime,
    ) -> Proof:
        check_proof_changes(changes)
        values = {**changes, "updated_at": now}

        with self._transaction("transition_proof") as db:
            result = db.execute(
                update(models.Proof)
                .where(models.Proof.id == proof_id, models.Proof.status == from_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = db.get(models.Proof, proof_id)
                if current is None:
                    raise ProofNotFoundException(proof_id)
                raise StatusConflict(proof_id, current.status.value)

            row = db.get(models.Proof, proof_id, populate_existing=True)
            return _proof_from_row(row)

    # ========== Pricing history ==========

    def add_pricing_history(self, entry: PricingHistoryEntry) -> PricingHistoryEntry:
        with self._transaction("add_pricing_history") as db:
            row = models.PricingHistory(
                service=entry.service,
                terms=entry.terms,
                suggested_price=entry.suggested_price,
                final_price=entry.final_price,
                agent_id=entry.agent_id,
                outcome=entry.outcome,
                counter_price=entry.counter_price,
                created_at=entry.created_at,
            )
            db.add(row)
            db.flush()
            return _history_from_row(row)

    def list_pricing_history(
        self,
        service: Optional[str] = None,
        agent_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[PricingHistoryEntry]:
        with self._transaction("list_pricing_history") as db:
            query = db.query(models.PricingHistory)
            if service:
                query = query.filter(models.PricingHistory.service == service)
            if agent_id:
                query = query.filter(models.PricingHistory.agent_id == agent_id)
            if since:
                query = query.filter(models.PricingHistory.created_at > since)
            rows = query.order_by(models.PricingHistory.created_at.asc(), models.PricingHistory.id.asc()).all()
            return [_history_from_row(row) for row in rows]

    # ========== Webhooks ==========

    def create_webhook(self, webhook: WebhookSubscription) -> WebhookSubscription:
        with self._transaction("create_webhook") as db:
            row = models.Webhook(
                id=webhook.id,
                agent_id=webhook.agent_id,
                url=webhook.url,
                events=list(webhook.events),
                secret=webhook.secret,
                active=webhook.active,
                created_at=webhook.created_at,
            )
            db.add(row)
            db.flush()
            return _webhook_from_row(row)

    def list_webhooks(self, agent_id: Optional[str] = None) -> List[WebhookSubscription]:
        with self._transaction("list_webhooks") as db:
            query = db.query(models.Webhook)
            if agent_id:
                query = query.filter(models.Webhook.agent_id == agent_id)
            rows = query.order_by(models.Webhook.created_at.asc()).all()
            return [_webhook_from_row(row) for row in rows]

    def get_webhooks_for_event(self, event: str) -> List[WebhookSubscription]:
        with self._transaction("get_webhooks_for_event") as db:
            rows = db.query(models.Webhook).filter(models.Webhook.active.is_(True)).all()
            return [_webhook_from_row(row) for row in rows if event in (row.events or [])]

    def delete_webhook(self, webhook_id: str) -> bool:
        with self._transaction("delete_webhook") as db:
            row = db.get(models.Webhook, webhook_id)
            if row is None:
                return False
            db.delete(row)
            return True
