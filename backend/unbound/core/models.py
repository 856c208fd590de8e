"""
ORM models for persistence.

WHAT: SQLAlchemy models for agents, deals, transcripts, proofs, pricing history, webhooks
WHY: Durable shared store behind every request
HOW: Declarative models with constraints and indexes; only unbound.store.sql touches them
"""

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text, JSON,
    ForeignKey, CheckConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from .database import Base
from ..models.deal import DealStatus, DealAction
from ..models.proof import ProofStatus
from ..models.pricing import PricingOutcome
from ..utils.timeutil import utcnow


class Agent(Base):
    """Registered agent with capabilities and contact metadata."""
    __tablename__ = "agents"

    id = Column(String(255), primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    capabilities = Column(JSON, nullable=False, default=list)
    contact = Column(JSON, nullable=False, default=dict)
    registered_at = Column(DateTime, nullable=False, default=utcnow)
    last_seen = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Agent(id={self.id}, name={self.name})>"


class Deal(Base):
    """
    Deal table - one negotiation between a proposer and the platform.

    WHAT: Current status and terms (including the computed suggested price)
    WHY: Status is the compare-and-swap key for every transition
    HOW: Indexed by status and proposer for listing
    """
    __tablename__ = "deals"

    id = Column(String(64), primary_key=True)
    proposer_id = Column(String(255), nullable=False)
    target_id = Column(String(255), nullable=False)
    service = Column(String(100), nullable=False)
    terms = Column(JSON, nullable=False)
    status = Column(SQLEnum(DealStatus), nullable=False, default=DealStatus.PROPOSED)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    messages = relationship(
        "DealMessage", back_populates="deal", order_by="DealMessage.id",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_deal_status", "status"),
        Index("idx_deal_proposer", "proposer_id"),
    )

    def __repr__(self):
        return f"<Deal(id={self.id}, service={self.service}, status={self.status})>"


class DealMessage(Base):
    """Append-only transcript entry; the autoincrement id is the history order."""
    __tablename__ = "deal_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    deal_id = Column(String(64), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False)
    from_agent = Column(String(255), nullable=False)
    action = Column(SQLEnum(DealAction), nullable=False)
    content = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    deal = relationship("Deal", back_populates="messages")

    __table_args__ = (
        Index("idx_deal_message_deal", "deal_id", "id"),
    )

    def __repr__(self):
        return f"<DealMessage(deal={self.deal_id}, action={self.action}, from={self.from_agent})>"


class Proof(Base):
    """
    Proof table - commit-reveal record for one task execution.

    WHAT: Plan commitment, revealed plan/evidence, challenge window
    WHY: Tamper-evident link between a committed plan and later evidence
    HOW: plan_hash written once at commit; status is the compare-and-swap key
    """
    __tablename__ = "proofs"

    id = Column(String(64), primary_key=True)
    deal_id = Column(String(64), nullable=True)
    request_id = Column(String(255), nullable=True)
    operator_id = Column(String(255), nullable=False)
    status = Column(SQLEnum(ProofStatus), nullable=False, default=ProofStatus.COMMITTED)
    plan_hash = Column(String(64), nullable=False)
    plan_text = Column(Text, nullable=True)
    evidence = Column(JSON, nullable=True)
    evidence_hash = Column(String(64), nullable=True)
    deadline = Column(DateTime, nullable=False)
    challenge_window_ends = Column(DateTime, nullable=True)
    challenges = Column(JSON, nullable=False, default=list)
    verified_by = Column(String(255), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_proof_deal", "deal_id"),
        Index("idx_proof_request", "request_id"),
        Index("idx_proof_status", "status"),
    )

    def __repr__(self):
        return f"<Proof(id={self.id}, operator={self.operator_id}, status={self.status})>"


class PricingHistory(Base):
    """Immutable pricing outcome used by the pricing oracle aggregates."""
    __tablename__ = "pricing_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    service = Column(String(100), nullable=False)
    terms = Column(JSON, nullable=False, default=dict)
    suggested_price = Column(Float, nullable=False)
    final_price = Column(Float, nullable=True)
    agent_id = Column(String(255), nullable=False)
    outcome = Column(SQLEnum(PricingOutcome), nullable=False)
    counter_price = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("suggested_price >= 0", name="check_suggested_price_non_negative"),
        Index("idx_pricing_history_service", "service"),
        Index("idx_pricing_history_agent", "agent_id"),
        Index("idx_pricing_history_created", "created_at"),
    )

    def __repr__(self):
        return f"<PricingHistory(service={self.service}, outcome={self.outcome})>"


class Webhook(Base):
    """Webhook subscription for outbound event notifications."""
    __tablename__ = "webhooks"

    id = Column(String(64), primary_key=True)
    agent_id = Column(String(255), nullable=False)
    url = Column(String(2048), nullable=False)
    events = Column(JSON, nullable=False, default=list)
    secret = Column(String(255), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_webhook_agent", "agent_id"),
    )

    def __repr__(self):
        return f"<Webhook(id={self.id}, url={self.url})>"
