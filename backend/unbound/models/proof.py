"""
Commit-reveal proof domain models.

WHAT: Proof record, evidence items and challenges
WHY: Typed state for the commitment ledger
HOW: Pydantic v2 models mirroring the proofs table
"""

from datetime import datetime
from typing import List, Literal, Optional
import enum

from pydantic import BaseModel, ConfigDict, Field


class ProofStatus(str, enum.Enum):
    """Commit-reveal proof status values."""
    COMMITTED = "committed"
    EVIDENCE_SUBMITTED = "evidence_submitted"
    VERIFIED = "verified"
    CHALLENGED = "challenged"
    EXPIRED = "expired"


class EvidenceItem(BaseModel):
    """One piece of evidence submitted at reveal time."""

    model_config = ConfigDict(extra="allow")

    type: Literal["photo", "receipt", "gps", "document", "confirmation", "screenshot"]
    description: str = ""
    url: Optional[str] = None


class Challenge(BaseModel):
    challenger: str
    reason: str
    timestamp: datetime


class Proof(BaseModel):
    """Commit-reveal record binding an operator's plan to later evidence."""

    id: str
    deal_id: Optional[str] = None
    request_id: Optional[str] = None
    operator_id: str
    status: ProofStatus
    plan_hash: str
    plan_text: Optional[str] = None
    evidence: Optional[List[EvidenceItem]] = None
    evidence_hash: Optional[str] = None
    deadline: datetime
    challenge_window_ends: Optional[datetime] = None
    challenges: List[Challenge] = Field(default_factory=list)
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
