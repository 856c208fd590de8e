"""
Commitment ledger.

WHAT: Commit-reveal proofs binding an operator's plan to later evidence
WHY: An operator commits to a plan before doing the work, so the plan
     cannot be rewritten after the fact to fit the evidence
HOW: SHA-256 commitment at commit time; the revealed plan must hash to it.
     Each status change is a compare-and-swap on the proof status.

States:
    committed --reveal (hash ok, before deadline)--> evidence_submitted
    committed --reveal after deadline / sweep--> expired
    evidence_submitted --verify--> verified
    evidence_submitted --challenge (within window)--> challenged
    evidence_submitted --sweep after window--> verified (by "system")
"""

import hashlib
import json
import re
import secrets
import string
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from ..core.config import settings
from ..models.proof import Challenge, EvidenceItem, Proof, ProofStatus
from ..store.base import Store, StatusConflict
from ..utils.exceptions import (
    ChallengeWindowClosedException,
    InvalidProofStateException,
    PlanHashMismatchException,
    ProofDeadlinePassedException,
    ProofNotFoundException,
    ValidationException,
)
from ..utils.logger import get_logger
from ..utils.timeutil import epoch_ms, isoformat_z, to_naive_utc, utcnow

logger = get_logger(__name__)

_HASH_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")
_ID_ALPHABET = string.ascii_lowercase + string.digits

SYSTEM_VERIFIER = "system"


def compute_hash(text: str) -> str:
    """Lower-case hex SHA-256 of UTF-8 text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compute_evidence_hash(evidence: List[EvidenceItem], plan_text: str, submitted_at: datetime) -> str:
    serialized = json.dumps(
        [item.model_dump(mode="json", exclude_none=True) for item in evidence],
        separators=(",", ":"),
    )
    return compute_hash(serialized + plan_text + isoformat_z(submitted_at))


def generate_proof_id(now: datetime) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"proof_{epoch_ms(now)}_{suffix}"


def _parse_evidence(evidence: Any) -> List[EvidenceItem]:
    if not isinstance(evidence, list) or not evidence:
        raise ValidationException(
            "At least one evidence item is required",
            field_errors=[{"field": "evidence", "error": "must be a non-empty list"}]
        )
    items = []
    for index, raw in enumerate(evidence):
        if isinstance(raw, EvidenceItem):
            items.append(raw)
            continue
        try:
            items.append(EvidenceItem.model_validate(raw))
        except ValidationError as e:
            raise ValidationException(
                f"Invalid evidence item at position {index}",
                field_errors=[
                    {"field": f"evidence[{index}]." + ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
                    for err in e.errors()
                ]
            )
    return items


class CommitmentLedger:
    """
    Commit-reveal state machine over the proof store.

    WHAT: commit_proof, submit_evidence, verify_proof, challenge_proof, sweep, queries
    WHY: Payment eligibility hinges on verified proofs
    HOW: Every operation takes an optional `now` so time-dependent rules are testable
    """

    def __init__(self, store: Store, dispatcher=None, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock

    def commit_proof(
        self,
        operator_id: str,
        plan_hash: str,
        deal_id: Optional[str] = None,
        request_id: Optional[str] = None,
        deadline: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Proof:
        """
        Record a plan commitment.

        Raises:
            ValidationException: missing operator/hash, malformed hash, or a past deadline
        """
        errors = []
        if not operator_id:
            errors.append({"field": "operator_id", "error": "required"})
        if not plan_hash:
            errors.append({"field": "plan_hash", "error": "required"})
        elif not _HASH_PATTERN.match(plan_hash):
            errors.append({"field": "plan_hash", "error": "must be 64 hex characters (SHA-256)"})
        if errors:
            raise ValidationException("Invalid proof commitment", field_errors=errors)

        now = now or self.clock()
        if deadline is None:
            deadline = now + timedelta(hours=settings.PROOF_DEFAULT_DEADLINE_HOURS)
        else:
            deadline = to_naive_utc(deadline)
            if deadline <= now:
                raise ValidationException(
                    "deadline must be in the future",
                    field_errors=[{"field": "deadline", "error": "must be in the future"}]
                )

        proof = Proof(
            id=generate_proof_id(now),
            deal_id=deal_id,
            request_id=request_id,
            operator_id=operator_id,
            status=ProofStatus.COMMITTED,
            plan_hash=plan_hash.lower(),
            deadline=deadline,
            created_at=now,
            updated_at=now,
        )
        proof = self.store.create_proof(proof)

        logger.info(f"Proof committed: {proof.id} by {operator_id} (deadline {isoformat_z(deadline)})")
        self._notify("proof.committed", {
            "proof_id": proof.id,
            "deal_id": deal_id,
            "operator_id": operator_id,
            "deadline": isoformat_z(deadline),
        })
        return proof

    def submit_evidence(
        self,
        proof_id: str,
        plan_text: str,
        evidence: List[Union[EvidenceItem, Dict[str, Any]]],
        now: Optional[datetime] = None,
    ) -> Proof:
        """
        Reveal the plan and attach evidence.

        A passed deadline wins over everything else: the proof is expired
        even when the plan would have matched.

        Raises:
            ValidationException: empty plan_text or evidence
            ProofNotFoundException: unknown proof
            InvalidProofStateException: proof is not committed
            ProofDeadlinePassedException: deadline passed (proof now expired)
            PlanHashMismatchException: plan does not hash to the commitment
        """
        if not plan_text:
            raise ValidationException(
                "plan_text is required",
                field_errors=[{"field": "plan_text", "error": "required"}]
            )
        items = _parse_evidence(evidence)

        proof = self._load(proof_id)
        if proof.status != ProofStatus.COMMITTED:
            raise InvalidProofStateException(proof_id, "submit evidence for", proof.status.value)

        now = now or self.clock()
        if now > proof.deadline:
            self._transition(proof_id, ProofStatus.COMMITTED, {"status": ProofStatus.EXPIRED}, now, "expire")
            logger.info(f"Proof {proof_id} expired at evidence submission")
            self._notify("proof.expired", {"proof_id": proof_id, "deal_id": proof.deal_id})
            raise ProofDeadlinePassedException(proof_id, isoformat_z(proof.deadline))

        computed = compute_hash(plan_text)
        if computed != proof.plan_hash:
            logger.warning(f"Plan hash mismatch on {proof_id}")
            raise PlanHashMismatchException(proof_id, proof.plan_hash, computed)

        window_ends = now + timedelta(hours=settings.CHALLENGE_WINDOW_HOURS)
        proof = self._transition(proof_id, ProofStatus.COMMITTED, {
            "status": ProofStatus.EVIDENCE_SUBMITTED,
            "plan_text": plan_text,
            "evidence": [item.model_dump(mode="json") for item in items],
            "evidence_hash": compute_evidence_hash(items, plan_text, now),
            "challenge_window_ends": window_ends,
        }, now, "submit evidence for")

        logger.info(f"Evidence submitted for {proof_id}; challenge window ends {isoformat_z(window_ends)}")
        self._notify("proof.submitted", {
            "proof_id": proof_id,
            "deal_id": proof.deal_id,
            "evidence_hash": proof.evidence_hash,
            "challenge_window_ends": isoformat_z(window_ends),
        })
        return proof

    def verify_proof(self, proof_id: str, verified_by: Optional[str] = None, now: Optional[datetime] = None) -> Proof:
        now = now or self.clock()
        proof = self._transition(proof_id, ProofStatus.EVIDENCE_SUBMITTED, {
            "status": ProofStatus.VERIFIED,
            "verified_by": verified_by or "agent",
            "verified_at": now,
        }, now, "verify")

        logger.info(f"Proof verified: {proof_id} by {proof.verified_by}")
        self._notify("proof.verified", {
            "proof_id": proof_id,
            "deal_id": proof.deal_id,
            "verified_by": proof.verified_by,
        })
        return proof

    def challenge_proof(
        self,
        proof_id: str,
        challenger: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Proof:
        """
        Dispute submitted evidence while the challenge window is open.

        Raises:
            ChallengeWindowClosedException: the window has elapsed
            InvalidProofStateException: no evidence to challenge, or already challenged
        """
        proof = self._load(proof_id)
        now = now or self.clock()

        window_ends = proof.challenge_window_ends
        if (
            proof.status in (ProofStatus.EVIDENCE_SUBMITTED, ProofStatus.VERIFIED)
            and window_ends is not None
            and now > window_ends
        ):
            raise ChallengeWindowClosedException(proof_id, isoformat_z(window_ends))
        if proof.status != ProofStatus.EVIDENCE_SUBMITTED:
            raise InvalidProofStateException(proof_id, "challenge", proof.status.value)

        challenge = Challenge(
            challenger=challenger or "agent",
            reason=reason or "No reason provided",
            timestamp=now,
        )
        challenges = [c.model_dump(mode="json") for c in proof.challenges]
        challenges.append(challenge.model_dump(mode="json"))
        proof = self._transition(proof_id, ProofStatus.EVIDENCE_SUBMITTED, {
            "status": ProofStatus.CHALLENGED,
            "challenges": challenges,
        }, now, "challenge")

        logger.info(f"Proof challenged: {proof_id} by {challenge.challenger}")
        self._notify("proof.challenged", {
            "proof_id": proof_id,
            "deal_id": proof.deal_id,
            "challenger": challenge.challenger,
            "reason": challenge.reason,
        })
        return proof

    def sweep(self, now: Optional[datetime] = None) -> Dict[str, List[str]]:
        """
        Expire overdue commitments and auto-verify unchallenged evidence.

        Returns:
            {"expired": [...proof ids], "verified": [...proof ids]}
        """
        now = now or self.clock()
        expired, verified = [], []

        for proof in self.store.list_proofs(status=ProofStatus.COMMITTED):
            if now <= proof.deadline:
                continue
            try:
                self.store.transition_proof(proof.id, ProofStatus.COMMITTED, {"status": ProofStatus.EXPIRED}, now)
            except StatusConflict:
                continue
            expired.append(proof.id)
            self._notify("proof.expired", {"proof_id": proof.id, "deal_id": proof.deal_id})

        for proof in self.store.list_proofs(status=ProofStatus.EVIDENCE_SUBMITTED):
            if proof.challenge_window_ends is None or now <= proof.challenge_window_ends:
                continue
            try:
                self.store.transition_proof(proof.id, ProofStatus.EVIDENCE_SUBMITTED, {
                    "status": ProofStatus.VERIFIED,
                    "verified_by": SYSTEM_VERIFIER,
                    "verified_at": now,
                }, now)
            except StatusConflict:
                continue
            verified.append(proof.id)
            self._notify("proof.verified", {
                "proof_id": proof.id,
                "deal_id": proof.deal_id,
                "verified_by": SYSTEM_VERIFIER,
            })

        if expired or verified:
            logger.info(f"Proof sweep: {len(expired)} expired, {len(verified)} auto-verified")
        return {"expired": expired, "verified": verified}

    # ========== Queries ==========

    def get_proof(self, proof_id: str) -> Proof:
        return self._load(proof_id)

    def list_proofs(self, deal_id: Optional[str] = None, request_id: Optional[str] = None) -> List[Proof]:
        return self.store.list_proofs(deal_id=deal_id, request_id=request_id)

    # ========== Internals ==========

    def _load(self, proof_id: str) -> Proof:
        proof = self.store.get_proof(proof_id)
        if proof is None:
            raise ProofNotFoundException(proof_id)
        return proof

    def _transition(
        self, proof_id: str, from_status: ProofStatus, changes: Dict[str, Any], now: datetime, operation: str
    ) -> Proof:
        try:
            return self.store.transition_proof(proof_id, from_status, changes, now)
        except StatusConflict as e:
            raise InvalidProofStateException(proof_id, operation, e.current_status)

    def _notify(self, event: str, data: Dict[str, Any]) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.dispatch(event, data)
        except Exception as e:
            logger.warning(f"[webhook] could not schedule {event}: {e}")
