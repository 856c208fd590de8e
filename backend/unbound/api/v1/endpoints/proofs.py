"""
Proof endpoints.

WHAT: Commit-reveal lifecycle over HTTP
WHY: Operators commit plans and submit evidence; agents verify or challenge
HOW: Thin FastAPI handlers around CommitmentLedger
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from ....core.container import Services, get_services
from ....models.api_schemas import (
    ChallengeProofRequest,
    CommitProofRequest,
    ProofListResponse,
    ProofSweepResponse,
    SubmitEvidenceRequest,
    VerifyProofRequest,
)
from ....models.proof import Proof

router = APIRouter()


@router.post("/proofs", response_model=Proof, status_code=status.HTTP_201_CREATED)
async def commit_proof(request: CommitProofRequest, services: Services = Depends(get_services)):
    """
    Commit to a plan.

    WHAT: Store the SHA-256 of the plan before work starts
    WHY: The plan cannot be rewritten after the fact
    HOW: CommitmentLedger.commit_proof
    """
    return services.proofs.commit_proof(
        operator_id=request.operator_id,
        plan_hash=request.plan_hash,
        deal_id=request.deal_id,
        request_id=request.request_id,
        deadline=request.deadline,
    )


@router.post("/proofs/sweep", response_model=ProofSweepResponse)
async def sweep_proofs(services: Services = Depends(get_services)):
    """Expire overdue commitments and auto-verify unchallenged evidence."""
    return ProofSweepResponse(**services.proofs.sweep())


@router.post("/proofs/{proof_id}/evidence", response_model=Proof)
async def submit_evidence(proof_id: str, request: SubmitEvidenceRequest, services: Services = Depends(get_services)):
    """
    Reveal the plan and attach evidence.

    Raises:
        PlanHashMismatchException (422): plan does not match the commitment
        ProofDeadlinePassedException (410): deadline passed; proof is now expired
    """
    return services.proofs.submit_evidence(proof_id, request.plan_text, request.evidence)


@router.post("/proofs/{proof_id}/verify", response_model=Proof)
async def verify_proof(
    proof_id: str,
    request: Optional[VerifyProofRequest] = None,
    services: Services = Depends(get_services),
):
    return services.proofs.verify_proof(proof_id, verified_by=request.verified_by if request else None)


@router.post("/proofs/{proof_id}/challenge", response_model=Proof)
async def challenge_proof(
    proof_id: str,
    request: Optional[ChallengeProofRequest] = None,
    services: Services = Depends(get_services),
):
    request = request or ChallengeProofRequest()
    return services.proofs.challenge_proof(proof_id, challenger=request.challenger, reason=request.reason)


@router.get("/proofs/{proof_id}", response_model=Proof)
async def get_proof(proof_id: str, services: Services = Depends(get_services)):
    return services.proofs.get_proof(proof_id)


@router.get("/proofs", response_model=ProofListResponse)
async def list_proofs(
    deal_id: Optional[str] = None,
    request_id: Optional[str] = None,
    services: Services = Depends(get_services),
):
    proofs = services.proofs.list_proofs(deal_id=deal_id, request_id=request_id)
    return ProofListResponse(proofs=proofs, count=len(proofs))
