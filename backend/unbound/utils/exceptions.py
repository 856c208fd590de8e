"""
Business exceptions for deals, proofs, and pricing.

WHAT: Tagged domain exceptions that map to HTTP status codes
WHY: Every operation reports a structured error the caller can self-diagnose
HOW: BusinessException carries code, message, details and a category tag
"""

from typing import Optional, List, Dict, Any


# Error categories
VALIDATION = "validation"
NOT_FOUND = "not_found"
CONFLICT = "conflict"
INTEGRITY = "integrity"
EXPIRY = "expiry"
INTERNAL = "internal"


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    category = INTERNAL

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "category": self.category,
            "message": self.message,
            "details": self.details,
        }


# ========== Validation ==========

class ValidationException(BusinessException):
    """Raised for missing or malformed required fields."""

    category = VALIDATION

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None
        )


class InvalidActionException(BusinessException):
    """Raised when a deal action token is not recognized."""

    category = VALIDATION

    def __init__(self, action: str, allowed: List[str]):
        super().__init__(
            message=f"action must be one of {', '.join(allowed)}; got '{action}'",
            code="INVALID_ACTION",
            details={"action": action, "allowed": allowed}
        )


class MissingCounterPriceException(BusinessException):
    """Raised when a counter-offer carries no explicit price."""

    category = VALIDATION

    def __init__(self, deal_id: str):
        super().__init__(
            message="counter_price is required for counter offers",
            code="MISSING_COUNTER_PRICE",
            details={"deal_id": deal_id}
        )


# ========== Not found ==========

class DealNotFoundException(BusinessException):
    category = NOT_FOUND

    def __init__(self, deal_id: str):
        super().__init__(
            message=f"Deal not found: {deal_id}",
            code="DEAL_NOT_FOUND",
            details={"deal_id": deal_id}
        )


class ProofNotFoundException(BusinessException):
    category = NOT_FOUND

    def __init__(self, proof_id: str):
        super().__init__(
            message=f"Proof not found: {proof_id}",
            code="PROOF_NOT_FOUND",
            details={"proof_id": proof_id}
        )


class AgentNotFoundException(BusinessException):
    category = NOT_FOUND

    def __init__(self, agent_id: str):
        super().__init__(
            message=f"Agent not found: {agent_id}",
            code="AGENT_NOT_FOUND",
            details={"agent_id": agent_id}
        )


class WebhookNotFoundException(BusinessException):
    category = NOT_FOUND

    def __init__(self, webhook_id: str):
        super().__init__(
            message=f"Webhook not found: {webhook_id}",
            code="WEBHOOK_NOT_FOUND",
            details={"webhook_id": webhook_id}
        )


# ========== Conflict ==========

class DealClosedException(BusinessException):
    """Raised when mutating a deal that is already rejected or completed."""

    category = CONFLICT

    def __init__(self, deal_id: str, current_status: str):
        super().__init__(
            message=f"Deal {deal_id} is already {current_status}",
            code="DEAL_CLOSED",
            details={"deal_id": deal_id, "current_status": current_status}
        )


class InvalidTransitionException(BusinessException):
    """Raised when a deal action is illegal from the current non-terminal status."""

    category = CONFLICT

    def __init__(self, deal_id: str, action: str, current_status: str):
        super().__init__(
            message=f"Cannot {action} deal {deal_id} in '{current_status}' status",
            code="INVALID_TRANSITION",
            details={"deal_id": deal_id, "action": action, "current_status": current_status}
        )


class InvalidProofStateException(BusinessException):
    """Raised when a proof operation is illegal in the current status."""

    category = CONFLICT

    def __init__(self, proof_id: str, operation: str, current_status: str):
        super().__init__(
            message=f"Cannot {operation} proof in '{current_status}' status",
            code="INVALID_PROOF_STATE",
            details={"proof_id": proof_id, "operation": operation, "current_status": current_status}
        )


# ========== Integrity ==========

class PlanHashMismatchException(BusinessException):
    """Raised when revealed plan text does not hash to the committed digest."""

    category = INTEGRITY

    def __init__(self, proof_id: str, committed_hash: str, computed_hash: str):
        super().__init__(
            message="Plan text does not match committed hash",
            code="PLAN_HASH_MISMATCH",
            details={
                "proof_id": proof_id,
                "committed_hash": committed_hash,
                "computed_hash": computed_hash,
            }
        )


# ========== Expiry ==========

class ProofDeadlinePassedException(BusinessException):
    category = EXPIRY

    def __init__(self, proof_id: str, deadline: str):
        super().__init__(
            message="Proof deadline has passed",
            code="PROOF_DEADLINE_PASSED",
            details={"proof_id": proof_id, "deadline": deadline, "status": "expired"}
        )


class ChallengeWindowClosedException(BusinessException):
    category = EXPIRY

    def __init__(self, proof_id: str, ended: str):
        super().__init__(
            message="Challenge window has closed",
            code="CHALLENGE_WINDOW_CLOSED",
            details={"proof_id": proof_id, "ended": ended}
        )


# ========== Internal ==========

class StorageException(BusinessException):
    """Raised when the durable store fails; never treated as success."""

    category = INTERNAL

    def __init__(self, operation: str):
        super().__init__(
            message=f"Storage failure during {operation}",
            code="STORAGE_ERROR",
            details={"operation": operation}
        )
