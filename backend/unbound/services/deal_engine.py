"""
Deal engine.

WHAT: State machine for proposing, countering, accepting, rejecting and messaging on deals
WHY: Single canonical negotiation flow between agents and the platform
HOW: Every transition is one compare-and-swap on status plus one transcript entry,
     followed by a fire-and-forget webhook notification

States:
    proposed --accept--> accepted --complete--> completed
    proposed --counter--> countered --counter--> countered
    proposed/countered --reject--> rejected
    proposed/countered --(idle sweep)--> expired
    any non-terminal --message--> (unchanged)

    rejected and completed are terminal: every further action is DEAL_CLOSED.
"""

import math
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ..core.config import settings
from ..models.deal import (
    OPEN_DEAL_STATUSES,
    TERMINAL_DEAL_STATUSES,
    Deal,
    DealAction,
    DealMessage,
    DealStatus,
    parse_terms,
)
from ..models.pricing import PricingOutcome
from ..store.base import Store, StatusConflict
from ..utils.exceptions import (
    BusinessException,
    DealClosedException,
    DealNotFoundException,
    InvalidActionException,
    InvalidTransitionException,
    MissingCounterPriceException,
    ValidationException,
)
from ..utils.logger import get_logger
from ..utils.timeutil import epoch_ms, utcnow
from .pricing_oracle import PricingOracle, round_money

logger = get_logger(__name__)

ACTIONS_ON_EXISTING_DEAL = [
    DealAction.ACCEPT.value,
    DealAction.COUNTER.value,
    DealAction.REJECT.value,
    DealAction.MESSAGE.value,
]

NON_TERMINAL_DEAL_STATUSES = frozenset(set(DealStatus) - TERMINAL_DEAL_STATUSES)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_deal_id(now: datetime) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))
    return f"deal_{epoch_ms(now)}_{suffix}"


@dataclass
class DealResult:
    """Outcome of a successful deal operation."""
    deal: Deal
    message: Optional[DealMessage] = None
    auto_accepted: bool = False
    payment: Optional[Dict[str, Any]] = None


@dataclass
class DealView:
    """A deal with its transcript and the actions still available."""
    deal: Deal
    messages: List[DealMessage] = field(default_factory=list)
    next_actions: List[str] = field(default_factory=list)
    payment: Optional[Dict[str, Any]] = None


def payment_instructions(deal: Deal) -> Dict[str, Any]:
    """Where and how to pay for an accepted deal."""
    return {
        "amount": f"{deal.agreed_price or 0:.2f}",
        "currency": settings.PAYMENT_CURRENCY,
        "network": settings.PAYMENT_NETWORK,
        "address": settings.USDC_PAYMENT_ADDRESS,
        "memo": deal.id,
    }


def next_actions(deal: Deal) -> List[str]:
    if deal.status in OPEN_DEAL_STATUSES:
        return ["accept", "counter", "reject", "message"]
    if deal.status == DealStatus.ACCEPTED:
        return ["complete", "message"]
    if deal.status == DealStatus.EXPIRED:
        return ["message"]
    return []


def _parse_counter_price(deal_id: str, raw: Any) -> float:
    if raw is None or raw == "":
        raise MissingCounterPriceException(deal_id)
    not_a_number = ValidationException(
        "counter_price must be a number",
        field_errors=[{"field": "counter_price", "error": f"not a number: {raw!r}"}]
    )
    if isinstance(raw, bool):
        raise not_a_number
    try:
        price = float(raw)
    except (TypeError, ValueError):
        raise not_a_number
    if not math.isfinite(price) or price <= 0:
        raise ValidationException(
            "counter_price must be positive",
            field_errors=[{"field": "counter_price", "error": "must be > 0"}]
        )
    return round_money(price)


class DealEngine:
    """
    Deal negotiation state machine.

    WHAT: propose_deal, act_on_deal, complete_deal, expire_stale_deals and queries
    WHY: Keep transitions atomic and the transcript complete
    HOW: Store compare-and-swap transitions; oracle for prices; dispatcher for notifications

    Errors are raised synchronously as BusinessException subclasses and never
    retried here.
    """

    def __init__(
        self,
        store: Store,
        oracle: PricingOracle,
        dispatcher=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.oracle = oracle
        self.dispatcher = dispatcher
        self.clock = clock
        self.platform_id = settings.PLATFORM_AGENT_ID

    # ========== Proposal ==========

    def propose_deal(
        self,
        proposer_id: str,
        service: str,
        terms: Optional[Dict[str, Any]],
        target_id: Optional[str] = None,
    ) -> DealResult:
        """
        Open a deal, pricing it and auto-accepting when the declared max covers the suggestion.

        Raises:
            ValidationException: missing proposer/service/terms or invalid terms
        """
        if not proposer_id:
            raise ValidationException(
                "agent_id is required",
                field_errors=[{"field": "agent_id", "error": "required"}]
            )
        if not service or terms is None:
            raise ValidationException(
                "service and terms are required to propose a deal",
                field_errors=[
                    {"field": name, "error": "required"}
                    for name, value in (("service", service), ("terms", terms))
                    if not value and value != {}
                ]
            )

        parsed = parse_terms(service, terms)
        suggestion = self.oracle.suggest_price(service, parsed)
        now = self.clock()

        max_price = round_money(parsed.max_price_usdc) if parsed.max_price_usdc is not None else None
        auto_accept = max_price is not None and max_price >= suggestion.amount

        stored_terms = {
            **parsed.model_dump(mode="json", exclude_none=True),
            "suggested_price": suggestion.model_dump(),
            "agent_proposed_price": max_price,
        }
        if auto_accept:
            stored_terms.update(final_price=suggestion.amount, auto_accepted=True)

        deal_id = generate_deal_id(now)
        opening = self._message(deal_id, proposer_id, DealAction.PROPOSE, now, {
            "service": service,
            "terms": terms,
            "suggested_price": suggestion.model_dump(),
        })
        transcript = [opening]
        if auto_accept:
            transcript.append(self._message(deal_id, self.platform_id, DealAction.ACCEPT, now, {
                "message": "Deal auto-accepted. Your max price covers the service cost.",
                "final_price": suggestion.amount,
            }))

        # Created directly in its final status so a failed write leaves no trace
        deal = self.store.create_deal(
            Deal(
                id=deal_id,
                proposer_id=proposer_id,
                target_id=target_id or self.platform_id,
                service=service,
                terms=stored_terms,
                status=DealStatus.ACCEPTED if auto_accept else DealStatus.PROPOSED,
                created_at=now,
                updated_at=now,
            ),
            transcript,
        )

        logger.info(
            f"Deal proposed: {deal.id} by {proposer_id} for {service}, "
            f"suggested ${suggestion.amount:.2f}"
        )
        self._notify("deal.proposed", {
            "deal_id": deal.id,
            "agent_id": proposer_id,
            "agent": self._agent_summary(proposer_id),
            "service": service,
            "suggested_price": suggestion.amount,
        })

        if not auto_accept:
            return DealResult(deal=deal, message=opening)

        self._record_outcome(deal, proposer_id, PricingOutcome.ACCEPTED, final_price=suggestion.amount)
        logger.info(f"Deal auto-accepted: {deal.id} (max ${max_price:.2f} >= ${suggestion.amount:.2f})")
        self._notify("deal.accepted", {
            "deal_id": deal.id,
            "agent_id": proposer_id,
            "auto_accepted": True,
            "price_usdc": suggestion.amount,
        })
        return DealResult(
            deal=deal, message=transcript[-1], auto_accepted=True, payment=payment_instructions(deal),
        )

    # ========== Actions on existing deals ==========

    def act_on_deal(
        self,
        deal_id: str,
        action: str,
        agent_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> DealResult:
        """
        Apply accept/counter/reject/message to an existing deal.

        Raises:
            InvalidActionException: unknown action token
            MissingCounterPriceException: counter without a price
            DealNotFoundException: unknown deal
            DealClosedException: deal already rejected or completed
            InvalidTransitionException: action illegal from the current status
        """
        if action not in ACTIONS_ON_EXISTING_DEAL:
            raise InvalidActionException(str(action), ACTIONS_ON_EXISTING_DEAL)
        if not agent_id:
            raise ValidationException(
                "agent_id is required",
                field_errors=[{"field": "agent_id", "error": "required"}]
            )
        payload = payload or {}
        text = payload.get("message")

        if action == DealAction.COUNTER.value:
            counter_price = _parse_counter_price(deal_id, payload.get("counter_price"))

        current = self.store.get_deal(deal_id)
        if current is None:
            raise DealNotFoundException(deal_id)
        if current.is_terminal:
            raise DealClosedException(deal_id, current.status.value)

        now = self.clock()

        if action == DealAction.ACCEPT.value:
            final_price = current.terms.get("latest_counter_price") or current.agreed_price
            message = self._message(deal_id, agent_id, DealAction.ACCEPT, now, {
                "message": text or "Deal accepted",
                "final_price": final_price,
            })
            deal = self._transition(
                deal_id, DealAction.ACCEPT, OPEN_DEAL_STATUSES, DealStatus.ACCEPTED, message,
                terms_update={"final_price": final_price},
            )
            self._record_outcome(deal, agent_id, PricingOutcome.ACCEPTED, final_price=final_price)
            self._notify("deal.accepted", {
                "deal_id": deal_id,
                "agent_id": agent_id,
                "price_usdc": final_price,
            })
            logger.info(f"Deal accepted: {deal_id} by {agent_id} at ${final_price or 0:.2f}")
            return DealResult(deal=deal, message=message, payment=payment_instructions(deal))

        if action == DealAction.COUNTER.value:
            message = self._message(deal_id, agent_id, DealAction.COUNTER, now, {
                "price_usdc": counter_price,
                "message": text or f"Counter-offer: ${counter_price:.2f} USDC",
                "justification": payload.get("justification"),
            })
            deal = self._transition(
                deal_id, DealAction.COUNTER, OPEN_DEAL_STATUSES, DealStatus.COUNTERED, message,
                terms_update={"latest_counter_price": counter_price, "latest_counter_by": agent_id},
            )
            self._record_outcome(deal, agent_id, PricingOutcome.COUNTERED, counter_price=counter_price)
            self._notify("deal.countered", {
                "deal_id": deal_id,
                "agent_id": agent_id,
                "counter_price": counter_price,
            })
            logger.info(f"Counter offer on {deal_id}: ${counter_price:.2f} from {agent_id}")
            return DealResult(deal=deal, message=message)

        if action == DealAction.REJECT.value:
            reason = payload.get("reason")
            message = self._message(deal_id, agent_id, DealAction.REJECT, now, {
                "message": text or "Deal rejected",
                "reason": reason,
            })
            deal = self._transition(
                deal_id, DealAction.REJECT, OPEN_DEAL_STATUSES, DealStatus.REJECTED, message,
            )
            self._record_outcome(deal, agent_id, PricingOutcome.REJECTED)
            self._notify("deal.rejected", {"deal_id": deal_id, "agent_id": agent_id, "reason": reason})
            logger.info(f"Deal rejected: {deal_id} by {agent_id}")
            return DealResult(deal=deal, message=message)

        message = self._message(deal_id, agent_id, DealAction.MESSAGE, now, {"message": text or ""})
        deal = self._transition(
            deal_id, DealAction.MESSAGE, NON_TERMINAL_DEAL_STATUSES, None, message,
        )
        self._notify("deal.message", {"deal_id": deal_id, "agent_id": agent_id, "message": text or ""})
        return DealResult(deal=deal, message=message)

    def complete_deal(self, deal_id: str, agent_id: Optional[str] = None) -> DealResult:
        """Close an accepted deal once the work is delivered and paid."""
        actor = agent_id or self.platform_id
        message = self._message(deal_id, actor, DealAction.MESSAGE, self.clock(), {
            "message": "Deal completed",
            "status": DealStatus.COMPLETED.value,
        })
        deal = self._transition(
            deal_id, "complete", {DealStatus.ACCEPTED}, DealStatus.COMPLETED, message,
        )
        self._notify("deal.completed", {"deal_id": deal_id, "agent_id": actor})
        logger.info(f"Deal completed: {deal_id}")
        return DealResult(deal=deal, message=message)

    def expire_stale_deals(self, now: Optional[datetime] = None) -> List[Deal]:
        """
        Move proposed/countered deals idle past DEAL_EXPIRY_HOURS to expired.

        Deals that change status concurrently are skipped.
        """
        now = now or self.clock()
        cutoff = now - timedelta(hours=settings.DEAL_EXPIRY_HOURS)
        expired = []
        for stale in self.store.list_stale_deals(OPEN_DEAL_STATUSES, cutoff):
            message = self._message(stale.id, self.platform_id, DealAction.MESSAGE, now, {
                "message": f"Deal expired after {settings.DEAL_EXPIRY_HOURS}h without agreement",
                "status": DealStatus.EXPIRED.value,
            })
            try:
                deal = self.store.transition_deal(
                    stale.id, {stale.status}, DealStatus.EXPIRED, message, now,
                )
            except StatusConflict as e:
                logger.info(f"Skipping expiry of {stale.id}: now {e.current_status}")
                continue
            expired.append(deal)
            self._notify("deal.expired", {"deal_id": deal.id, "agent_id": deal.proposer_id})

        if expired:
            logger.info(f"Expired {len(expired)} stale deals")
        return expired

    # ========== Queries ==========

    def get_deal(self, deal_id: str) -> DealView:
        deal = self.store.get_deal(deal_id)
        if deal is None:
            raise DealNotFoundException(deal_id)
        return DealView(
            deal=deal,
            messages=self.store.get_deal_messages(deal_id),
            next_actions=next_actions(deal),
            payment=payment_instructions(deal) if deal.status == DealStatus.ACCEPTED else None,
        )

    def list_deals(
        self,
        agent_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Deal]:
        status_filter = None
        if status:
            try:
                status_filter = DealStatus(status)
            except ValueError:
                raise ValidationException(
                    f"Unknown deal status: {status}",
                    field_errors=[{"field": "status", "error": f"must be one of {[s.value for s in DealStatus]}"}]
                )
        return self.store.list_deals(
            agent_id=agent_id, status=status_filter, limit=limit or settings.DEAL_LIST_LIMIT,
        )

    # ========== Internals ==========

    def _message(
        self, deal_id: str, agent_id: str, action: DealAction, now: datetime, content: Dict[str, Any]
    ) -> DealMessage:
        return DealMessage(deal_id=deal_id, from_agent=agent_id, action=action, content=content, created_at=now)

    def _transition(
        self,
        deal_id: str,
        action,
        from_statuses,
        to_status: Optional[DealStatus],
        message: DealMessage,
        terms_update: Optional[Dict[str, Any]] = None,
    ) -> Deal:
        try:
            return self.store.transition_deal(
                deal_id, from_statuses, to_status, message, message.created_at, terms_update=terms_update,
            )
        except StatusConflict as e:
            if DealStatus(e.current_status) in TERMINAL_DEAL_STATUSES:
                raise DealClosedException(deal_id, e.current_status)
            action_name = action.value if isinstance(action, DealAction) else action
            raise InvalidTransitionException(deal_id, action_name, e.current_status)

    def _record_outcome(
        self,
        deal: Deal,
        actor_id: str,
        outcome: PricingOutcome,
        final_price: Optional[float] = None,
        counter_price: Optional[float] = None,
    ) -> None:
        """
        Feed pricing history under the agent whose behaviour the outcome describes.

        Platform actions are not recorded: agent profiles classify the
        counterparty, not the desk. A failure here never undoes the transition.
        """
        if actor_id == self.platform_id:
            return
        suggested = deal.suggested_amount
        if suggested is None:
            return
        terms = {k: v for k, v in deal.terms.items() if k != "suggested_price"}
        try:
            self.oracle.record_pricing_outcome(
                service=deal.service,
                terms=terms,
                suggested_price=suggested,
                agent_id=actor_id,
                outcome=outcome,
                final_price=final_price,
                counter_price=counter_price,
                now=deal.updated_at,
            )
        except BusinessException as e:
            logger.warning(f"Failed to record pricing outcome for {deal.id}: {e.message}")

    def _agent_summary(self, agent_id: str) -> Optional[Dict[str, Any]]:
        try:
            agent = self.store.get_agent(agent_id)
        except BusinessException as e:
            logger.warning(f"Agent lookup failed for {agent_id}: {e.message}")
            return None
        if agent is None:
            return None
        return {"id": agent.id, "name": agent.name, "contact": agent.contact}

    def _notify(self, event: str, data: Dict[str, Any]) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.dispatch(event, data)
        except Exception as e:
            logger.warning(f"[webhook] could not schedule {event}: {e}")
