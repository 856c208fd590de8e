"""
Pricing oracle.

WHAT: Deterministic price suggestions plus pricing intelligence from history
WHY: Deals need a reproducible suggested price; counter-offers need guidance
HOW: Formula interpreter over pricing_tables; windowed aggregates over history entries

Learning loop:
    The deal engine records every accept/counter/reject as a PricingHistoryEntry.
    Insights and agent profiles aggregate a trailing window of those entries.
"""

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Union

from ..core.config import settings
from ..models.deal import ServiceTerms, parse_terms
from ..models.pricing import (
    AgentPricingProfile,
    CounterRecommendation,
    PriceSuggestion,
    PricingHistoryEntry,
    PricingInsights,
    PricingOutcome,
    ServicePricingSummary,
)
from ..store.base import Store
from ..utils.exceptions import ValidationException
from ..utils.logger import get_logger
from ..utils.timeutil import utcnow
from . import pricing_tables as tables

logger = get_logger(__name__)

_CENT = Decimal("0.01")


def round_money(value: float) -> float:
    """Round half-up to cents."""
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def _fmt(value: float) -> str:
    return f"{value:g}"


def suggest_price(service: str, terms: Union[ServiceTerms, Dict[str, Any]]) -> PriceSuggestion:
    """
    Compute the suggested price for a service and its terms.

    Pure and deterministic: identical inputs always give an identical result.

    Raises:
        ValidationException: terms fail validation for the service kind
    """
    if not isinstance(terms, ServiceTerms):
        terms = parse_terms(service, terms)
    values = terms.model_dump()
    rule = tables.pricing_rule(service)
    formula = rule["formula"]

    if formula == "base_plus_percentage":
        key = values.get(rule["key_field"]) or rule["default_key"]
        fee = rule["fees"].get(key) or rule["fees"][rule["default_key"]]
        amount = float(values[rule["amount_field"]])
        total = fee["base"] + amount * fee["pct"] / 100
        breakdown = f"base: ${_fmt(fee['base'])} + {fee['pct']}% of ${_fmt(amount)}"
    elif formula == "hourly":
        hours = float(values[rule["hours_field"]])
        total = hours * rule["rate"] * (1 + rule["markup"])
        breakdown = rule["label"].format(
            hours=_fmt(hours), rate=_fmt(rule["rate"]), markup_pct=_fmt(rule["markup"] * 100)
        )
    elif formula == "flat_lookup":
        key = values.get(rule["key_field"])
        total = rule["prices"].get(key, rule["default_price"])
        breakdown = rule["label"].format(key=key or rule["missing_key_label"])
    elif formula == "flat":
        total = rule["price"]
        breakdown = rule["label"]
    else:
        raise ValueError(f"Unknown pricing formula: {formula}")

    return PriceSuggestion(amount=round_money(total), breakdown=breakdown)


def _discount_pct(entry: PricingHistoryEntry) -> float:
    """How far below the suggestion the counter was, in percent (0 without a counter)."""
    if entry.counter_price is None or not entry.suggested_price:
        return 0.0
    return (entry.suggested_price - entry.counter_price) / entry.suggested_price * 100


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def compute_insights(service: str, entries: List[PricingHistoryEntry]) -> Optional[PricingInsights]:
    """Aggregate history entries for one service; None when there are none."""
    if not entries:
        return None

    total = len(entries)
    accepted = sum(1 for e in entries if e.outcome == PricingOutcome.ACCEPTED)
    acceptance_rate = accepted / total
    avg_counter_percentage = _mean([_discount_pct(e) for e in entries])

    base_price = _mean([
        e.final_price if e.final_price is not None else e.suggested_price for e in entries
    ]) or _mean([e.suggested_price for e in entries])

    if acceptance_rate < tables.LOW_ACCEPTANCE_THRESHOLD:
        multiplier = tables.LOW_ACCEPTANCE_MULTIPLIER
    elif acceptance_rate > tables.HIGH_ACCEPTANCE_THRESHOLD:
        multiplier = tables.HIGH_ACCEPTANCE_MULTIPLIER
    else:
        multiplier = 1.0

    return PricingInsights(
        service=service,
        sample_size=total,
        base_price=round_money(base_price),
        acceptance_rate=acceptance_rate,
        avg_counter_percentage=avg_counter_percentage,
        recommended_initial=round_money(base_price * multiplier),
        price_elasticity=1 - acceptance_rate,
    )


def classify_negotiation_style(acceptance_rate: float, avg_discount: float) -> str:
    """Order matters: a quick decider is never reported as aggressive."""
    if acceptance_rate > tables.QUICK_DECIDER_ACCEPTANCE:
        return "quick_decider"
    if avg_discount > tables.AGGRESSIVE_DISCOUNT_PCT:
        return "aggressive_negotiator"
    if tables.MODERATE_DISCOUNT_PCT <= avg_discount <= tables.AGGRESSIVE_DISCOUNT_PCT:
        return "moderate_negotiator"
    return "balanced"


class PricingOracle:
    """
    Pricing suggestions and intelligence.

    WHAT: suggest_price, insights, agent profiles, counter-offer guidance, dashboard
    WHY: Adaptive pricing learned from negotiation outcomes
    HOW: Reads windowed history from the store; all math is local and deterministic
    """

    def __init__(self, store: Store):
        self.store = store

    def suggest_price(self, service: str, terms: Union[ServiceTerms, Dict[str, Any]]) -> PriceSuggestion:
        return suggest_price(service, terms)

    def record_pricing_outcome(
        self,
        service: str,
        terms: Dict[str, Any],
        suggested_price: float,
        agent_id: str,
        outcome: PricingOutcome,
        final_price: Optional[float] = None,
        counter_price: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> PricingHistoryEntry:
        entry = PricingHistoryEntry(
            service=service,
            terms=terms,
            suggested_price=round_money(suggested_price),
            final_price=round_money(final_price) if final_price is not None else None,
            agent_id=agent_id,
            outcome=outcome,
            counter_price=round_money(counter_price) if counter_price is not None else None,
            created_at=now or utcnow(),
        )
        entry = self.store.add_pricing_history(entry)
        logger.debug(f"Pricing outcome recorded: {service} {outcome.value} for {agent_id}")
        return entry

    def get_pricing_insights(self, service: str, now: Optional[datetime] = None) -> Optional[PricingInsights]:
        """
        Insights over the trailing window, or None when the service has no history there.

        None means "no data" and is distinct from a result whose rates are zero.
        """
        since = (now or utcnow()) - timedelta(days=settings.PRICING_INSIGHTS_WINDOW_DAYS)
        entries = self.store.list_pricing_history(service=service, since=since)
        return compute_insights(service, entries)

    def get_agent_pricing_profile(self, agent_id: str, now: Optional[datetime] = None) -> AgentPricingProfile:
        since = (now or utcnow()) - timedelta(days=settings.AGENT_PROFILE_WINDOW_DAYS)
        entries = self.store.list_pricing_history(agent_id=agent_id, since=since)

        if not entries:
            return AgentPricingProfile(agent_id=agent_id, is_new_agent=True)

        acceptance_rate = _mean([1.0 if e.outcome == PricingOutcome.ACCEPTED else 0.0 for e in entries])
        avg_discount = _mean([_discount_pct(e) for e in entries])

        return AgentPricingProfile(
            agent_id=agent_id,
            is_new_agent=False,
            total_deals=len(entries),
            acceptance_rate=acceptance_rate,
            avg_discount_requested=avg_discount,
            last_deal_at=max(e.created_at for e in entries),
            services_used=sorted({e.service for e in entries}),
            negotiation_style=classify_negotiation_style(acceptance_rate, avg_discount),
        )

    def suggest_counter_response(
        self,
        service: str,
        agent_id: str,
        our_price: float,
        their_counter: float,
        now: Optional[datetime] = None,
    ) -> CounterRecommendation:
        """
        Recommend a price to answer a counter-offer.

        The recommendation is never below their_counter.
        """
        if our_price <= 0:
            raise ValidationException(
                "our_price must be positive",
                field_errors=[{"field": "our_price", "error": "must be > 0"}]
            )
        if their_counter < 0:
            raise ValidationException(
                "their_counter must not be negative",
                field_errors=[{"field": "their_counter", "error": "must be >= 0"}]
            )

        insights = self.get_pricing_insights(service, now=now)
        midpoint = (our_price + their_counter) / 2

        if insights is None:
            return CounterRecommendation(
                recommended_price=max(their_counter, round_money(midpoint)),
                reasoning="No historical data. Suggesting midpoint between offers.",
                confidence="low",
            )

        profile = self.get_agent_pricing_profile(agent_id, now=now)
        discount_requested = (our_price - their_counter) / our_price * 100
        market_discount = insights.avg_counter_percentage

        if profile.negotiation_style == "aggressive_negotiator":
            recommended = midpoint
            reasoning = (
                f"Agent typically negotiates hard ({profile.avg_discount_requested:.0f}% avg discount). "
                f"Splitting difference."
            )
            confidence = "high"
        elif discount_requested > market_discount * tables.DISCOUNT_HOLD_FACTOR:
            recommended = our_price - our_price * market_discount / 100
            reasoning = (
                f"Counter is {discount_requested:.0f}% off (market avg: {market_discount:.0f}%). "
                f"Holding closer to market rate."
            )
            confidence = "medium"
        else:
            recommended = our_price - (our_price - their_counter) * tables.MEET_DISTANCE
            reasoning = (
                f"Counter is reasonable ({discount_requested:.0f}% vs market {market_discount:.0f}%). "
                f"Meeting 75% of the way."
            )
            confidence = "high"

        return CounterRecommendation(
            recommended_price=max(their_counter, round_money(recommended)),
            reasoning=reasoning,
            confidence=confidence,
        )

    def get_pricing_dashboard(self, now: Optional[datetime] = None) -> List[ServicePricingSummary]:
        """Per-service summary over the insights window, most negotiated first."""
        since = (now or utcnow()) - timedelta(days=settings.PRICING_INSIGHTS_WINDOW_DAYS)
        by_service: Dict[str, List[PricingHistoryEntry]] = {}
        for entry in self.store.list_pricing_history(since=since):
            by_service.setdefault(entry.service, []).append(entry)

        rows = []
        for service, entries in by_service.items():
            counts = {outcome: 0 for outcome in PricingOutcome}
            for e in entries:
                counts[e.outcome] += 1
            finals = [e.final_price for e in entries if e.final_price is not None]
            rows.append(ServicePricingSummary(
                service=service,
                total_negotiations=len(entries),
                accepted=counts[PricingOutcome.ACCEPTED],
                countered=counts[PricingOutcome.COUNTERED],
                rejected=counts[PricingOutcome.REJECTED],
                acceptance_rate=counts[PricingOutcome.ACCEPTED] / len(entries),
                avg_suggested=round_money(_mean([e.suggested_price for e in entries])),
                avg_final=round_money(_mean(finals)) if finals else None,
                avg_discount_pct=round(_mean([_discount_pct(e) for e in entries]), 1),
            ))

        rows.sort(key=lambda r: (-r.total_negotiations, r.service))
        return rows
