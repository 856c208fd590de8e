"""
Unit tests for the pricing oracle.

WHAT: Price suggestions, insights, agent profiles, counter guidance, dashboard
WHY: Deals auto-accept against these numbers, so they must be exact and stable
HOW: Pure function checks plus history recorded into an in-memory store
"""

from datetime import timedelta

import pytest

from unbound.models.pricing import PricingOutcome
from unbound.services.pricing_oracle import (
    classify_negotiation_style,
    round_money,
    suggest_price,
)
from unbound.utils.exceptions import ValidationException


def record(oracle, clock, service, outcome, suggested, agent_id="market", final=None, counter=None, days_ago=0):
    return oracle.record_pricing_outcome(
        service=service,
        terms={},
        suggested_price=suggested,
        agent_id=agent_id,
        outcome=outcome,
        final_price=final,
        counter_price=counter,
        now=clock.now - timedelta(days=days_ago),
    )


@pytest.mark.unit
@pytest.mark.pricing
class TestSuggestPrice:
    """Table-driven price suggestions."""

    @pytest.mark.parametrize("service,terms,expected", [
        ("banking", {"amount": 5000, "type": "ach_transfer"}, 60.00),
        ("banking", {"amount": 1000, "type": "sepa_transfer"}, 15.00),
        ("banking", {"amount": 2000, "type": "international_wire"}, 55.00),
        ("banking", {}, 20.00),
        ("physical", {"estimated_duration": 3}, 172.50),
        ("physical", {}, 115.00),
        ("employment", {"hours_per_month": 40}, 2300.00),
        ("proxy", {"proxy_type": "business_registration"}, 1000.00),
        ("proxy", {"proxy_type": "equipment_ownership"}, 200.00),
        ("proxy", {}, 500.00),
        ("backup", {"plan": "premium"}, 100.00),
        ("backup", {}, 30.00),
        ("translation", {"language": "fr"}, 50.00),
    ])
    def test_table_prices(self, service, terms, expected):
        assert suggest_price(service, terms).amount == expected

    def test_banking_breakdown(self):
        suggestion = suggest_price("banking", {"amount": 5000, "type": "ach_transfer"})
        assert suggestion.breakdown == "base: $10 + 1.0% of $5000"

    def test_custom_service_breakdown(self):
        assert suggest_price("anything", {}).breakdown == "Custom service - base estimate"

    def test_unknown_enumerated_value_falls_back_to_default(self):
        """An unrecognized transfer type is priced like the default ACH transfer."""
        assert suggest_price("banking", {"amount": 1000, "type": "carrier_pigeon"}).amount == 20.00
        assert suggest_price("backup", {"plan": "platinum"}).amount == 30.00

    def test_deterministic(self):
        terms = {"amount": 1234.56, "type": "international_wire"}
        first = suggest_price("banking", terms)
        for _ in range(5):
            assert suggest_price("banking", dict(terms)) == first

    def test_malformed_number_is_validation_error(self):
        with pytest.raises(ValidationException) as exc_info:
            suggest_price("banking", {"amount": "lots"})
        assert exc_info.value.code == "VALIDATION_ERROR"

    def test_non_positive_duration_rejected(self):
        with pytest.raises(ValidationException):
            suggest_price("physical", {"estimated_duration": 0})

    def test_terms_must_be_mapping(self):
        with pytest.raises(ValidationException):
            suggest_price("banking", ["amount", 5000])

    def test_round_money_half_up(self):
        assert round_money(2.675) == 2.68
        assert round_money(0.125) == 0.13
        assert round_money(10) == 10.0


@pytest.mark.unit
@pytest.mark.pricing
class TestPricingInsights:
    """Windowed aggregates over pricing history."""

    def test_no_history_is_none(self, oracle, clock):
        assert oracle.get_pricing_insights("banking", now=clock.now) is None

    def test_mixed_outcomes(self, oracle, clock):
        record(oracle, clock, "banking", PricingOutcome.ACCEPTED, 60, final=60)
        record(oracle, clock, "banking", PricingOutcome.COUNTERED, 60, counter=48)
        record(oracle, clock, "banking", PricingOutcome.REJECTED, 60)

        insights = oracle.get_pricing_insights("banking", now=clock.now)

        assert insights.sample_size == 3
        assert insights.base_price == 60.00
        assert insights.acceptance_rate == pytest.approx(1 / 3)
        assert insights.avg_counter_percentage == pytest.approx(20 / 3)
        assert insights.recommended_initial == 60.00
        assert insights.price_elasticity == pytest.approx(2 / 3)

    def test_low_acceptance_raises_recommendation(self, oracle, clock):
        for _ in range(4):
            record(oracle, clock, "backup", PricingOutcome.REJECTED, 100)

        insights = oracle.get_pricing_insights("backup", now=clock.now)

        assert insights.acceptance_rate == 0
        assert insights.recommended_initial == 110.00

    def test_high_acceptance_lowers_recommendation(self, oracle, clock):
        for _ in range(3):
            record(oracle, clock, "backup", PricingOutcome.ACCEPTED, 100, final=100)

        assert oracle.get_pricing_insights("backup", now=clock.now).recommended_initial == 95.00

    def test_entries_outside_window_are_ignored(self, oracle, clock):
        record(oracle, clock, "proxy", PricingOutcome.ACCEPTED, 500, final=500, days_ago=31)

        assert oracle.get_pricing_insights("proxy", now=clock.now) is None

    def test_other_services_are_ignored(self, oracle, clock):
        record(oracle, clock, "proxy", PricingOutcome.ACCEPTED, 500, final=500)

        assert oracle.get_pricing_insights("banking", now=clock.now) is None


@pytest.mark.unit
@pytest.mark.pricing
class TestAgentProfile:
    """Negotiation style classification."""

    def test_new_agent(self, oracle, clock):
        profile = oracle.get_agent_pricing_profile("nobody", now=clock.now)

        assert profile.is_new_agent is True
        assert profile.negotiation_style == "unknown"
        assert profile.total_deals == 0

    def test_profile_aggregates(self, oracle, clock):
        record(oracle, clock, "banking", PricingOutcome.COUNTERED, 100, agent_id="haggler", counter=70, days_ago=2)
        record(oracle, clock, "physical", PricingOutcome.COUNTERED, 100, agent_id="haggler", counter=70, days_ago=1)

        profile = oracle.get_agent_pricing_profile("haggler", now=clock.now)

        assert profile.is_new_agent is False
        assert profile.total_deals == 2
        assert profile.acceptance_rate == 0
        assert profile.avg_discount_requested == pytest.approx(30)
        assert profile.negotiation_style == "aggressive_negotiator"
        assert profile.services_used == ["banking", "physical"]
        assert profile.last_deal_at == clock.now - timedelta(days=1)

    def test_profile_window_is_90_days(self, oracle, clock):
        record(oracle, clock, "banking", PricingOutcome.ACCEPTED, 100, agent_id="old", final=100, days_ago=91)

        assert oracle.get_agent_pricing_profile("old", now=clock.now).is_new_agent is True

    @pytest.mark.parametrize("acceptance,discount,style", [
        (0.9, 50.0, "quick_decider"),
        (0.5, 20.0, "aggressive_negotiator"),
        (0.5, 15.0, "moderate_negotiator"),
        (0.5, 5.0, "moderate_negotiator"),
        (0.5, 4.9, "balanced"),
        (0.8, 0.0, "balanced"),
    ])
    def test_classification(self, acceptance, discount, style):
        assert classify_negotiation_style(acceptance, discount) == style


@pytest.mark.unit
@pytest.mark.pricing
class TestCounterResponse:
    """Counter-offer recommendations."""

    @pytest.fixture
    def market(self, oracle, clock):
        """Banking history with a 5% average counter discount and 50% acceptance."""
        record(oracle, clock, "banking", PricingOutcome.COUNTERED, 100, counter=90)
        record(oracle, clock, "banking", PricingOutcome.COUNTERED, 100, counter=90)
        record(oracle, clock, "banking", PricingOutcome.ACCEPTED, 100, final=100)
        record(oracle, clock, "banking", PricingOutcome.ACCEPTED, 100, final=100)
        return oracle

    def test_no_history_splits_the_difference(self, oracle, clock):
        rec = oracle.suggest_counter_response("banking", "agent-a", 100, 80, now=clock.now)

        assert rec.recommended_price == 90.00
        assert rec.confidence == "low"

    def test_reasonable_counter_meets_most_of_the_way(self, market, clock):
        rec = market.suggest_counter_response("banking", "agent-a", 100, 95, now=clock.now)

        assert rec.recommended_price == 96.25
        assert rec.confidence == "high"

    def test_greedy_counter_holds_near_market(self, market, clock):
        rec = market.suggest_counter_response("banking", "agent-a", 100, 80, now=clock.now)

        assert rec.recommended_price == 95.00
        assert rec.confidence == "medium"

    def test_aggressive_agent_gets_midpoint(self, market, clock):
        record(market, clock, "physical", PricingOutcome.COUNTERED, 100, agent_id="haggler", counter=70)
        record(market, clock, "physical", PricingOutcome.COUNTERED, 100, agent_id="haggler", counter=70)

        rec = market.suggest_counter_response("banking", "haggler", 100, 80, now=clock.now)

        assert rec.recommended_price == 90.00
        assert rec.confidence == "high"

    @pytest.mark.parametrize("our,their", [(100, 120), (100, 100), (50, 49.99), (10, 0)])
    def test_never_below_their_counter(self, market, clock, our, their):
        rec = market.suggest_counter_response("banking", "agent-a", our, their, now=clock.now)
        assert rec.recommended_price >= their

    def test_rejects_non_positive_price(self, oracle):
        with pytest.raises(ValidationException):
            oracle.suggest_counter_response("banking", "agent-a", 0, 10)

    def test_rejects_negative_counter(self, oracle):
        with pytest.raises(ValidationException):
            oracle.suggest_counter_response("banking", "agent-a", 100, -1)


@pytest.mark.unit
@pytest.mark.pricing
def test_dashboard_orders_by_volume(oracle, clock):
    record(oracle, clock, "backup", PricingOutcome.ACCEPTED, 30, final=30)
    record(oracle, clock, "banking", PricingOutcome.ACCEPTED, 60, final=60)
    record(oracle, clock, "banking", PricingOutcome.COUNTERED, 60, counter=54)
    record(oracle, clock, "banking", PricingOutcome.REJECTED, 60)

    rows = oracle.get_pricing_dashboard(now=clock.now)

    assert [r.service for r in rows] == ["banking", "backup"]
    banking = rows[0]
    assert (banking.accepted, banking.countered, banking.rejected) == (1, 1, 1)
    assert banking.avg_suggested == 60.00
    assert banking.avg_final == 60.00
    assert banking.avg_discount_pct == pytest.approx(3.3)
