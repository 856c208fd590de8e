"""
Unit tests for the store implementations.

WHAT: Same behavioural checks against the in-memory and SQL stores
WHY: The engines rely on identical compare-and-swap semantics from both
HOW: Parametrized fixture yielding a MemoryStore or a SqlStore on fresh tables
"""

from datetime import datetime, timedelta

import pytest

from unbound.models.agent import Agent, WebhookSubscription
from unbound.models.deal import Deal, DealAction, DealMessage, DealStatus
from unbound.models.pricing import PricingHistoryEntry, PricingOutcome
from unbound.models.proof import Proof, ProofStatus
from unbound.store import MemoryStore, StatusConflict
from unbound.utils.exceptions import DealNotFoundException, ProofNotFoundException

T0 = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return MemoryStore()
    return request.getfixturevalue("sql_store")


def make_deal(deal_id="deal_1_aaaaaaaa", proposer="agent-1", status=DealStatus.PROPOSED, at=T0):
    return Deal(
        id=deal_id,
        proposer_id=proposer,
        target_id="unbound",
        service="banking",
        terms={"amount": 5000, "suggested_price": {"amount": 60.0, "breakdown": "base"}},
        status=status,
        created_at=at,
        updated_at=at,
    )


def make_message(deal_id="deal_1_aaaaaaaa", action=DealAction.PROPOSE, sender="agent-1", at=T0, **content):
    return DealMessage(deal_id=deal_id, from_agent=sender, action=action, content=content, created_at=at)


def make_proof(proof_id="proof_1_aaaaaa", deal_id="deal-x", at=T0):
    return Proof(
        id=proof_id,
        deal_id=deal_id,
        operator_id="operator-7",
        status=ProofStatus.COMMITTED,
        plan_hash="a" * 64,
        deadline=at + timedelta(hours=72),
        created_at=at,
        updated_at=at,
    )


@pytest.mark.unit
class TestDealStorage:

    def test_create_and_read(self, store):
        store.create_deal(make_deal(), [make_message(text="hi")])

        deal = store.get_deal("deal_1_aaaaaaaa")
        messages = store.get_deal_messages("deal_1_aaaaaaaa")

        assert deal.status == DealStatus.PROPOSED
        assert deal.terms["suggested_price"]["amount"] == 60.0
        assert len(messages) == 1
        assert messages[0].id is not None
        assert messages[0].content == {"text": "hi"}
        assert store.get_deal("deal_missing") is None

    def test_create_with_full_opening_transcript(self, store):
        store.create_deal(
            make_deal(status=DealStatus.ACCEPTED),
            [make_message(), make_message(action=DealAction.ACCEPT, sender="unbound", final_price=60.0)],
        )

        assert store.get_deal("deal_1_aaaaaaaa").status == DealStatus.ACCEPTED
        messages = store.get_deal_messages("deal_1_aaaaaaaa")
        assert [(m.action, m.from_agent) for m in messages] == [
            (DealAction.PROPOSE, "agent-1"),
            (DealAction.ACCEPT, "unbound"),
        ]
        assert messages[0].id < messages[1].id

    def test_transition_applies_status_terms_and_message(self, store):
        store.create_deal(make_deal(), [make_message()])
        later = T0 + timedelta(minutes=3)

        deal = store.transition_deal(
            "deal_1_aaaaaaaa",
            {DealStatus.PROPOSED, DealStatus.COUNTERED},
            DealStatus.COUNTERED,
            make_message(action=DealAction.COUNTER, at=later, price_usdc=50),
            later,
            terms_update={"latest_counter_price": 50.0},
        )

        assert deal.status == DealStatus.COUNTERED
        assert deal.updated_at == later
        assert deal.terms["latest_counter_price"] == 50.0
        assert deal.terms["amount"] == 5000
        messages = store.get_deal_messages("deal_1_aaaaaaaa")
        assert [m.action for m in messages] == [DealAction.PROPOSE, DealAction.COUNTER]
        assert messages[0].id < messages[1].id

    def test_transition_conflict_changes_nothing(self, store):
        store.create_deal(make_deal(status=DealStatus.REJECTED), [make_message()])

        with pytest.raises(StatusConflict) as exc_info:
            store.transition_deal(
                "deal_1_aaaaaaaa", {DealStatus.PROPOSED}, DealStatus.ACCEPTED,
                make_message(action=DealAction.ACCEPT), T0,
            )

        assert exc_info.value.current_status == "rejected"
        assert store.get_deal("deal_1_aaaaaaaa").status == DealStatus.REJECTED
        assert len(store.get_deal_messages("deal_1_aaaaaaaa")) == 1

    def test_transition_unknown_deal(self, store):
        with pytest.raises(DealNotFoundException):
            store.transition_deal(
                "deal_missing", {DealStatus.PROPOSED}, DealStatus.ACCEPTED,
                make_message(deal_id="deal_missing"), T0,
            )

    def test_message_only_transition(self, store):
        store.create_deal(make_deal(status=DealStatus.ACCEPTED), [make_message()])

        deal = store.transition_deal(
            "deal_1_aaaaaaaa", {DealStatus.ACCEPTED}, None,
            make_message(action=DealAction.MESSAGE, text="paid"), T0 + timedelta(hours=1),
        )

        assert deal.status == DealStatus.ACCEPTED
        assert deal.updated_at == T0 + timedelta(hours=1)

    def test_list_and_stale(self, store):
        store.create_deal(make_deal("deal_a", proposer="agent-1", at=T0), [make_message("deal_a")])
        store.create_deal(
            make_deal("deal_b", proposer="agent-2", status=DealStatus.ACCEPTED, at=T0 + timedelta(hours=1)),
            [make_message("deal_b")],
        )
        store.create_deal(make_deal("deal_c", proposer="agent-1", at=T0 + timedelta(hours=2)), [make_message("deal_c")])

        assert [d.id for d in store.list_deals()] == ["deal_c", "deal_b", "deal_a"]
        assert [d.id for d in store.list_deals(agent_id="agent-1")] == ["deal_c", "deal_a"]
        assert [d.id for d in store.list_deals(status=DealStatus.ACCEPTED)] == ["deal_b"]
        assert [d.id for d in store.list_deals(limit=1)] == ["deal_c"]

        stale = store.list_stale_deals({DealStatus.PROPOSED, DealStatus.COUNTERED}, T0 + timedelta(hours=3))
        assert [d.id for d in stale] == ["deal_a", "deal_c"]


@pytest.mark.unit
class TestProofStorage:

    def test_transition_and_conflict(self, store):
        store.create_proof(make_proof())
        later = T0 + timedelta(hours=1)

        proof = store.transition_proof("proof_1_aaaaaa", ProofStatus.COMMITTED, {
            "status": ProofStatus.EVIDENCE_SUBMITTED,
            "plan_text": "the plan",
            "evidence": [{"type": "photo", "description": "front door", "url": None}],
            "challenge_window_ends": later + timedelta(hours=24),
        }, later)

        assert proof.status == ProofStatus.EVIDENCE_SUBMITTED
        assert proof.evidence[0].type == "photo"
        assert proof.updated_at == later
        assert proof.plan_hash == "a" * 64

        with pytest.raises(StatusConflict) as exc_info:
            store.transition_proof("proof_1_aaaaaa", ProofStatus.COMMITTED, {"status": ProofStatus.EXPIRED}, later)
        assert exc_info.value.current_status == "evidence_submitted"

    def test_challenges_round_trip(self, store):
        store.create_proof(make_proof())
        store.transition_proof("proof_1_aaaaaa", ProofStatus.COMMITTED, {"status": ProofStatus.EVIDENCE_SUBMITTED}, T0)

        proof = store.transition_proof("proof_1_aaaaaa", ProofStatus.EVIDENCE_SUBMITTED, {
            "status": ProofStatus.CHALLENGED,
            "challenges": [{"challenger": "agent-1", "reason": "blurry", "timestamp": "2026-03-01T13:00:00"}],
        }, T0)

        assert proof.challenges[0].challenger == "agent-1"
        assert proof.challenges[0].timestamp == datetime(2026, 3, 1, 13, 0, 0)

    def test_unknown_proof(self, store):
        with pytest.raises(ProofNotFoundException):
            store.transition_proof("proof_missing", ProofStatus.COMMITTED, {"status": ProofStatus.EXPIRED}, T0)

    def test_protected_fields(self, store):
        store.create_proof(make_proof())

        with pytest.raises(ValueError):
            store.transition_proof("proof_1_aaaaaa", ProofStatus.COMMITTED, {"plan_hash": "b" * 64}, T0)
        assert store.get_proof("proof_1_aaaaaa").plan_hash == "a" * 64

    def test_list_filters(self, store):
        store.create_proof(make_proof("proof_a", deal_id="deal-x"))
        store.create_proof(make_proof("proof_b", deal_id="deal-y", at=T0 + timedelta(minutes=1)))

        assert [p.id for p in store.list_proofs()] == ["proof_b", "proof_a"]
        assert [p.id for p in store.list_proofs(deal_id="deal-x")] == ["proof_a"]
        assert [p.id for p in store.list_proofs(status=ProofStatus.COMMITTED)] == ["proof_b", "proof_a"]


@pytest.mark.unit
class TestRegistryStorage:

    def test_upsert_keeps_registration_time(self, store):
        store.upsert_agent(Agent(id="agent-1", name="Bot", capabilities=["Trading"], registered_at=T0, last_seen=T0))
        later = T0 + timedelta(days=1)

        agent = store.upsert_agent(Agent(
            id="agent-1", name="Bot v2", capabilities=["trading", "research"], registered_at=later, last_seen=later,
        ))

        assert agent.name == "Bot v2"
        assert agent.registered_at == T0
        assert agent.last_seen == later

    def test_capability_substring_search(self, store):
        store.upsert_agent(Agent(id="a1", name="A", capabilities=["Data-Analysis"], registered_at=T0, last_seen=T0))
        store.upsert_agent(Agent(id="a2", name="B", capabilities=["trading"], registered_at=T0, last_seen=T0))

        assert [a.id for a in store.list_agents(capability="analysis")] == ["a1"]
        assert len(store.list_agents()) == 2
        assert store.list_agents(capability="cooking") == []

    def test_webhooks_by_event(self, store):
        store.create_webhook(WebhookSubscription(
            id="wh_1", agent_id="agent-1", url="https://a.example.com/hook",
            events=["deal.accepted"], created_at=T0,
        ))
        store.create_webhook(WebhookSubscription(
            id="wh_2", agent_id="agent-2", url="https://b.example.com/hook",
            events=["deal.accepted", "proof.verified"], active=False, created_at=T0,
        ))

        assert [w.id for w in store.get_webhooks_for_event("deal.accepted")] == ["wh_1"]
        assert store.get_webhooks_for_event("proof.verified") == []
        assert [w.id for w in store.list_webhooks(agent_id="agent-2")] == ["wh_2"]
        assert store.delete_webhook("wh_1") is True
        assert store.delete_webhook("wh_1") is False


@pytest.mark.unit
def test_pricing_history_window(store):
    for hours in (0, 1, 2):
        store.add_pricing_history(PricingHistoryEntry(
            service="banking",
            suggested_price=60.0,
            agent_id="agent-1",
            outcome=PricingOutcome.ACCEPTED,
            final_price=60.0,
            created_at=T0 + timedelta(hours=hours),
        ))

    entries = store.list_pricing_history(service="banking", since=T0)

    assert [e.created_at for e in entries] == [T0 + timedelta(hours=1), T0 + timedelta(hours=2)]
    assert all(e.id is not None for e in entries)
    assert store.list_pricing_history(agent_id="agent-2") == []
