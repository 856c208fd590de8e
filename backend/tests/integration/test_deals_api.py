"""
Integration tests for the deal endpoints.

WHAT: Full negotiation flows over HTTP
WHY: Ensure API contract compliance and error status mapping
HOW: FastAPI TestClient wired to in-memory services
"""

import pytest

from unbound.services.deal_engine import DealEngine

BANKING_TERMS = {"amount": 5000, "type": "ach_transfer"}


def propose(client, **overrides):
    body = {"agent_id": "agent-1", "service": "banking", "terms": dict(BANKING_TERMS)}
    body.update(overrides)
    return client.post("/api/v1/deals", json=body)


def act(client, deal_id, action, **fields):
    return client.post(f"/api/v1/deals/{deal_id}/actions", json={"agent_id": "agent-1", "action": action, **fields})


@pytest.mark.integration
@pytest.mark.deals
class TestProposeEndpoint:

    def test_propose_without_max_price(self, client, dispatcher):
        response = propose(client)

        assert response.status_code == 201
        data = response.json()
        assert data["auto_accepted"] is False
        assert data["payment"] is None
        assert data["deal"]["status"] == "proposed"
        assert data["deal"]["target_id"] == "unbound"
        assert data["deal"]["terms"]["suggested_price"]["amount"] == 60.0
        assert data["message"]["action"] == "propose"
        assert dispatcher.names() == ["deal.proposed"]

    def test_auto_accept_returns_payment(self, client, dispatcher):
        terms = {**BANKING_TERMS, "max_price_usdc": 60}

        data = propose(client, terms=terms).json()

        assert data["auto_accepted"] is True
        assert data["deal"]["status"] == "accepted"
        assert data["payment"]["amount"] == "60.00"
        assert data["payment"]["currency"] == "USDC"
        assert data["payment"]["memo"] == data["deal"]["id"]
        assert dispatcher.names() == ["deal.proposed", "deal.accepted"]

    def test_missing_fields_is_validation_error(self, client):
        response = client.post("/api/v1/deals", json={"agent_id": "agent-1"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert body["category"] == "validation"
        assert body["timestamp"].endswith("Z")
        assert {tuple(e["loc"]) for e in body["details"]} >= {("body", "service"), ("body", "terms")}

    def test_invalid_terms(self, client):
        response = propose(client, terms={"amount": -5})

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"


@pytest.mark.integration
@pytest.mark.deals
class TestNegotiationFlow:

    def test_counter_accept_complete(self, client):
        deal_id = propose(client).json()["deal"]["id"]

        missing = act(client, deal_id, "counter")
        assert missing.status_code == 400
        assert missing.json()["error"] == "MISSING_COUNTER_PRICE"

        countered = act(client, deal_id, "counter", counter_terms={"price_usdc": 50, "justification": "volume"})
        assert countered.status_code == 200
        assert countered.json()["deal"]["status"] == "countered"
        assert countered.json()["message"]["content"]["message"] == "Counter-offer: $50.00 USDC"

        accepted = act(client, deal_id, "accept")
        assert accepted.status_code == 200
        assert accepted.json()["deal"]["terms"]["final_price"] == 50.0
        assert accepted.json()["payment"]["amount"] == "50.00"

        late_reject = act(client, deal_id, "reject", reason="changed mind")
        assert late_reject.status_code == 409
        assert late_reject.json()["error"] == "INVALID_TRANSITION"

        completed = client.post(f"/api/v1/deals/{deal_id}/complete", json={"agent_id": "agent-1"})
        assert completed.status_code == 200
        assert completed.json()["deal"]["status"] == "completed"

        closed = act(client, deal_id, "message", message="thanks")
        assert closed.status_code == 409
        assert closed.json()["error"] == "DEAL_CLOSED"
        assert closed.json()["details"]["current_status"] == "completed"

    def test_deal_detail(self, client):
        deal_id = propose(client).json()["deal"]["id"]
        act(client, deal_id, "message", message="any discount?")

        response = client.get(f"/api/v1/deals/{deal_id}")

        assert response.status_code == 200
        data = response.json()
        assert [m["action"] for m in data["messages"]] == ["propose", "message"]
        assert data["next_actions"] == ["accept", "counter", "reject", "message"]
        assert data["payment"] is None

    def test_reject_closes_deal(self, client):
        deal_id = propose(client).json()["deal"]["id"]

        rejected = act(client, deal_id, "reject", reason="too expensive")
        assert rejected.json()["deal"]["status"] == "rejected"

        detail = client.get(f"/api/v1/deals/{deal_id}").json()
        assert detail["next_actions"] == []

    def test_complete_requires_accepted(self, client):
        deal_id = propose(client).json()["deal"]["id"]

        response = client.post(f"/api/v1/deals/{deal_id}/complete")

        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_TRANSITION"

    def test_unknown_action(self, client):
        deal_id = propose(client).json()["deal"]["id"]

        response = act(client, deal_id, "haggle")

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_ACTION"

    def test_unknown_deal(self, client):
        assert act(client, "deal_missing", "accept").status_code == 404
        response = client.get("/api/v1/deals/deal_missing")
        assert response.status_code == 404
        assert response.json()["error"] == "DEAL_NOT_FOUND"


@pytest.mark.integration
@pytest.mark.deals
class TestDealQueries:

    def test_list_filters(self, client):
        propose(client)
        propose(client, agent_id="agent-2", terms={**BANKING_TERMS, "max_price_usdc": 100})

        mine = client.get("/api/v1/deals", params={"agent_id": "agent-2"}).json()
        accepted = client.get("/api/v1/deals", params={"status": "accepted"}).json()

        assert mine["count"] == 1
        assert accepted["count"] == 1
        assert accepted["deals"][0]["proposer_id"] == "agent-2"

    def test_list_unknown_status(self, client):
        response = client.get("/api/v1/deals", params={"status": "haggling"})

        assert response.status_code == 400

    def test_list_limit_bounds(self, client):
        assert client.get("/api/v1/deals", params={"limit": 0}).status_code == 400

    def test_expire_sweep(self, client, services, memory_store, oracle, dispatcher, clock):
        services.deals = DealEngine(memory_store, oracle, dispatcher, clock=clock)
        deal_id = propose(client).json()["deal"]["id"]
        clock.advance(hours=169)

        response = client.post("/api/v1/deals/expire")

        assert response.json() == {"expired": [deal_id], "count": 1}
        detail = client.get(f"/api/v1/deals/{deal_id}").json()
        assert detail["deal"]["status"] == "expired"
        assert detail["next_actions"] == ["message"]
