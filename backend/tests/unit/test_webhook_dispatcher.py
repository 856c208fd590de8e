"""
Unit tests for webhook delivery.

WHAT: Test payload shape, signing, headers and failure isolation
WHY: Subscribers verify signatures and one bad endpoint must not affect others
HOW: Mock HTTP with respx, await deliver() directly
"""

import asyncio
import hashlib
import hmac
import json
import time
from datetime import datetime

import httpx
import pytest
import respx

from unbound.models.agent import WebhookSubscription
from unbound.services.webhook_dispatcher import WebhookDispatcher, sign_payload
from unbound.store.memory import MemoryStore

T0 = datetime(2026, 3, 1, 12, 0, 0)


def subscribe(store, webhook_id, url, events=("deal.accepted",), secret=None, active=True):
    return store.create_webhook(WebhookSubscription(
        id=webhook_id,
        agent_id="agent-1",
        url=url,
        events=list(events),
        secret=secret,
        active=active,
        created_at=T0,
    ))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def webhook_dispatcher(store):
    return WebhookDispatcher(store, timeout=2.0)


@pytest.mark.unit
@pytest.mark.webhooks
def test_sign_payload_matches_hmac():
    body = b'{"event":"deal.accepted"}'
    expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

    assert sign_payload("s3cret", body) == f"sha256={expected}"


@pytest.mark.unit
@pytest.mark.webhooks
class TestDeliver:
    """Awaited delivery to subscribers."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_signed_delivery(self, store, webhook_dispatcher):
        """Body carries event/timestamp/data/webhook_id and is signed."""
        subscribe(store, "wh_1", "https://agent.example.com/hook", secret="s3cret")
        route = respx.post("https://agent.example.com/hook").mock(return_value=httpx.Response(200))

        result = await webhook_dispatcher.deliver("deal.accepted", {"deal_id": "deal_1"})

        assert result == [True]
        request = route.calls.last.request
        payload = json.loads(request.content)
        assert payload["event"] == "deal.accepted"
        assert payload["data"] == {"deal_id": "deal_1"}
        assert payload["webhook_id"] == "wh_1"
        assert payload["timestamp"].endswith("Z")
        assert request.headers["X-Webhook-Event"] == "deal.accepted"
        assert request.headers["X-Webhook-Timestamp"] == payload["timestamp"]
        assert request.headers["User-Agent"] == "unbound-webhook/1.0"
        assert request.headers["X-Webhook-Signature"] == sign_payload("s3cret", request.content)

    @pytest.mark.asyncio
    @respx.mock
    async def test_unsigned_delivery_has_no_signature(self, store, webhook_dispatcher):
        subscribe(store, "wh_1", "https://agent.example.com/hook")
        route = respx.post("https://agent.example.com/hook").mock(return_value=httpx.Response(204))

        assert await webhook_dispatcher.deliver("deal.accepted", {}) == [True]
        assert "X-Webhook-Signature" not in route.calls.last.request.headers

    @pytest.mark.asyncio
    @respx.mock
    async def test_failures_are_isolated(self, store, webhook_dispatcher):
        """A 500 and a timeout do not stop the healthy subscriber."""
        subscribe(store, "wh_1", "https://broken.example.com/hook")
        subscribe(store, "wh_2", "https://slow.example.com/hook")
        subscribe(store, "wh_3", "https://ok.example.com/hook")
        respx.post("https://broken.example.com/hook").mock(return_value=httpx.Response(500))
        respx.post("https://slow.example.com/hook").mock(side_effect=httpx.ReadTimeout("timed out"))
        ok = respx.post("https://ok.example.com/hook").mock(return_value=httpx.Response(200))

        result = await webhook_dispatcher.deliver("deal.accepted", {"deal_id": "deal_1"})

        assert result == [False, False, True]
        assert ok.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_only_matching_active_subscribers(self, store, webhook_dispatcher):
        subscribe(store, "wh_1", "https://a.example.com/hook", events=["proof.verified"])
        subscribe(store, "wh_2", "https://b.example.com/hook", active=False)
        other = respx.post("https://a.example.com/hook").mock(return_value=httpx.Response(200))
        inactive = respx.post("https://b.example.com/hook").mock(return_value=httpx.Response(200))

        assert await webhook_dispatcher.deliver("deal.accepted", {}) == []
        assert not other.called
        assert not inactive.called


@pytest.mark.unit
@pytest.mark.webhooks
class TestDispatch:
    """Fire-and-forget scheduling."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_dispatch_inside_running_loop(self, store, webhook_dispatcher):
        subscribe(store, "wh_1", "https://agent.example.com/hook")
        route = respx.post("https://agent.example.com/hook").mock(return_value=httpx.Response(200))

        assert webhook_dispatcher.dispatch("deal.accepted", {"deal_id": "deal_1"}) is None

        for _ in range(50):
            if route.called:
                break
            await asyncio.sleep(0.02)
        assert route.called

    @respx.mock
    def test_dispatch_without_loop_uses_background_thread(self, store, webhook_dispatcher):
        subscribe(store, "wh_1", "https://agent.example.com/hook")
        route = respx.post("https://agent.example.com/hook").mock(return_value=httpx.Response(200))

        webhook_dispatcher.dispatch("deal.accepted", {"deal_id": "deal_1"})

        deadline = time.monotonic() + 2
        while not route.called and time.monotonic() < deadline:
            time.sleep(0.02)
        assert route.called

    @respx.mock
    def test_dispatch_swallows_delivery_errors(self, store, webhook_dispatcher):
        subscribe(store, "wh_1", "https://agent.example.com/hook")
        route = respx.post("https://agent.example.com/hook").mock(side_effect=httpx.ConnectError("refused"))

        webhook_dispatcher.dispatch("deal.accepted", {})

        deadline = time.monotonic() + 2
        while not route.called and time.monotonic() < deadline:
            time.sleep(0.02)
        assert route.called
