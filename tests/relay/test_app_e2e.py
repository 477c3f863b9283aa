"""End-to-end tests of the FastAPI application over an ASGI transport.

Each test wires a real context (in-memory backend, fake GitHub API, private
metrics registry) into the app and drives it with signed deliveries.
"""

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from src.relay.context import build_context
from src.relay.main import create_app
from src.relay.state.backend import InMemoryBackend
from src.relay.state.store import CORRELATION_PREFIX, CORRELATION_TTL_SECONDS
from tests.relay.factories import (
    APP_ID,
    installation_payload,
    sign,
    workflow_run_payload,
)


WEBHOOK_PATH = "/webhooks/hooks-abc123"


def run_async(coro):
    return asyncio.run(coro)


def _headers(event: str, body: bytes, signature=None):
    headers = {
        "content-type": "application/json",
        "x-github-event": event,
        "x-github-delivery": "72d3162e-cc78-11e3-81ab-4c9367dc0958",
    }
    headers["x-hub-signature-256"] = sign(body) if signature is None else signature
    return headers


class UnreachableBackend(InMemoryBackend):
    async def ping(self) -> bool:
        return False


@pytest.fixture
def relay(make_settings, fake_github):
    """Runs a scenario against a started app and returns its result."""

    def _run(scenario, backend=None, **settings_overrides):
        async def wrapper():
            store = backend or InMemoryBackend()
            ctx = build_context(
                make_settings(**settings_overrides),
                backend=store,
                transport=fake_github.transport,
                registry=CollectorRegistry(),
            )
            app = create_app(context=ctx)
            await ctx.start()
            try:
                transport = httpx.ASGITransport(app=app)
                async with httpx.AsyncClient(transport=transport, base_url="http://relay.test") as client:
                    return await scenario(client, ctx, store)
            finally:
                await ctx.close()

        return run_async(wrapper())

    return _run


async def _bootstrap(client) -> httpx.Response:
    body = json.dumps(installation_payload()).encode("utf-8")
    return await client.post(WEBHOOK_PATH, content=body, headers=_headers("installation", body))


# ---------------------------------------------------------------------------
# Webhook authentication
# ---------------------------------------------------------------------------


class TestWebhookRejections:

    def test_bad_signature_is_empty_404(self, relay, fake_github):
        async def scenario(client, ctx, store):
            body = json.dumps(workflow_run_payload()).encode("utf-8")
            headers = _headers("workflow_run", body, signature=sign(b"something else"))
            return await client.post(WEBHOOK_PATH, content=body, headers=headers)

        response = relay(scenario)

        assert response.status_code == 404
        assert response.content == b""
        assert fake_github.requests == []

    def test_missing_event_header_is_404(self, relay):
        async def scenario(client, ctx, store):
            body = b"{}"
            headers = _headers("workflow_run", body)
            del headers["x-github-event"]
            return await client.post(WEBHOOK_PATH, content=body, headers=headers)

        assert relay(scenario).status_code == 404

    def test_unknown_slug_is_404(self, relay):
        async def scenario(client, ctx, store):
            body = b"{}"
            return await client.post("/webhooks/guess", content=body, headers=_headers("ping", body))

        assert relay(scenario).status_code == 404

    def test_oversized_body_is_413(self, relay):
        async def scenario(client, ctx, store):
            body = json.dumps(workflow_run_payload()).encode("utf-8")
            return await client.post(WEBHOOK_PATH, content=body, headers=_headers("workflow_run", body))

        assert relay(scenario, max_body_bytes=64).status_code == 413

    def test_signed_invalid_json_is_400(self, relay):
        async def scenario(client, ctx, store):
            body = b"{definitely not json"
            return await client.post(WEBHOOK_PATH, content=body, headers=_headers("workflow_run", body))

        assert relay(scenario).status_code == 400

    def test_signed_incomplete_payload_names_field(self, relay):
        async def scenario(client, ctx, store):
            payload = workflow_run_payload()
            del payload["workflow_run"]["head_sha"]
            body = json.dumps(payload).encode("utf-8")
            return await client.post(WEBHOOK_PATH, content=body, headers=_headers("workflow_run", body))

        response = relay(scenario)

        assert response.status_code == 400
        assert response.json() == {"status": "invalid_payload", "field": "workflow_run.head_sha"}


# ---------------------------------------------------------------------------
# Webhook dispatch
# ---------------------------------------------------------------------------


class TestWebhookDispatch:

    def test_installation_bootstraps_identity(self, relay):
        async def scenario(client, ctx, store):
            first = await _bootstrap(client)
            second = await _bootstrap(client)
            return first, second, await store.get("app_id")

        first, second, app_id = relay(scenario)

        assert (first.status_code, first.json()) == (202, {"status": "bootstrapped"})
        assert second.json() == {"status": "already_bootstrapped"}
        assert app_id == str(APP_ID)

    def test_unhandled_event_acknowledged(self, relay, fake_github):
        async def scenario(client, ctx, store):
            body = b'{"zen": "Keep it logically awesome.", "hook_id": 1}'
            return await client.post(WEBHOOK_PATH, content=body, headers=_headers("ping", body))

        response = relay(scenario)

        assert (response.status_code, response.json()) == (202, {"status": "unhandled"})
        assert fake_github.requests == []

    def test_signed_workflow_run_requested_creates_one_check_run(self, relay, fake_github):
        async def scenario(client, ctx, store):
            await _bootstrap(client)
            body = json.dumps(workflow_run_payload(action="requested", run_id=42)).encode("utf-8")
            response = await client.post(
                WEBHOOK_PATH, content=body, headers=_headers("workflow_run", body)
            )
            await ctx.work_queue.join()
            records = [k for k in store.keys() if k.startswith(CORRELATION_PREFIX)]
            ttls = [await store.ttl(k) for k in records]
            return response, records, ttls

        response, records, ttls = relay(scenario)

        assert (response.status_code, response.json()) == (202, {"status": "queued"})
        assert len(fake_github.calls("POST", "/check-runs")) == 1
        assert records == ["job_correlation.42"]
        assert ttls == [CORRELATION_TTL_SECONDS]

    def test_webhook_metrics_recorded(self, relay):
        async def scenario(client, ctx, store):
            await _bootstrap(client)
            body = b"{}"
            await client.post(WEBHOOK_PATH, content=body, headers=_headers("ping", body, "sha256=00"))
            await client.post(WEBHOOK_PATH, content=body, headers=_headers("ping", body))
            return await client.get("/metrics")

        response = relay(scenario)

        assert response.status_code == 200
        text = response.text
        assert 'relay_webhooks_received_total{event_type="installation",outcome="bootstrapped"} 1.0' in text
        assert 'relay_webhooks_received_total{event_type="unauthenticated",outcome="rejected"} 1.0' in text
        assert 'relay_webhooks_received_total{event_type="other",outcome="unhandled"} 1.0' in text

    def test_unsigned_event_headers_do_not_create_label_series(self, relay):
        async def scenario(client, ctx, store):
            body = b"{}"
            for i in range(50):
                headers = _headers(f"junk-{i}", body, signature="sha256=00")
                response = await client.post(WEBHOOK_PATH, content=body, headers=headers)
                assert response.status_code == 404
            oversized = b"x" * 128
            await client.post(
                WEBHOOK_PATH, content=oversized, headers=_headers("junk-big", oversized)
            )
            return {
                sample.labels["event_type"]
                for metric in ctx.metrics.registry.collect()
                if metric.name == "relay_webhooks_received"
                for sample in metric.samples
                if sample.name == "relay_webhooks_received_total"
            }

        labels = relay(scenario, max_body_bytes=64)

        assert labels == {"unauthenticated"}

    def test_signed_unknown_event_type_is_bounded(self, relay):
        async def scenario(client, ctx, store):
            for i in range(5):
                body = b'{"action": "created"}'
                await client.post(WEBHOOK_PATH, content=body, headers=_headers(f"custom-{i}", body))
            return ctx.metrics.registry.get_sample_value(
                "relay_webhooks_received_total",
                {"event_type": "other", "outcome": "unhandled"},
            )

        assert relay(scenario) == 5


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------


class TestProbes:

    def test_health(self, relay):
        async def scenario(client, ctx, store):
            return await client.get("/health")

        response = relay(scenario)

        assert (response.status_code, response.json()) == (200, {"status": "healthy"})

    def test_ready(self, relay):
        async def scenario(client, ctx, store):
            before = await client.get("/ready")
            await _bootstrap(client)
            return before, await client.get("/ready")

        before, after = relay(scenario)

        assert before.status_code == 200
        assert before.json()["bootstrapped"] is False
        assert after.json()["bootstrapped"] is True

    def test_not_ready_when_store_unreachable(self, relay):
        async def scenario(client, ctx, store):
            return await client.get("/ready")

        response = relay(scenario, backend=UnreachableBackend())

        assert response.status_code == 503
        assert response.json()["dependencies"]["store"] == "unavailable"

    def test_root_redirects_to_project_page(self, relay):
        async def scenario(client, ctx, store):
            return await client.get("/", follow_redirects=False)

        response = relay(scenario, home_url="https://example.test/relay")

        assert response.status_code == 307
        assert response.headers["location"] == "https://example.test/relay"

    def test_root_is_404_without_home_url(self, relay):
        async def scenario(client, ctx, store):
            return await client.get("/", follow_redirects=False)

        assert relay(scenario, home_url="").status_code == 404

    def test_unknown_path_is_404(self, relay):
        async def scenario(client, ctx, store):
            return await client.get("/nowhere")

        assert relay(scenario).status_code == 404


def test_lifespan_builds_context(make_settings, monkeypatch):
    monkeypatch.setattr("src.relay.main.configure_logging", lambda *args, **kwargs: None)
    app = create_app(settings=make_settings())

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert client.get("/ready").status_code == 200
        assert app.state.context is not None
        assert app.state.context.work_queue.running
