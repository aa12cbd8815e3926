"""Webhook receiver endpoints."""

import hashlib
import hmac
import json

import httpx
import pytest

from conduit.api.app import create_app
from conduit.core.config.settings import settings
from conduit.workers.job import JobPriority
from conduit.workers.queues import WEBHOOKS_QUEUE


@pytest.fixture
async def client(job_queue):
    app = create_app(job_queue=job_queue)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://conduit.test") as client:
        yield client


@pytest.fixture
def verify_tokens(monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_verify_token", "wa-token")
    monkeypatch.setattr(settings, "instagram_verify_token", "ig-token")
    monkeypatch.setattr(settings, "messenger_verify_token", None)


@pytest.fixture
def app_secret(monkeypatch) -> str:
    monkeypatch.setattr(settings, "meta_app_secret", "s3cr3t")
    return "s3cr3t"


@pytest.fixture(autouse=True)
def no_app_secret(monkeypatch):
    monkeypatch.setattr(settings, "meta_app_secret", None)


def _sign(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _handshake_params(token: str) -> dict[str, str]:
    return {"hub.mode": "subscribe", "hub.verify_token": token, "hub.challenge": "1158201444"}


class TestVerification:
    async def test_echoes_challenge(self, client, verify_tokens):
        response = await client.get("/webhooks/whatsapp/official", params=_handshake_params("wa-token"))

        assert response.status_code == 200
        assert response.text == "1158201444"

    async def test_wrong_token(self, client, verify_tokens):
        response = await client.get("/webhooks/instagram", params=_handshake_params("wa-token"))

        assert response.status_code == 403

    async def test_unconfigured_token_is_rejected(self, client, verify_tokens):
        response = await client.get("/webhooks/messenger", params=_handshake_params(""))

        assert response.status_code == 403

    async def test_shared_endpoint_accepts_any_configured_token(self, client, verify_tokens):
        response = await client.get("/webhooks/meta", params=_handshake_params("ig-token"))

        assert response.status_code == 200
        assert response.text == "1158201444"

    async def test_wrong_mode(self, client, verify_tokens):
        params = {**_handshake_params("wa-token"), "hub.mode": "unsubscribe"}

        response = await client.get("/webhooks/whatsapp/official", params=params)

        assert response.status_code == 403


class TestDelivery:
    async def test_evolution_webhook_is_queued(self, client, job_queue, evolution_upsert):
        payload = evolution_upsert()

        response = await client.post(
            "/webhooks/whatsapp/evolution", json=payload, headers={"apikey": "bridge-key"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "received"

        [job] = await job_queue.pending_jobs(WEBHOOKS_QUEUE)
        assert job.id == body["jobId"]
        assert job.name == "process"
        assert job.priority == JobPriority.INBOUND
        assert job.payload["channelType"] == "whatsapp_unofficial"
        assert job.payload["rawPayload"] == payload
        assert job.payload["headers"]["apikey"] == "bridge-key"
        assert "host" not in job.payload["headers"]

    @pytest.mark.parametrize(
        "path", ["/webhooks/whatsapp/official", "/webhooks/whatsapp/evolution", "/webhooks/meta"]
    )
    async def test_invalid_json_is_acknowledged_and_ignored(self, client, job_queue, path):
        response = await client.post(
            path, content=b"{not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ignored"}
        assert await job_queue.size(WEBHOOKS_QUEUE) == 0

    async def test_non_object_payload_is_ignored(self, client, job_queue):
        response = await client.post("/webhooks/instagram", json=[1, 2, 3])

        assert response.status_code == 200
        assert response.json() == {"status": "ignored"}
        assert await job_queue.size(WEBHOOKS_QUEUE) == 0

    async def test_meta_endpoint_routes_by_object(self, client, job_queue, graph_messaging):
        payload = graph_messaging("page", "104000000000001", [{"message": {"mid": "m", "text": "x"}}])

        response = await client.post("/webhooks/meta", json=payload)

        assert response.status_code == 200
        [job] = await job_queue.pending_jobs(WEBHOOKS_QUEUE)
        assert job.payload["channelType"] == "messenger"

    async def test_meta_endpoint_ignores_unknown_object(self, client, job_queue):
        response = await client.post("/webhooks/meta", json={"object": "permissions", "entry": []})

        assert response.json() == {"status": "ignored"}
        assert await job_queue.size(WEBHOOKS_QUEUE) == 0


class TestSignatures:
    async def test_valid_signature(self, client, job_queue, app_secret, cloud_webhook):
        body = json.dumps(cloud_webhook()).encode()

        response = await client.post(
            "/webhooks/whatsapp/official",
            content=body,
            headers={
                "content-type": "application/json",
                "x-hub-signature-256": _sign(body, app_secret),
            },
        )

        assert response.status_code == 200
        [job] = await job_queue.pending_jobs(WEBHOOKS_QUEUE)
        assert job.payload["headers"]["x-hub-signature-256"].startswith("sha256=")

    @pytest.mark.parametrize("signature", [None, "sha256=deadbeef", "md5=abc"])
    async def test_invalid_signature(self, client, job_queue, app_secret, cloud_webhook, signature):
        headers = {"content-type": "application/json"}
        if signature:
            headers["x-hub-signature-256"] = signature

        response = await client.post(
            "/webhooks/whatsapp/official", content=json.dumps(cloud_webhook()), headers=headers
        )

        assert response.status_code == 401
        assert await job_queue.size(WEBHOOKS_QUEUE) == 0

    async def test_bridge_is_not_signature_checked(self, client, app_secret, evolution_upsert):
        response = await client.post("/webhooks/whatsapp/evolution", json=evolution_upsert())

        assert response.status_code == 200


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_detailed_reports_queue_depths(self, client, job_queue):
        await job_queue.enqueue(WEBHOOKS_QUEUE, "process", {})

        response = await client.get("/health/detailed")

        body = response.json()
        assert body["queues"][WEBHOOKS_QUEUE] == 1
        assert body["redis"] == {"status": "not_configured"}
