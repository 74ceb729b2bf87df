"""Integration tests for the HTTP endpoints.

Mounts the v1 router on a bare FastAPI app and sets the services on
app.state directly (no lifespan), with in-memory queue doubles.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.minutes_bot.api.v1.router import router
from src.minutes_bot.config import Settings
from src.minutes_bot.core.credentials import Credential
from src.minutes_bot.errors import AuthFailure
from src.minutes_bot.ingestion import MeetingIngestion
from src.minutes_bot.jobs.schemas import JobState
from src.minutes_bot.observability.metrics import ProcessingMetrics

CLIENT_STATE = "s3cret"


def _notification(**resource_data) -> dict:
    return {"clientState": CLIENT_STATE, "resourceData": resource_data}


VALID = _notification(id="m-1", chatId="chat-1", organizerId="u-1")


def _settings(**overrides) -> Settings:
    defaults = {
        "WEBHOOK_CLIENT_STATE": CLIENT_STATE,
        "WEBHOOK_VALIDATE_CLIENT_STATE": True,
    }
    defaults.update(overrides)
    return Settings(**defaults)


@pytest.fixture
def credentials() -> AsyncMock:
    cache = AsyncMock()
    cache.get.return_value = Credential(token="tok", expires_at=9_999.0)
    return cache


@pytest.fixture
def app(job_queue, credentials) -> FastAPI:
    application = FastAPI()
    application.include_router(router)
    application.state.settings = _settings()
    application.state.job_queue = job_queue
    application.state.ingestion = MeetingIngestion(job_queue)
    application.state.credentials = credentials
    application.state.processing_metrics = ProcessingMetrics()
    return application


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Webhook ──────────────────────────────────────────────────────────────────


class TestSubscriptionValidation:
    @pytest.mark.asyncio
    async def test_get_echoes_validation_token(self, client):
        response = await client.get("/webhook/meeting-ended", params={"validationToken": "abc 123"})

        assert response.status_code == 200
        assert response.text == "abc 123"
        assert response.headers["content-type"].startswith("text/plain")

    @pytest.mark.asyncio
    async def test_post_echoes_validation_token(self, client, store):
        response = await client.post("/webhook/meeting-ended?validationToken=xyz")

        assert response.status_code == 200
        assert response.text == "xyz"
        assert store.jobs == {}

    @pytest.mark.asyncio
    async def test_get_without_token_is_bad_request(self, client):
        response = await client.get("/webhook/meeting-ended")
        assert response.status_code == 400


class TestMeetingEnded:
    @pytest.mark.asyncio
    async def test_valid_notification_is_queued(self, client, store):
        response = await client.post("/webhook/meeting-ended", json={"value": [VALID]})

        assert response.status_code == 202
        body = response.json()
        assert body["success"] is True
        assert body["skipped"] == 0
        assert len(body["job_ids"]) == 1
        job = store.jobs[body["job_ids"][0]]
        assert (job.meeting_id, job.chat_id, job.user_id) == ("m-1", "chat-1", "u-1")
        assert job.correlation_id == body["correlation_id"]
        assert job.state == JobState.QUEUED

    @pytest.mark.asyncio
    async def test_alternate_field_locations(self, client, store):
        notification = _notification(
            meetingId="m-2",
            chatInfo={"threadId": "19:thread"},
            organizer={"id": "u-2"},
        )
        response = await client.post("/webhook/meeting-ended", json={"value": [notification]})

        job = store.jobs[response.json()["job_ids"][0]]
        assert (job.meeting_id, job.chat_id, job.user_id) == ("m-2", "19:thread", "u-2")

    @pytest.mark.asyncio
    async def test_incomplete_notifications_are_skipped(self, client, store):
        incomplete = _notification(id="m-3", chatId="chat-3")
        response = await client.post(
            "/webhook/meeting-ended", json={"value": [VALID, incomplete]},
        )

        assert response.status_code == 202
        assert response.json()["skipped"] == 1
        assert len(store.jobs) == 1

    @pytest.mark.asyncio
    async def test_one_correlation_id_per_request(self, client, store):
        other = _notification(id="m-9", chatId="chat-9", organizerId="u-9")
        response = await client.post("/webhook/meeting-ended", json={"value": [VALID, other]})

        cid = response.json()["correlation_id"]
        assert {job.correlation_id for job in store.jobs.values()} == {cid}

    @pytest.mark.asyncio
    async def test_wrong_client_state_is_unauthorized(self, client, store):
        forged = {**VALID, "clientState": "guess"}
        response = await client.post("/webhook/meeting-ended", json={"value": [forged]})

        assert response.status_code == 401
        assert "correlation_id" in response.json()
        assert store.jobs == {}

    @pytest.mark.asyncio
    async def test_client_state_check_can_be_disabled(self, app, client, store):
        app.state.settings = _settings(WEBHOOK_VALIDATE_CLIENT_STATE=False)
        forged = {**VALID, "clientState": None}

        response = await client.post("/webhook/meeting-ended", json={"value": [forged]})

        assert response.status_code == 202
        assert len(store.jobs) == 1

    @pytest.mark.asyncio
    async def test_invalid_json_is_bad_request(self, client):
        response = await client.post(
            "/webhook/meeting-ended",
            content=b"not json",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_partial_enqueue_failure_queues_nothing(self, client, store):
        other = _notification(id="m-9", chatId="chat-9", organizerId="u-9")
        body = {"value": [VALID, other]}
        store.fail_add_at = 2

        failed = await client.post("/webhook/meeting-ended", json=body)

        assert failed.status_code == 500
        assert store.jobs == {}
        assert store.ready == []

        # Graph redelivers the same batch.
        store.fail_add_at = None
        retried = await client.post("/webhook/meeting-ended", json=body)

        assert retried.status_code == 202
        meetings = sorted(job.meeting_id for job in store.jobs.values())
        assert meetings == ["m-1", "m-9"]

    @pytest.mark.asyncio
    async def test_enqueue_failure_returns_500_with_correlation_id(self, app, client):
        ingestion = AsyncMock()
        ingestion.submit.side_effect = ConnectionError("redis down")
        app.state.ingestion = ingestion

        response = await client.post("/webhook/meeting-ended", json={"value": [VALID]})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "redis down"
        assert body["correlation_id"]


# ── Health & metrics ─────────────────────────────────────────────────────────


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["queue"] == "connected"
        assert body["metrics"]["success_rate"] == "N/A"

    @pytest.mark.asyncio
    async def test_credential_failure_is_unhealthy(self, client, credentials):
        credentials.get.side_effect = AuthFailure("invalid_client", status_code=401)

        response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_queue_unavailable_is_unhealthy(self, client, store):
        store.available = False

        response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["queue"] == "disconnected"

    @pytest.mark.asyncio
    async def test_missing_service_is_503(self, app, client):
        app.state.credentials = None
        response = await client.get("/health")
        assert response.status_code == 503


class TestMetrics:
    @pytest.mark.asyncio
    async def test_processing_and_queue_counts(self, app, client):
        metrics = app.state.processing_metrics
        await metrics.record_outcome(True, 1000.0)
        await metrics.record_outcome(False, 10.0)
        await client.post("/webhook/meeting-ended", json={"value": [VALID]})

        response = await client.get("/metrics")

        assert response.status_code == 200
        body = response.json()
        assert body["processing"]["total_processed"] == 2
        assert body["processing"]["success_rate"] == "50.00%"
        assert body["queue"]["waiting"] == 1
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_prometheus_exposition(self, client):
        response = await client.get("/metrics/prometheus")

        assert response.status_code == 200
        assert "jobs_processed_total" in response.text


# ── Jobs ─────────────────────────────────────────────────────────────────────


class TestJobs:
    @pytest.mark.asyncio
    async def test_get_job(self, client):
        created = await client.post("/webhook/meeting-ended", json={"value": [VALID]})
        job_id = created.json()["job_ids"][0]

        response = await client.get(f"/jobs/{job_id}")

        assert response.status_code == 200
        assert response.json()["state"] == "queued"
        assert response.json()["attempts_made"] == 0

    @pytest.mark.asyncio
    async def test_unknown_job_is_404(self, client):
        assert (await client.get("/jobs/999")).status_code == 404

    @pytest.mark.asyncio
    async def test_list_and_replay_failed(self, client, job_queue, dlq, clock):
        created = await client.post("/webhook/meeting-ended", json={"value": [VALID]})
        job_id = created.json()["job_ids"][0]
        for _ in range(job_queue.policy.max_attempts):
            await job_queue.promote_due()
            delivery = await job_queue.reserve("c")
            await job_queue.fail(delivery, RuntimeError("boom"))
            clock.advance(3600)

        listed = await client.get("/jobs/failed")
        entry_id = listed.json()[0]["entry_id"]
        assert listed.json()[0]["fields"]["job_id"] == job_id

        replayed = await client.post(f"/jobs/failed/{entry_id}/replay")

        assert replayed.status_code == 200
        assert replayed.json()["state"] == "queued"
        assert replayed.json()["attempts_made"] == 0
        assert dlq.entries == []

    @pytest.mark.asyncio
    async def test_replay_unknown_entry_is_404(self, client):
        assert (await client.post("/jobs/failed/1-0/replay")).status_code == 404
