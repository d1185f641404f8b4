"""Tests for the saga HTTP API."""

from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from saga_api.dependencies import get_queue, get_store
from saga_api.main import create_app
from saga_worker.models.schemas import Page, Panel, encode_pages
from saga_worker.services.pipeline import flatten_panels


@pytest.fixture
def app(store, queue):
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_queue] = lambda: queue
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


def _completed_saga(store) -> str:
    saga_id = str(uuid.uuid4())
    store.create(saga_id, "12345", "0xabc")
    pages = [
        Page(
            page_number=1,
            panels=[
                Panel(
                    panel_number=1,
                    narration="Aria enters the dungeon.",
                    speech_bubble="Here we go.",
                    image_prompt="A warrior at a cave mouth",
                    scene_type="battle",
                    mood="tense",
                )
            ],
            page_image_url="https://images.test/1.webp",
            page_description="Page 1: Panel 1: A warrior at a cave mouth",
        )
    ]
    store.mark_completed(
        saga_id,
        pages=encode_pages(pages),
        panels=flatten_panels(pages),
        narrative_title="The Fall of Aria",
        total_pages=1,
        total_panels=1,
        generation_time_seconds=64,
        cost_estimate_usd=0.09,
    )
    store.finish_progress(saga_id)
    return saga_id


class TestGenerate:
    def test_accepted(self, client, dispatcher):
        response = client.post("/api/saga/generate", json={"gameId": "12345", "walletId": "0xabc"})
        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"
        assert body["deduplicated"] is False
        assert dispatcher.dispatched[0][0] == body["jobId"]

    def test_deduplicated(self, client):
        first = client.post("/api/saga/generate", json={"gameId": "12345", "walletId": "0xabc"}).json()
        second = client.post("/api/saga/generate", json={"gameId": "12345", "walletId": "0xabc"}).json()
        assert second["jobId"] == first["jobId"]
        assert second["deduplicated"] is True

    @pytest.mark.parametrize(
        "body",
        [{"gameId": "12345"}, {"walletId": "0xabc"}, {"gameId": "", "walletId": "0xabc"}, {}],
    )
    def test_invalid_body(self, client, body):
        response = client.post("/api/saga/generate", json=body)
        assert response.status_code == 400


class TestStatus:
    def test_pending(self, client, store):
        saga_id = str(uuid.uuid4())
        store.create(saga_id, "1", "0xabc")
        body = client.get(f"/api/saga/{saga_id}/status").json()
        assert body["status"] == "pending"
        assert body["progressPercent"] == 0
        assert body["pages"] is None

    def test_completed_camel_case(self, client, store):
        saga_id = _completed_saga(store)
        body = client.get(f"/api/saga/{saga_id}/status").json()
        assert body["status"] == "completed"
        assert body["progressPercent"] == 100
        assert body["narrativeTitle"] == "The Fall of Aria"
        assert body["totalPages"] == 1
        assert body["generationTimeSeconds"] == 64
        page = body["pages"][0]
        assert page["pageImageUrl"] == "https://images.test/1.webp"
        assert page["panels"][0]["speechBubble"] == "Here we go."
        assert "panels" not in body

    def test_failed_reports_error(self, client, store):
        saga_id = str(uuid.uuid4())
        store.create(saga_id, "1", "0xabc")
        store.mark_failed(saga_id, "Game ID not found")
        body = client.get(f"/api/saga/{saga_id}/status").json()
        assert body["status"] == "failed"
        assert body["errorMessage"] == "Game ID not found"

    def test_not_found(self, client):
        response = client.get(f"/api/saga/{uuid.uuid4()}/status")
        assert response.status_code == 404

    def test_malformed_id(self, client):
        response = client.get("/api/saga/not-a-uuid/status")
        assert response.status_code == 400


class TestDetail:
    def test_includes_flat_panels(self, client, store):
        saga_id = _completed_saga(store)
        body = client.get(f"/api/saga/{saga_id}").json()
        assert body["gameId"] == "12345"
        assert body["walletId"] == "0xabc"
        assert body["panels"][0]["imageUrl"] == "https://images.test/1.webp"
        assert body["panels"][0]["panelNumber"] == 1


class TestHealth:
    def test_healthz(self, client):
        assert client.get("/healthz").json() == {"status": "ok"}
