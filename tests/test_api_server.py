"""Tests for the HTTP API."""

import json
import time

import pytest
from fastapi.testclient import TestClient

from geo_pipeline.api.server import create_app
from geo_pipeline.data.cache import TieredCache
from geo_pipeline.models import GenerationRequest, StageId
from geo_pipeline.orchestration.fallbacks import build_fallback
from geo_pipeline.orchestration.orchestrator import PipelineOrchestrator
from geo_pipeline.providers.base import ProviderResponse

PAYLOAD = {"product_name": "Galaxy S25 Ultra", "keywords": ["AI camera", "battery"], "language": "en"}


@pytest.fixture
def orchestrator(settings, scripted_provider, memory_store, noop_sleep):
    return PipelineOrchestrator(scripted_provider, cache=TieredCache(durable=memory_store),
                                settings=settings, sleep=noop_sleep)


@pytest.fixture
def client(orchestrator):
    with TestClient(create_app(orchestrator)) as test_client:
        yield test_client


def _frames(text):
    return [json.loads(chunk[len("data: "):]) for chunk in text.split("\n\n") if chunk.startswith("data: ")]


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.text == "ok"


class TestGenerate:

    def test_generate_then_cache_hit(self, client):
        first = client.post("/v2/generate", json=PAYLOAD)
        assert first.status_code == 200
        body = first.json()
        assert body["cache_hit"] is False
        assert body["progress"]["percentage"] == 100
        assert set(body["result"]["stages"]) >= {"description", "faq", "grounding_aggregation"}

        second = client.post("/v2/generate", json=PAYLOAD).json()
        assert second["cache_hit"] is True
        assert second["cache_tier"] == "fast"
        assert second["result"] == body["result"]

    def test_aborted_run_is_400(self, client):
        response = client.post("/v2/generate", json={"product_name": "  ", "keywords": ["camera"]})
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["message"] == "Product name is required"
        assert detail["progress"]["percentage"] == 0

    def test_invalid_body_is_422(self, client):
        response = client.post("/v2/generate", json={"product_name": "Galaxy", "language": "fr"})
        assert response.status_code == 422


class TestFailures:

    @pytest.fixture
    def crashing_client(self, settings, noop_sleep, make_provider):
        keywords = build_fallback(StageId.KEYWORDS, GenerationRequest(**PAYLOAD))
        # plain dicts instead of Citation objects crash source extraction
        provider = make_provider(responses={
            StageId.KEYWORDS: ProviderResponse(data=keywords, citations=[{"uri": "https://news.samsung.com/a"}]),
        })
        orchestrator = PipelineOrchestrator(provider, cache=TieredCache(), settings=settings, sleep=noop_sleep)
        with TestClient(create_app(orchestrator)) as client:
            yield client

    def test_internal_failure_is_500_with_progress(self, crashing_client):
        response = crashing_client.post("/v2/generate", json=PAYLOAD)
        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["message"].startswith("Generation failed:")
        assert detail["progress"]["percentage"] > 0

    def test_stream_error_keeps_progress(self, crashing_client):
        with crashing_client.stream("POST", "/v2/generate/stream", json=PAYLOAD) as response:
            text = "".join(response.iter_text())

        events = _frames(text)
        assert events[-1]["type"] == "error"
        assert events[-1]["progress"] > 0
        assert events[-1]["progress"] == max(e["progress"] for e in events)
        assert "complete" not in [e["type"] for e in events]

class TestStream:

    def test_stream_ends_with_complete(self, client):
        with client.stream("POST", "/v2/generate/stream", json=PAYLOAD) as response:
            assert response.status_code == 200
            assert response.headers["content-type"].startswith("text/event-stream")
            text = "".join(response.iter_text())

        events = _frames(text)
        progress = [e["progress"] for e in events]
        assert progress == sorted(progress)
        assert events[0]["type"] == "stage_start"
        assert events[-1]["type"] == "complete"
        assert events[-1]["progress"] == 100
        assert any(e["type"] == "result" for e in events)

    def test_stream_reports_validation_error(self, client):
        with client.stream("POST", "/v2/generate/stream",
                           json={"product_name": "Galaxy", "keywords": []}) as response:
            text = "".join(response.iter_text())

        events = _frames(text)
        assert [e["type"] for e in events] == ["error"]
        assert "keyword" in events[0]["message"]


class TestCacheEndpoints:

    def test_stats_invalidate_prune(self, client, orchestrator, memory_store):
        body = client.post("/v2/generate", json=PAYLOAD).json()
        fingerprint = body["result"]["fingerprint"]

        stats = client.get("/cache/stats").json()
        assert stats["enabled"] is True
        assert stats["fast"]["size"] == 1
        assert stats["overall"]["total_requests"] == 1

        # the durable write is detached; give the app loop a moment
        for _ in range(100):
            if fingerprint in memory_store.data:
                break
            time.sleep(0.01)
        assert fingerprint in memory_store.data
        response = client.delete(f"/cache/{fingerprint}").json()
        assert response == {"fingerprint": fingerprint, "invalidated": True}
        assert fingerprint not in memory_store.data

        assert client.post("/cache/prune").json() == {"fast_pruned": 0, "durable_pruned": 0}

    def test_cache_disabled(self, settings, scripted_provider, noop_sleep):
        orchestrator = PipelineOrchestrator(scripted_provider, cache=None, settings=settings, sleep=noop_sleep)
        with TestClient(create_app(orchestrator)) as client:
            assert client.get("/cache/stats").json() == {"enabled": False}
            assert client.delete("/cache/gen_x").json() == {"fingerprint": "gen_x", "invalidated": False}


class TestServe:

    def test_serve_uses_configured_host_and_port(self, settings):
        from unittest.mock import patch

        from geo_pipeline.api import server

        configured = settings.model_copy(update={"API_HOST": "0.0.0.0", "API_PORT": 9001})
        with patch.object(server, "get_settings", return_value=configured), \
                patch.object(server, "configure_logging"), \
                patch.object(server.uvicorn, "run") as run:
            server.serve()
        run.assert_called_once_with(server.app, host="0.0.0.0", port=9001, log_level="info")
