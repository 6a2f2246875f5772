"""Tests for prompt API routes.

Tests the /ai/* endpoints defined in promptforge/api/routes/prompts.py.
"""

import json

import pytest
from fastapi.testclient import TestClient

from promptforge.config import AppSettings
from promptforge.costs import InMemoryUsageSink
from promptforge.credentials import StaticCredentialStore
from promptforge.providers.mock import MockProvider
from promptforge.providers.registry import ProviderRegistry
from promptforge.service import build_service


def create_test_app(*providers):
    """Create a FastAPI app with the prompts router over mock adapters."""
    from fastapi import FastAPI

    from promptforge.api.routes.prompts import router

    app = FastAPI()
    app.include_router(router)
    app.state.prompt_service = build_service(
        settings=AppSettings(),
        credential_store=StaticCredentialStore(),
        usage_sink=InMemoryUsageSink(),
        registry=ProviderRegistry(providers),
    )
    return app


@pytest.fixture
def client():
    """Client over one scripted adapter."""
    provider = MockProvider(
        name="primary",
        completion_text="Hello from mock",
        enhanced_text="Enhanced prompt",
        scores=[90],
    )
    return TestClient(create_test_app(provider))


@pytest.fixture
def empty_client():
    """Client with no adapters configured."""
    return TestClient(create_test_app())


def sse_events(body: str) -> list[str]:
    return [line[len("data: "):] for line in body.splitlines() if line.startswith("data: ")]


class TestEnhanceEndpoints:
    """Tests for POST /ai/enhance, /ai/score and /ai/validate."""

    def test_enhance(self, client):
        response = client.post(
            "/ai/enhance", json={"prompt": "Build a blog", "answers": {"projectType": "REST API"}}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["enhanced"] == "Enhanced prompt"
        assert data["provider"] == "primary"
        assert data["quality"]["overall"] == 90
        assert data["metadata"]["providers_used"] == ["primary"]

    def test_enhance_degrades_without_providers(self, empty_client):
        response = empty_client.post("/ai/enhance", json={"prompt": "Build a blog"})

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "none"
        assert data["quality"]["overall"] == 70
        assert data["quality"]["degraded"] is True

    def test_enhance_rejects_empty_prompt(self, client):
        assert client.post("/ai/enhance", json={"prompt": ""}).status_code == 422

    def test_enhance_rejects_bad_target(self, client):
        response = client.post("/ai/enhance", json={"prompt": "x", "target_quality": 120})
        assert response.status_code == 422

    def test_score(self, client):
        response = client.post("/ai/score", json={"prompt": "Build a blog"})
        assert response.status_code == 200
        assert response.json()["overall"] == 90

    def test_validate(self, empty_client):
        response = empty_client.post("/ai/validate", json={"prompt": "Build a blog"})
        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is False
        assert len(data["suggestions"]) >= 4

    def test_generate_questions_defaults(self, empty_client):
        response = empty_client.post("/ai/generate-questions", json={"answers": {}})
        assert response.status_code == 200
        assert len(response.json()["questions"]) == 3


class TestExecuteEndpoint:
    """Tests for POST /ai/execute."""

    def test_execute(self, client):
        response = client.post("/ai/execute", json={"prompt": "Say hello", "max_tokens": 50})

        assert response.status_code == 200
        data = response.json()
        assert data["content"] == "Hello from mock"
        assert data["provider"] == "primary"
        assert data["usage"]["total_tokens"] == 5

    def test_no_providers_is_503(self, empty_client):
        response = empty_client.post("/ai/execute", json={"prompt": "Say hello"})

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "no_provider_configured"

    def test_usage_attributed_to_user(self):
        app = create_test_app(MockProvider(name="openai"))
        client = TestClient(app)

        client.post("/ai/execute", json={"prompt": "Say hello", "user_id": "u-42"})
        client.post("/ai/execute", json={"prompt": "Say hello"})

        summary = app.state.prompt_service.cost_summary("day", user_id="u-42")["summary"]
        assert summary["total_requests"] == 1
        assert summary["user_id"] == "u-42"

    def test_all_providers_failed_is_502(self):
        broken = MockProvider(name="broken", fail_operations={"complete"})
        client = TestClient(create_test_app(broken))

        response = client.post("/ai/execute", json={"prompt": "Say hello"})

        assert response.status_code == 502
        assert response.json()["detail"]["error"] == "all_providers_failed"


class TestStreamEndpoint:
    """Tests for POST /ai/stream."""

    def test_stream_events(self, client):
        response = client.post("/ai/stream", json={"prompt": "Say hello"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = sse_events(response.text)
        assert events[-1] == "[DONE]"
        content = "".join(json.loads(e)["content"] for e in events[:-1])
        assert content == "Hello from mock"

    def test_stream_no_providers_is_503(self, empty_client):
        response = empty_client.post("/ai/stream", json={"prompt": "Say hello"})
        assert response.status_code == 503

    def test_stream_failure_reported_in_band(self):
        broken = MockProvider(name="broken", fail_operations={"stream"})
        client = TestClient(create_test_app(broken))

        response = client.post("/ai/stream", json={"prompt": "Say hello"})

        events = sse_events(response.text)
        assert json.loads(events[-1])["error"] == "all_providers_failed"


class TestInfoEndpoints:
    """Tests for cost, provider and status endpoints."""

    def test_estimate_cost_defaults_to_primary(self):
        client = TestClient(create_test_app(MockProvider(name="groq", cost_per_1k=0.01)))
        response = client.post("/ai/estimate-cost", json={"prompt": "x" * 4000})

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "groq"
        assert data["tokens"] == 1000
        assert data["estimated_cost"] == pytest.approx(0.01)
        assert data["operation"] is None
        assert data["currency"] == "USD"

    def test_estimate_cost_matches_service(self):
        app = create_test_app(MockProvider(name="openai", cost_per_1k=0.03))
        prompt = "x" * 4000

        data = TestClient(app).post("/ai/estimate-cost", json={"prompt": prompt}).json()

        expected = app.state.prompt_service.estimate_cost(prompt)
        assert data["estimated_cost"] == pytest.approx(expected)
        assert data["estimated_cost"] == pytest.approx(0.03)

    def test_estimate_cost_per_operation_opt_in(self):
        client = TestClient(create_test_app(MockProvider(name="openai", cost_per_1k=0.03)))
        response = client.post(
            "/ai/estimate-cost", json={"prompt": "x" * 4000, "operation": "completion"}
        )

        data = response.json()
        assert data["operation"] == "completion"
        assert data["estimated_cost"] == pytest.approx(0.06)

    def test_estimate_cost_unconfigured_provider_prices_primary(self):
        client = TestClient(create_test_app(MockProvider(name="groq", cost_per_1k=0.01)))
        response = client.post(
            "/ai/estimate-cost",
            json={"prompt": "x" * 4000, "provider": "anthropic", "operation": "completion"},
        )

        data = response.json()
        assert data["provider"] == "groq"
        assert data["estimated_cost"] == pytest.approx(0.0002)

    def test_estimate_cost_unknown_operation_rejected(self, client):
        response = client.post("/ai/estimate-cost", json={"prompt": "hi", "operation": "dance"})
        assert response.status_code == 422

    def test_estimate_cost_without_providers(self, empty_client):
        response = empty_client.post("/ai/estimate-cost", json={"prompt": "hello"})
        assert response.json()["estimated_cost"] == 0.0
        assert response.json()["provider"] is None

    def test_providers(self):
        client = TestClient(create_test_app(MockProvider(name="a"), MockProvider(name="b")))
        data = client.get("/ai/providers").json()

        assert data == {"providers": ["a", "b"], "primary": "a", "fallbacks": ["b"]}

    def test_status(self, empty_client):
        data = empty_client.get("/ai/status").json()
        assert data["status"] == "no_providers"
        assert "cost_recommendations" in data

    def test_missing_service_is_503(self):
        from fastapi import FastAPI

        from promptforge.api.routes.prompts import router

        app = FastAPI()
        app.include_router(router)
        assert TestClient(app).get("/ai/providers").status_code == 503


class TestApplication:
    def test_health_and_injected_service(self):
        from promptforge.api.main import create_app

        service = create_test_app(MockProvider(name="a")).state.prompt_service
        with TestClient(create_app(service)) as client:
            assert client.get("/health").json() == {"status": "ok"}
            assert client.get("/ai/providers").json()["primary"] == "a"

    def test_log_level_from_settings(self):
        import logging

        from promptforge.api.main import create_app

        service = create_test_app(MockProvider(name="a")).state.prompt_service
        create_app(service, settings=AppSettings(log_level="DEBUG"))
        assert logging.getLogger().level == logging.DEBUG

        create_app(service)
        assert logging.getLogger().level == logging.INFO

    def test_system_routes_mounted(self):
        from promptforge.api.main import create_app

        service = create_test_app(MockProvider(name="a")).state.prompt_service
        with TestClient(create_app(service)) as client:
            assert client.get("/system/cache/stats").status_code == 200
