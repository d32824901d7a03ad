"""
Tests for the HTTP surface (FastAPI app driven through the Starlette test client).
"""

from unittest.mock import patch

import pytest
from starlette.testclient import TestClient

from podgraph.server import create_app
from podgraph.utils.errors import StoreUnavailableError

from conftest import staged_entity, staged_relationship


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


# ===========================================================================
# Resolution endpoints
# ===========================================================================


class TestResolveEndpoints:
    def test_resolve_entities(self, service, client):
        service.enqueue(entities=[staged_entity("Apple"), staged_entity("Apple Inc.")])

        response = client.post("/api/resolve-entities", json={"useLLM": False})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["result"]["created"] == 1
        assert body["result"]["merged"] == 1
        assert body["stats"]["pendingEntities"] == 0
        assert "keys" in body["cacheStats"]

    def test_resolve_entities_without_body(self, service, client):
        service.enqueue(entities=[staged_entity("Tim Cook", "Person")])
        response = client.post("/api/resolve-entities")
        assert response.status_code == 200
        assert response.json()["result"]["processed"] == 1

    def test_resolve_relationships(self, service, client):
        service.enqueue(
            entities=[staged_entity("Tim Cook", "Person"), staged_entity("Apple")],
            relationships=[staged_relationship("Tim Cook", "Apple", "CEO of Apple")],
        )
        client.post("/api/resolve-entities", json={"useLLM": False})

        response = client.post("/api/resolve-relationships-robust", json={"batchSize": 10, "strict": True})

        body = response.json()
        assert body["success"] is True
        assert body["result"]["created"] == 1
        assert body["stats"]["pendingRelationships"] == 0

    def test_string_false_disables_the_llm(self, service, client, fake_llm):
        service.enqueue(entities=[staged_entity("Berkshire Hathaway"), staged_entity("Berkshire")])

        response = client.post("/api/resolve-entities", json={"useLLM": "false"})

        assert response.status_code == 200
        assert response.json()["result"]["processed"] == 2
        fake_llm.achat.assert_not_called()

    def test_snake_case_keys_are_accepted(self, service, client, fake_llm):
        service.enqueue(entities=[staged_entity("Berkshire Hathaway"), staged_entity("Berkshire")])
        client.post("/api/resolve-entities", json={"use_llm": False})
        fake_llm.achat.assert_not_called()

    @pytest.mark.parametrize(
        "path, body",
        [
            ("/api/resolve-entities", {"entityBatchSize": "many"}),
            ("/api/resolve-entities", {"maxBatches": 0}),
            ("/api/resolve-entities", {"useLLM": "maybe"}),
            ("/api/resolve-relationships-robust", {"batchSize": -1}),
        ],
    )
    def test_invalid_body_is_rejected(self, client, path, body):
        response = client.post(path, json=body)
        assert response.status_code == 422
        assert "detail" in response.json()

    def test_store_outage_is_503(self, service, client):
        with patch.object(service, "resolve_entities", side_effect=StoreUnavailableError("disk gone")):
            response = client.post("/api/resolve-entities", json={})
        assert response.status_code == 503
        assert response.json() == {"error": "disk gone"}


# ===========================================================================
# Stats and maintenance endpoints
# ===========================================================================


class TestStatsEndpoints:
    def test_staging_stats(self, service, client):
        service.enqueue(entities=[staged_entity("Apple")])
        body = client.get("/api/staging-stats").json()
        assert body["success"] is True
        assert body["stats"]["pendingEntities"] == 1

    def test_cache_stats_and_clear(self, service, client):
        client.post("/api/resolve-entities", json={"useLLM": False})
        service.enqueue(entities=[staged_entity("Apple")])
        client.post("/api/resolve-entities", json={"useLLM": False})
        assert client.get("/api/cache-stats").json()["keys"] > 0

        body = client.post("/api/cache/clear").json()
        assert body["success"] is True
        assert body["cacheStats"]["keys"] == 0

    def test_fix_relationships(self, service, client):
        service.enqueue(entities=[staged_entity("Morris Chang", "Person"), staged_entity("TSMC")])
        client.post("/api/resolve-entities", json={"useLLM": False})

        body = client.post("/api/fix-relationships").json()

        assert body["success"] is True
        assert body["created"] == 1
        assert any(d["description"] == "Created: Morris Chang -> TSMC" for d in body["details"])
        assert body["relationshipStats"]["connections"] == 1

    def test_relationship_stats(self, client):
        body = client.get("/api/relationship-stats").json()
        assert body["connections"] == 0
        assert body["unresolvedRelationships"] == 0


# ===========================================================================
# Authentication
# ===========================================================================


class TestApiKey:
    def test_missing_key_is_rejected(self, service):
        client = TestClient(create_app(service, api_key="secret"))
        response = client.get("/api/staging-stats")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_wrong_key_is_rejected(self, service):
        client = TestClient(create_app(service, api_key="secret"))
        response = client.get("/api/staging-stats", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_bearer_key_is_accepted(self, service):
        client = TestClient(create_app(service, api_key="secret"))
        response = client.get("/api/staging-stats", headers={"Authorization": "Bearer secret"})
        assert response.status_code == 200
