import pytest
from fastapi.testclient import TestClient

from cartograph.api.app import create_app
from cartograph.api.routes import get_store_factory
from cartograph.errors import ConfigurationError
from cartograph.graph.database import GraphStore


def _client(factory):
    app = create_app()
    app.dependency_overrides[get_store_factory] = lambda: factory
    return TestClient(app)


@pytest.fixture
def client(fake_store):
    return _client(lambda _settings: fake_store)


@pytest.fixture
def neo4j_client(fake_neo4j, neo4j_config):
    return _client(lambda _settings: GraphStore(neo4j_config))


def _unconfigured(_settings):
    raise ConfigurationError("Invalid Neo4j configuration", problems=["connection_uri: must not be empty"])


class TestQueryEndpoints:
    def test_query(self, client):
        response = client.post("/query", json={"query": "find createLogger function"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "SUCCESS"
        assert body["data"]["nodes"][0]["node"]["name"] == "createLogger"

    def test_query_limit_validation(self, client):
        assert client.post("/query", json={"query": "find x", "limit": 0}).status_code == 422

    def test_context(self, client, sample_repo):
        response = client.post(
            "/context", json={"query": "find createLogger function", "path": str(sample_repo), "top_k": 1}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert [n["name"] for n in data["entry_points"]] == ["createLogger"]
        assert data["snippets"]

    def test_configuration_problem_is_503(self):
        response = _client(_unconfigured).post("/query", json={"query": "find createLogger"})

        assert response.status_code == 503
        assert "Invalid Neo4j configuration" in response.json()["detail"]


class TestNodeEndpoint:
    def test_node_with_snippet(self, client, code_graph, sample_repo):
        create_logger = next(n for n in code_graph[0] if n.name == "createLogger")

        response = client.get(f"/nodes/{create_logger.id}", params={"repo": str(sample_repo)})

        assert response.status_code == 200
        body = response.json()
        assert body["node"]["name"] == "createLogger"
        assert body["snippet"].startswith("export function createLogger")

    def test_unknown_node_is_404(self, client):
        assert client.get("/nodes/function:ghost:000000000000").status_code == 404

    def test_node_configuration_problem_is_503(self):
        assert _client(_unconfigured).get("/nodes/anything").status_code == 503


class TestExtractAndAdmin:
    def test_extract_rejects_missing_directory(self, client, tmp_path):
        response = client.post("/extract", json={"path": str(tmp_path / "nope"), "output": "console"})
        assert response.status_code == 400

    def test_extract_rejects_unknown_extractor(self, client, sample_repo):
        response = client.post("/extract", json={"path": str(sample_repo), "extractors": ["rust"]})
        assert response.status_code == 422

    def test_extract_to_neo4j_then_stats(self, neo4j_client, sample_repo):
        response = neo4j_client.post("/extract", json={"path": str(sample_repo), "extractors": ["package"]})

        assert response.status_code == 200
        assert response.json()["data"]["import"]["status"] == "SUCCESS"

        stats = neo4j_client.get("/stats").json()
        assert stats["data"]["counts_by_type"]["Package"] == 3

    def test_clear_requires_confirm(self, neo4j_client):
        assert neo4j_client.delete("/graph").status_code == 400

    def test_clear(self, neo4j_client, fake_neo4j):
        response = neo4j_client.delete("/graph", params={"confirm": "true"})

        assert response.status_code == 200
        assert response.json()["data"] == {"nodes_deleted": 0}
