import pytest
from fastapi.testclient import TestClient

from counsel_retrieval.application.settings import get_settings


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("VECTOR_STORE_DIR", str(tmp_path))
    monkeypatch.setenv("EMBEDDING_PROVIDER", "hash")
    get_settings.cache_clear()
    from counsel_retrieval.application.api.main import app

    with TestClient(app) as c:
        yield c
    get_settings.cache_clear()


def test_root(client):
    body = client.get("/").json()
    assert body["ok"] is True


def test_ingest_query_and_delete(client, tmp_path):
    resp = client.post(
        "/documents",
        json={
            "collection": "kb",
            "documents": [
                {"pageContent": "Early decision deadlines are in November", "metadata": {"source": "faq"}},
                {"pageContent": "Financial aid requires the FAFSA", "metadata": {"source": "faq"}},
            ],
        },
    )
    assert resp.status_code == 200
    assert resp.json()["documentCount"] == 2
    assert (tmp_path / "kb.json").exists()

    # the hash embedder maps identical text to identical vectors
    resp = client.get("/query", params={"query": "Financial aid requires the FAFSA", "collection": "kb", "threshold": 0.999})
    body = resp.json()
    assert body["success"] is True
    assert body["results"][0]["text"] == "Financial aid requires the FAFSA"
    assert body["results"][0]["metadata"] == {"source": "faq"}
    assert body["pagination"]["page"] == 1

    resp = client.post("/query", json={"query": "Financial aid requires the FAFSA", "collection": "kb", "threshold": 0.999})
    assert resp.json()["results"][0]["text"] == "Financial aid requires the FAFSA"

    stats = client.get("/collections/kb/stats").json()
    assert stats["stats"]["documentsCount"] == 2

    resp = client.post("/collections/delete", json={"collectionName": "kb"})
    assert resp.json()["success"] is True
    assert client.get("/collections/kb/stats").json()["stats"]["documentsCount"] == 0


def test_missing_query_is_400(client):
    assert client.get("/query").status_code == 400
    assert client.post("/query", json={"collection": "kb"}).status_code == 400


def test_delete_requires_collection_name(client):
    assert client.post("/collections/delete", json={}).status_code == 400


def test_collection_and_limit_default_from_settings(client, tmp_path):
    docs = [{"pageContent": f"Campus visit note {i}"} for i in range(7)]
    assert client.post("/documents", json={"documents": docs}).json()["documentCount"] == 7
    assert (tmp_path / "default.json").exists()

    body = client.get("/query", params={"query": "Campus visit", "threshold": -1.0}).json()
    assert body["success"] is True
    assert body["pagination"] == {"page": 1, "pageSize": 5, "totalResults": 7}
    assert len(body["results"]) == 5

    body = client.post("/query", json={"query": "Campus visit", "threshold": -1.0, "limit": 3}).json()
    assert body["pagination"]["pageSize"] == 3
