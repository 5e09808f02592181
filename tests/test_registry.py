import asyncio
import json

import pytest

from conftest import StubEmbeddings, run
from counsel_retrieval.application.settings import Settings
from counsel_retrieval.application.services.models import Document
from counsel_retrieval.application.services.registry import StoreRegistry


@pytest.fixture
def factory():
    class Factory:
        def __init__(self):
            self.calls = []
            self.embeddings = StubEmbeddings({"q": [1.0, 0.0]}, default=[1.0, 0.0])

        def __call__(self, model_name, settings):
            self.calls.append(model_name)
            return self.embeddings

    return Factory()


@pytest.fixture
def registry(factory):
    return StoreRegistry(settings=Settings(relevance_threshold=0.25, default_page_size=7), embeddings_factory=factory)


def test_same_key_returns_same_instance(registry, factory, tmp_path):
    x, y = tmp_path / "x", tmp_path / "y"
    first = run(registry.get_or_create_store("default", x))
    second = run(registry.get_or_create_store("default", x))
    other = run(registry.get_or_create_store("default", y))

    assert first is second
    assert other is not first
    assert len(factory.calls) == 2
    assert len(registry) == 2
    assert f"default:{x}" in registry


def test_cache_hit_does_not_reread_disk(registry, tmp_path):
    store = run(registry.get_or_create_store("notes", tmp_path))
    (tmp_path / "notes.json").write_text(
        json.dumps({"documents": [{"pageContent": "sneaky", "metadata": {}}]}), encoding="utf-8"
    )
    again = run(registry.get_or_create_store("notes", tmp_path))
    assert again is store
    assert again.get_document_count() == 0


def test_new_store_loads_persisted_state_and_settings(registry, factory, tmp_path):
    (tmp_path / "essays.json").write_text(
        json.dumps({"documents": [{"pageContent": "hello", "metadata": {}}], "embeddings": [["hello", [1.0, 0.0]]]}),
        encoding="utf-8",
    )
    store = run(registry.get_or_create_store("essays", tmp_path, embedding_model_name="mini"))
    assert store.get_document_count() == 1
    assert len(store.cache) == 1
    assert store.threshold == 0.25
    assert store.default_page_size == 7
    assert factory.calls == ["mini"]


def test_concurrent_first_access_creates_one_store(registry, factory, tmp_path):
    async def scenario():
        return await asyncio.gather(*(registry.get_or_create_store("default", tmp_path) for _ in range(5)))

    stores = run(scenario())
    assert all(s is stores[0] for s in stores)
    assert len(factory.calls) == 1


def test_shutdown_flushes_and_forgets(registry, factory, tmp_path):
    store = run(registry.get_or_create_store("default", tmp_path))
    run(store.add_documents([Document(page_content="a")]))
    # simulate an embedding filled in by a search after the last save
    store.cache.put("b", [1.0, 0.0])
    store._dirty = True

    run(registry.shutdown())
    assert len(registry) == 0
    data = json.loads((tmp_path / "default.json").read_text(encoding="utf-8"))
    assert [content for content, _ in data["embeddings"]] == ["a", "b"]

    fresh = run(registry.get_or_create_store("default", tmp_path))
    assert fresh is not store
    assert fresh.get_document_count() == 1
