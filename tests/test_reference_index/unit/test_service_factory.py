"""Unit tests for service construction from configuration snapshots."""

from __future__ import annotations

from pathlib import Path

import pytest
from qdrant_client import AsyncQdrantClient

from reference_index.catalog import Provider
from reference_index.config import (
    ConfigSnapshot,
    GeminiOptions,
    MemorySettings,
    OllamaOptions,
    OpenAICompatibleOptions,
    OpenAIOptions,
)
from reference_index.embedding import (
    GeminiEmbedding,
    OllamaEmbedding,
    OpenAICompatibleEmbedding,
    OpenAIEmbedding,
)
from reference_index.service_factory import (
    ServiceFactory,
    collection_name_for,
    resolve_vector_size,
)


@pytest.fixture
def factory(tmp_path: Path) -> ServiceFactory:
    return ServiceFactory(
        tmp_path / "ws",
        cache_dir=tmp_path / "cache",
        qdrant_client=AsyncQdrantClient(location=":memory:"),
    )


def _snapshot(**overrides) -> ConfigSnapshot:
    values = {
        "enabled": True,
        "provider": Provider.OPENAI,
        "openai": OpenAIOptions(api_key="sk-test"),
        "vector_store_url": "http://localhost:6333",
    }
    values.update(overrides)
    return ConfigSnapshot(**values)


class TestResolveVectorSize:
    def test_catalog_dimension(self) -> None:
        assert resolve_vector_size(_snapshot()) == 1536
        assert resolve_vector_size(_snapshot(provider=Provider.OLLAMA)) == 768

    def test_gemini_is_fixed(self) -> None:
        snapshot = _snapshot(provider=Provider.GEMINI, model_id="anything")
        assert resolve_vector_size(snapshot) == 768

    def test_explicit_compatible_dimension_wins(self) -> None:
        snapshot = _snapshot(
            provider=Provider.OPENAI_COMPATIBLE,
            model_id="text-embedding-3-small",
            openai_compatible=OpenAICompatibleOptions(model_dimension=256),
        )
        assert resolve_vector_size(snapshot) == 256

    def test_unknown_compatible_model_asks_for_dimension(self) -> None:
        snapshot = _snapshot(provider=Provider.OPENAI_COMPATIBLE, model_id="custom")
        with pytest.raises(ValueError, match="Set the embedding dimension"):
            resolve_vector_size(snapshot)

    def test_unknown_model_names_provider_and_model(self) -> None:
        with pytest.raises(ValueError, match="'my-model'.*'ollama'"):
            resolve_vector_size(_snapshot(provider=Provider.OLLAMA, model_id="my-model"))


class TestCreateEmbedder:
    def test_openai(self, factory) -> None:
        assert isinstance(factory.create_embedder(_snapshot()), OpenAIEmbedding)

    def test_ollama(self, factory) -> None:
        snapshot = _snapshot(
            provider=Provider.OLLAMA, ollama=OllamaOptions(base_url="http://localhost:11434")
        )
        embedder = factory.create_embedder(snapshot)
        assert isinstance(embedder, OllamaEmbedding)
        assert embedder.config.dimensions == 768

    def test_openai_compatible(self, factory) -> None:
        snapshot = _snapshot(
            provider=Provider.OPENAI_COMPATIBLE,
            openai_compatible=OpenAICompatibleOptions(base_url="http://llm.local/v1", api_key="k"),
        )
        assert isinstance(factory.create_embedder(snapshot), OpenAICompatibleEmbedding)

    def test_gemini(self, factory) -> None:
        snapshot = _snapshot(provider=Provider.GEMINI, gemini=GeminiOptions(api_key="g"))
        embedder = factory.create_embedder(snapshot)
        assert isinstance(embedder, GeminiEmbedding)
        assert embedder.config.model_id == "text-embedding-004"

    @pytest.mark.parametrize(
        ("snapshot", "provider_name"),
        [
            (_snapshot(openai=OpenAIOptions()), "OpenAI"),
            (_snapshot(provider=Provider.OLLAMA), "Ollama"),
            (_snapshot(provider=Provider.OPENAI_COMPATIBLE), "OpenAI Compatible"),
            (_snapshot(provider=Provider.GEMINI), "Gemini"),
        ],
    )
    def test_missing_settings_name_the_provider(self, factory, snapshot, provider_name) -> None:
        """Given incomplete provider settings, When building, Then no fallback embedder is made."""
        with pytest.raises(ValueError, match=f"^{provider_name} configuration missing"):
            factory.create_embedder(snapshot)


class TestCreateStores:
    def test_vector_store_uses_workspace_collection(self, factory, tmp_path) -> None:
        store = factory.create_vector_store(_snapshot())

        assert store.collection_name == collection_name_for(tmp_path / "ws")
        assert store.collection_name.startswith("ws-")
        assert store.vector_size == 1536

    def test_vector_store_requires_url(self, factory) -> None:
        with pytest.raises(ValueError, match="Qdrant URL missing"):
            factory.create_vector_store(_snapshot(vector_store_url=None))

    def test_memory_store_uses_memory_collection_and_index_dimension(self, factory) -> None:
        snapshot = _snapshot(
            provider=Provider.OLLAMA,
            memory=MemorySettings(collection="team_memories", vector_store_url="http://mem:6333"),
        )
        store = factory.create_memory_store(snapshot)

        assert store.collection_name == "team_memories"
        assert store.vector_size == 768
        assert store.url == "http://mem:6333"

    def test_collection_name_is_stable(self, tmp_path) -> None:
        assert collection_name_for(tmp_path) == collection_name_for(str(tmp_path))
        assert collection_name_for(tmp_path) != collection_name_for(tmp_path / "other")


class TestCreateServices:
    def test_builds_full_pipeline(self, factory, tmp_path) -> None:
        services = factory.create_services(_snapshot(root_path="docs"))

        assert isinstance(services.embedder, OpenAIEmbedding)
        assert services.scanner.vector_store is services.vector_store
        assert services.scanner.parser is services.parser
        assert services.file_watcher.root == tmp_path / "ws" / "docs"
        assert services.scanner.cache.path.parent == tmp_path / "cache"

    def test_unconfigured_snapshot_builds_nothing(self, factory, monkeypatch) -> None:
        calls: list[str] = []
        monkeypatch.setattr(factory, "create_embedder", lambda config: calls.append("embedder"))

        with pytest.raises(ValueError, match="not properly configured"):
            factory.create_services(_snapshot(openai=OpenAIOptions()))

        assert calls == []
