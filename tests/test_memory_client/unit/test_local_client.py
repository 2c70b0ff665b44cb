"""Unit tests for the memory client's local (embedder + vector store) path."""

from __future__ import annotations

import hashlib
import uuid

import pytest
from qdrant_client import AsyncQdrantClient

from memory_client.client import MemoryClient
from memory_client.errors import ConfigurationError, MemoryServiceError, NotInitializedError
from reference_index.config import MemorySettings, Mode
from reference_index.index import MEMORY_PAYLOAD_INDEXES, QdrantVectorStore

DIMENSION = 8


class HashEmbedder:
    """Same text, same vector."""

    def __init__(self) -> None:
        self.texts: list[str] = []

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.texts.extend(texts)
        return [
            [b / 255.0 + 0.01 for b in hashlib.sha256(text.encode()).digest()[:DIMENSION]]
            for text in texts
        ]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]


class EmptyEmbedder:
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return []

    async def embed_single(self, text: str) -> list[float]:
        return []


@pytest.fixture
def settings() -> MemorySettings:
    return MemorySettings(enabled=True, mode=Mode.LOCAL, collection="memories")


@pytest.fixture
def vector_store() -> QdrantVectorStore:
    return QdrantVectorStore(
        url="http://localhost:6333",
        vector_size=DIMENSION,
        collection_name="memories",
        payload_indexes=MEMORY_PAYLOAD_INDEXES,
        client=AsyncQdrantClient(location=":memory:"),
    )


@pytest.fixture
def embedder() -> HashEmbedder:
    return HashEmbedder()


@pytest.fixture
def client(settings, embedder, vector_store) -> MemoryClient:
    return MemoryClient(settings, embedder=embedder, vector_store=vector_store)


class TestInitialize:
    @pytest.mark.asyncio
    async def test_creates_collection(self, client, vector_store) -> None:
        assert await client.initialize() is True
        assert await vector_store.collection_exists() is True

    @pytest.mark.asyncio
    async def test_local_mode_without_store_is_a_configuration_error(self, settings) -> None:
        with pytest.raises(ConfigurationError):
            await MemoryClient(settings).initialize()

    @pytest.mark.asyncio
    async def test_hosted_mode_skips_local_setup(self, valid_api_key, vector_store) -> None:
        hosted = MemoryClient(
            MemorySettings(enabled=True, mode=Mode.HOSTED, api_key=valid_api_key),
            vector_store=vector_store,
        )
        assert await hosted.initialize() is False
        assert await vector_store.collection_exists() is False


class TestStoreAndSearch:
    @pytest.mark.asyncio
    async def test_round_trip_returns_stored_memory_first(self, client) -> None:
        """Given a stored memory, When searching with its exact text, Then it ranks first."""
        await client.initialize()
        await client.store_memory(["likes dark roast coffee"], "u1", "a1", {"topic": "food"})
        await client.store_memory(["deploys on fridays"], "u1", "a1")

        results = await client.search_memories("likes dark roast coffee", "u1", "a1")

        assert results
        top = results[0]
        assert top["content"] == "likes dark roast coffee"
        assert top["score"] >= client.settings.search_min_score
        assert top["metadata"] == {"topic": "food"}
        assert top["user_id"] == "u1"
        assert top["agent_id"] == "a1"
        assert top["created_at"]

    @pytest.mark.asyncio
    async def test_search_is_scoped_to_owner(self, client) -> None:
        await client.initialize()
        await client.store_memory(["shared phrase"], "u1", "a1")

        assert await client.search_memories("shared phrase", "u2", "a1") == []
        assert await client.search_memories("shared phrase", "u1", "a2") == []

    @pytest.mark.asyncio
    async def test_messages_are_joined_with_spaces(self, client, embedder) -> None:
        await client.initialize()
        messages = ["plain", {"role": "user", "content": "dict"}, {"role": "tool"}]

        assert await client.store_memory(messages, "u1", "a1") is True
        assert embedder.texts[-1] == 'plain dict {"role": "tool"}'

    @pytest.mark.asyncio
    async def test_empty_embedding_is_a_failure(self, settings, vector_store) -> None:
        client = MemoryClient(settings, embedder=EmptyEmbedder(), vector_store=vector_store)
        await client.initialize()

        assert await client.store_memory(["x"], "u1", "a1") is False
        assert type(client.last_error) is MemoryServiceError
        assert await client.search_memories("x", "u1", "a1") is None

    @pytest.mark.asyncio
    async def test_missing_embedder_is_not_initialized(self, settings, vector_store) -> None:
        client = MemoryClient(settings, vector_store=vector_store)

        assert await client.search_memories("x", "u1", "a1") is None
        assert isinstance(client.last_error, NotInitializedError)

    @pytest.mark.asyncio
    async def test_missing_store_is_not_initialized(self, settings, embedder) -> None:
        client = MemoryClient(settings, embedder=embedder)

        assert await client.list_memories("u1", "a1") is None
        assert isinstance(client.last_error, NotInitializedError)
        assert await client.health_check() is False


class TestPointOperations:
    @pytest.mark.asyncio
    async def test_list_get_delete(self, client) -> None:
        await client.initialize()
        await client.store_memory(["first"], "u1", "a1")
        await client.store_memory(["second"], "u1", "a1")
        await client.store_memory(["other owner"], "u9", "a1")

        listed = await client.list_memories("u1", "a1")
        assert sorted(m["content"] for m in listed) == ["first", "second"]
        assert len(await client.list_memories("u1", "a1", limit=1)) == 1

        memory_id = listed[0]["id"]
        fetched = await client.get_memory(memory_id)
        assert fetched["id"] == memory_id
        assert "score" not in fetched

        assert await client.delete_memory(memory_id) is True
        assert await client.get_memory(memory_id) is None
        assert len(await client.list_memories("u1", "a1")) == 1

    @pytest.mark.asyncio
    async def test_unknown_id_returns_none(self, client) -> None:
        await client.initialize()
        assert await client.get_memory(str(uuid.uuid4())) is None
        assert client.last_error is None

    @pytest.mark.asyncio
    async def test_health_check(self, client) -> None:
        await client.initialize()
        assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_disabled_local_client_is_silent(self, embedder, vector_store) -> None:
        client = MemoryClient(MemorySettings(enabled=False), embedder=embedder, vector_store=vector_store)

        assert await client.store_memory(["x"], "u1", "a1") is False
        assert embedder.texts == []
        assert client.last_error is None
