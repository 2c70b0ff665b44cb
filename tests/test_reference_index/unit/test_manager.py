"""Unit tests for the reference index lifecycle manager.

Given/When/Then flows over settings changes, with an in-memory Qdrant and a
constant-vector embedder standing in for the real providers.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from qdrant_client import AsyncQdrantClient

from reference_index.config import INDEX_SECTION, SECRET_OPENAI_KEY, ConfigManager, SettingsStore
from reference_index.manager import ReferenceIndexManager
from reference_index.service_factory import ServiceFactory, resolve_vector_size


class ConstantEmbedder:
    def __init__(self, dimensions: int) -> None:
        self.dimensions = dimensions
        self.calls = 0

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return [[1.0] + [0.0] * (self.dimensions - 1) for _ in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]


def _body(tag: str) -> str:
    return "\n".join(f"def {tag}_{i}():\n    return {i}  # reference snippet" for i in range(6))


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "src" / "core.py").write_text(_body("core"))
    (root / "docs" / "usage.md").write_text(_body("usage"))
    return root


@pytest.fixture
def store() -> SettingsStore:
    return SettingsStore(settings={INDEX_SECTION: {"enabled": False}})


@pytest.fixture
def factory(workspace: Path, tmp_path: Path, monkeypatch) -> ServiceFactory:
    factory = ServiceFactory(
        workspace,
        cache_dir=tmp_path / "cache",
        qdrant_client=AsyncQdrantClient(location=":memory:"),
    )
    monkeypatch.setattr(
        factory, "create_embedder", lambda config: ConstantEmbedder(resolve_vector_size(config))
    )
    return factory


@pytest.fixture
def manager(store, factory) -> ReferenceIndexManager:
    return ReferenceIndexManager(ConfigManager(store, env={}), factory)


def _enable(store: SettingsStore, **settings) -> None:
    store.update_section(INDEX_SECTION, enabled=True, **settings)
    store.set_secret(SECRET_OPENAI_KEY, "sk-test")


class TestStartup:
    @pytest.mark.asyncio
    async def test_disabled_index_does_not_start(self, manager) -> None:
        assert await manager.start() is False
        assert manager.is_running is False
        assert await manager.search("anything") == []

    @pytest.mark.asyncio
    async def test_enabling_starts_and_indexes(self, manager, store) -> None:
        """Given a disabled index, When it is enabled with a key, Then files are searchable."""
        _enable(store)

        result = await manager.handle_settings_change()

        try:
            assert result.requires_restart is True
            assert manager.is_running is True
            hits = await manager.search("where is core defined")
            assert {hit.payload["file_path"] for hit in hits} == {"src/core.py", "docs/usage.md"}
        finally:
            await manager.stop()


class TestSettingsChanges:
    @pytest.mark.asyncio
    async def test_cosmetic_change_keeps_services(self, manager, store) -> None:
        _enable(store)
        await manager.handle_settings_change()
        services = manager.services

        store.update_section(INDEX_SECTION, search_min_score=0.9, search_max_results=1)
        result = await manager.handle_settings_change()

        try:
            assert result.requires_restart is False
            assert manager.services is services
            assert len(await manager.search("core")) == 1
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_credential_change_rebuilds_services(self, manager, store) -> None:
        _enable(store)
        await manager.handle_settings_change()
        services = manager.services

        store.set_secret(SECRET_OPENAI_KEY, "sk-rotated")
        result = await manager.handle_settings_change()

        try:
            assert result.requires_restart is True
            assert manager.services is not services
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_disabling_stops_services(self, manager, store) -> None:
        _enable(store)
        await manager.handle_settings_change()
        watcher = manager.services.file_watcher

        store.update_section(INDEX_SECTION, enabled=False)
        await manager.handle_settings_change()

        assert manager.is_running is False
        assert watcher.is_running is False

    @pytest.mark.asyncio
    async def test_dimension_change_recreates_collection(self, manager, store, factory) -> None:
        """Given an ollama index at 768, When the model moves to 1024, Then the index is rebuilt."""
        store.update_section(
            INDEX_SECTION,
            enabled=True,
            embedder_provider="ollama",
            embedder_base_url="http://localhost:11434",
        )
        await manager.handle_settings_change()

        store.update_section(INDEX_SECTION, embedder_model_id="mxbai-embed-large")
        result = await manager.handle_settings_change()

        try:
            assert result.requires_restart is True
            info = await factory.qdrant_client.get_collection(factory.collection_name)
            assert info.config.params.vectors.size == 1024
            hits = await manager.search("usage")
            assert {hit.payload["file_path"] for hit in hits} == {"src/core.py", "docs/usage.md"}
        finally:
            await manager.stop()


class TestSearch:
    @pytest.mark.asyncio
    async def test_directory_prefix_restricts_hits(self, manager, store) -> None:
        _enable(store)
        await manager.handle_settings_change()

        try:
            hits = await manager.search("usage", directory_prefix="docs")
            assert [hit.payload["file_path"] for hit in hits] == ["docs/usage.md"]
        finally:
            await manager.stop()
