"""Semantic reference index: configuration, backend selection and search.

This package turns persisted settings into a running embedding + vector store
pipeline and decides when that pipeline must be rebuilt. The memory client in
`memory_client` reuses its configuration snapshot and vector store.

Architecture:
    - catalog: Provider/model table with vector dimensions and score thresholds
    - config: Settings store, immutable snapshots, restart decisions
    - embedding: OpenAI, OpenAI-compatible, Gemini and Ollama embedders
    - index: Qdrant collection lifecycle, filtered search, deletion
    - service_factory: Builds embedder, vector store and scan pipeline
    - parsing / scanner: File blocks, incremental scans, change polling
    - manager: Restarts the pipeline on settings changes, serves search

Usage:
    >>> from reference_index import ConfigManager, ReferenceIndexManager, ServiceFactory
    >>> manager = ReferenceIndexManager(ConfigManager(store), ServiceFactory("/path/to/ws"))
    >>> await manager.handle_settings_change()
    >>> results = await manager.search("where is the retry backoff computed")
"""

__version__ = "0.2.1"

from reference_index.catalog import ModelProfile, Provider
from reference_index.config import (
    ConfigLoadResult,
    ConfigManager,
    ConfigSnapshot,
    MemorySettings,
    Mode,
    PreviousConfigSnapshot,
    SettingsStore,
)
from reference_index.manager import ReferenceIndexManager
from reference_index.models import SearchResult, VectorRecord
from reference_index.service_factory import IndexServices, ServiceFactory

__all__ = [
    "ConfigLoadResult",
    "ConfigManager",
    "ConfigSnapshot",
    "IndexServices",
    "MemorySettings",
    "Mode",
    "ModelProfile",
    "PreviousConfigSnapshot",
    "Provider",
    "ReferenceIndexManager",
    "SearchResult",
    "ServiceFactory",
    "SettingsStore",
    "VectorRecord",
]
