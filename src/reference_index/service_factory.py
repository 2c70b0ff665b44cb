"""Builds the embedder, vector stores and scan pipeline from a ConfigSnapshot.

Selection is an exhaustive match on the provider; a missing credential or
endpoint is reported with a ``ValueError`` that names the provider instead of
silently falling back to another backend.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

from loguru import logger
from qdrant_client import AsyncQdrantClient

from reference_index.catalog import GEMINI_EMBEDDING_DIMENSION, Provider, get_model_dimension
from reference_index.config import ConfigSnapshot, is_configured
from reference_index.embedding import EmbeddingClient, EmbeddingConfig, create_embedding_client
from reference_index.index import MEMORY_PAYLOAD_INDEXES, REFERENCE_PAYLOAD_INDEXES, QdrantVectorStore
from reference_index.parsing import CompositeParser, LineBlockParser, NotebookParser
from reference_index.scanner import DirectoryScanner, FileHashCache, FileWatcher

DEFAULT_CACHE_DIR = Path("~/.reference_index").expanduser()


def collection_name_for(workspace_path: Path | str) -> str:
    """Derive a stable collection name from the workspace path.

    Example:
        >>> collection_name_for("/home/me/project").startswith("ws-")
        True
    """
    digest = hashlib.sha256(str(Path(workspace_path).resolve()).encode("utf-8")).hexdigest()
    return f"ws-{digest[:16]}"


def resolve_vector_size(config: ConfigSnapshot) -> int:
    """Return the vector dimension implied by the snapshot.

    Raises:
        ValueError: If the dimension cannot be determined
    """
    model_id = config.effective_model_id

    match config.provider:
        case Provider.OPENAI_COMPATIBLE:
            explicit = config.openai_compatible.model_dimension
            if explicit is not None and explicit > 0:
                return explicit
            dimension = get_model_dimension(config.provider, model_id)
            if dimension is None:
                raise ValueError(
                    f"Could not determine vector dimension for model {model_id!r} with "
                    f"provider 'openai-compatible'. Set the embedding dimension in the "
                    f"openai-compatible settings."
                )
            return dimension
        case Provider.GEMINI:
            return GEMINI_EMBEDDING_DIMENSION
        case _:
            dimension = get_model_dimension(config.provider, model_id)
            if dimension is None:
                raise ValueError(
                    f"Could not determine vector dimension for model {model_id!r} with "
                    f"provider {config.provider.value!r}. Check the model profiles."
                )
            return dimension


@dataclass
class IndexServices:
    """Everything a running reference index needs."""

    embedder: EmbeddingClient
    vector_store: QdrantVectorStore
    parser: CompositeParser
    scanner: DirectoryScanner
    file_watcher: FileWatcher


class ServiceFactory:
    """Creates index services for one workspace.

    Args:
        workspace_path: Workspace the index belongs to (names the collection)
        cache_dir: Where hash caches are kept
        qdrant_client: Shared client, e.g. ``AsyncQdrantClient(location=":memory:")``
    """

    def __init__(
        self,
        workspace_path: Path | str,
        cache_dir: Path | str | None = None,
        qdrant_client: AsyncQdrantClient | None = None,
    ):
        self.workspace_path = Path(workspace_path)
        self.cache_dir = Path(cache_dir) if cache_dir else DEFAULT_CACHE_DIR
        self.qdrant_client = qdrant_client

    @property
    def collection_name(self) -> str:
        return collection_name_for(self.workspace_path)

    def scan_root(self, config: ConfigSnapshot) -> Path:
        """``root_path`` when set (relative to the workspace), else the workspace."""
        if not config.root_path:
            return self.workspace_path
        return self.workspace_path / config.root_path

    def create_embedder(self, config: ConfigSnapshot) -> EmbeddingClient:
        """Create the embedder for the configured provider.

        Raises:
            ValueError: If the provider's credentials or endpoint are missing
        """
        provider = config.provider
        model_id = config.effective_model_id

        match provider:
            case Provider.OPENAI:
                if not config.openai.api_key:
                    raise ValueError("OpenAI configuration missing for embedder creation")
                api_key, base_url = config.openai.api_key, None
            case Provider.OLLAMA:
                if not config.ollama.base_url:
                    raise ValueError("Ollama configuration missing for embedder creation")
                api_key, base_url = None, config.ollama.base_url
            case Provider.OPENAI_COMPATIBLE:
                options = config.openai_compatible
                if not options.base_url or not options.api_key:
                    raise ValueError(
                        "OpenAI Compatible configuration missing for embedder creation"
                    )
                api_key, base_url = options.api_key, options.base_url
            case Provider.GEMINI:
                if not config.gemini.api_key:
                    raise ValueError("Gemini configuration missing for embedder creation")
                # The compatible endpoint only serves one embedding model
                api_key, base_url, model_id = config.gemini.api_key, None, "text-embedding-004"
            case _:
                raise ValueError(f"Invalid embedder type configured: {provider}")

        if not model_id:
            raise ValueError(f"No embedding model configured for provider {provider.value!r}")

        return create_embedding_client(
            EmbeddingConfig(
                provider=provider,
                model_id=model_id,
                dimensions=resolve_vector_size(config),
                api_key=api_key,
                base_url=base_url,
            )
        )

    def create_vector_store(self, config: ConfigSnapshot) -> QdrantVectorStore:
        """Create the Qdrant store for this workspace's reference collection.

        Raises:
            ValueError: If no vector store URL is configured or the dimension is unknown
        """
        if not config.vector_store_url:
            raise ValueError("Qdrant URL missing for vector store creation")

        return QdrantVectorStore(
            url=config.vector_store_url,
            vector_size=resolve_vector_size(config),
            collection_name=self.collection_name,
            api_key=config.vector_store_api_key,
            payload_indexes=REFERENCE_PAYLOAD_INDEXES,
            client=self.qdrant_client,
        )

    def create_memory_store(self, config: ConfigSnapshot) -> QdrantVectorStore:
        """Create the store backing the memory client's local mode."""
        memory = config.memory
        url = memory.vector_store_url or config.vector_store_url
        if not url:
            raise ValueError("Qdrant URL missing for memory store creation")

        return QdrantVectorStore(
            url=url,
            vector_size=resolve_vector_size(config),
            collection_name=memory.collection,
            api_key=memory.vector_store_api_key or config.vector_store_api_key,
            payload_indexes=MEMORY_PAYLOAD_INDEXES,
            client=self.qdrant_client,
        )

    def create_parser(self) -> CompositeParser:
        return CompositeParser([NotebookParser(), LineBlockParser()])

    def create_directory_scanner(
        self,
        embedder: EmbeddingClient,
        vector_store: QdrantVectorStore,
        parser: CompositeParser,
    ) -> DirectoryScanner:
        cache = FileHashCache(self.cache_dir / f"{self.collection_name}-hashes.json")
        return DirectoryScanner(embedder, vector_store, parser, cache)

    def create_file_watcher(self, config: ConfigSnapshot, scanner: DirectoryScanner) -> FileWatcher:
        return FileWatcher(self.scan_root(config), scanner)

    def create_services(self, config: ConfigSnapshot) -> IndexServices:
        """Create every index service, or none of them.

        Raises:
            ValueError: If the snapshot is not fully configured for its provider
        """
        if not is_configured(config):
            raise ValueError("Cannot create services: Code indexing is not properly configured")

        embedder = self.create_embedder(config)
        vector_store = self.create_vector_store(config)
        parser = self.create_parser()
        scanner = self.create_directory_scanner(embedder, vector_store, parser)
        file_watcher = self.create_file_watcher(config, scanner)

        logger.info(
            f"Created index services (provider={config.provider.value}, "
            f"model={config.effective_model_id}, collection={self.collection_name})"
        )
        return IndexServices(
            embedder=embedder,
            vector_store=vector_store,
            parser=parser,
            scanner=scanner,
            file_watcher=file_watcher,
        )
