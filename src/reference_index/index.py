"""Vector store management and search operations.

Provides a Qdrant-backed store with:
- Collection lifecycle (create, recreate on dimension mismatch)
- Payload indexes on owner keys and timestamps
- Filtered similarity search, point lookup, deletion and scroll listing
- Health checks
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import urlparse

from loguru import logger
from qdrant_client import AsyncQdrantClient, models

from reference_index.models import SearchResult, StoredRecord, VectorRecord

DEFAULT_QDRANT_PORT = 6333
DIRECTORY_PREFIX_FILTER = "directory_prefix"

PayloadIndexSpec = tuple[str, models.PayloadSchemaType]

MEMORY_PAYLOAD_INDEXES: tuple[PayloadIndexSpec, ...] = (
    ("user_id", models.PayloadSchemaType.KEYWORD),
    ("agent_id", models.PayloadSchemaType.KEYWORD),
    ("created_at", models.PayloadSchemaType.DATETIME),
    ("updated_at", models.PayloadSchemaType.DATETIME),
)

REFERENCE_PAYLOAD_INDEXES: tuple[PayloadIndexSpec, ...] = (
    ("file_path", models.PayloadSchemaType.KEYWORD),
    *((f"path_segments.{i}", models.PayloadSchemaType.KEYWORD) for i in range(5)),
)


class VectorStoreConnectionError(RuntimeError):
    """Raised when the vector store cannot be reached during initialization."""


def normalize_qdrant_url(url: str | None) -> str:
    """Normalize a user-entered Qdrant URL.

    Empty values fall back to the local default; a missing scheme becomes
    ``http://`` and a missing port becomes 6333 (http) or 443 (https).

    Example:
        >>> normalize_qdrant_url("qdrant.internal")
        'http://qdrant.internal:6333'
        >>> normalize_qdrant_url("https://cloud.qdrant.io")
        'https://cloud.qdrant.io:443'
    """
    text = (url or "").strip()
    if not text:
        return f"http://localhost:{DEFAULT_QDRANT_PORT}"

    if "://" not in text:
        text = f"http://{text}"

    parsed = urlparse(text)
    if parsed.port is None:
        default_port = 443 if parsed.scheme == "https" else DEFAULT_QDRANT_PORT
        parsed = parsed._replace(netloc=f"{parsed.netloc}:{default_port}")

    return parsed.geturl().rstrip("/")


def _client_kwargs(url: str) -> dict[str, Any]:
    parsed = urlparse(url)
    prefix = parsed.path.rstrip("/") or None
    return {
        "host": parsed.hostname,
        "port": parsed.port,
        "https": parsed.scheme == "https",
        "prefix": prefix,
    }


def _path_segments_conditions(prefix: str) -> list[models.FieldCondition]:
    normalized = PurePosixPath(prefix.replace("\\", "/").strip())
    parts = [part for part in normalized.parts if part not in ("/", ".", "")]
    return [
        models.FieldCondition(key=f"path_segments.{i}", match=models.MatchValue(value=part))
        for i, part in enumerate(parts)
    ]


def build_filter(filters: Mapping[str, Any] | None) -> models.Filter | None:
    """Translate equality filters into a Qdrant ``must`` filter.

    The special ``directory_prefix`` key expands into one condition per
    path segment. ``None`` values are ignored.
    """
    if not filters:
        return None

    conditions: list[models.FieldCondition] = []
    for key, value in filters.items():
        if value is None:
            continue
        if key == DIRECTORY_PREFIX_FILTER:
            conditions.extend(_path_segments_conditions(str(value)))
        else:
            conditions.append(models.FieldCondition(key=key, match=models.MatchValue(value=value)))

    return models.Filter(must=conditions) if conditions else None


class VectorStore(ABC):
    """Abstract base class for vector store implementations."""

    @abstractmethod
    async def initialize(self) -> bool:
        """Ensure the collection exists with the configured dimension.

        Returns:
            True if the collection was created or recreated
        """
        ...

    @abstractmethod
    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        """Insert or update records.

        Raises:
            ValueError: If a vector does not match the collection dimension
        """
        ...

    @abstractmethod
    async def search(
        self,
        vector: list[float],
        filters: Mapping[str, Any] | None = None,
        limit: int = 10,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        """Similarity search ordered by descending score."""
        ...

    @abstractmethod
    async def get(self, record_id: str) -> StoredRecord | None: ...

    @abstractmethod
    async def delete(self, record_id: str) -> bool: ...

    @abstractmethod
    async def list(
        self, filters: Mapping[str, Any] | None = None, limit: int = 100
    ) -> list[StoredRecord]: ...

    @abstractmethod
    async def delete_by_file_paths(self, file_paths: Sequence[str]) -> None: ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the store is reachable.

        Returns:
            True if healthy, False otherwise
        """
        ...


class QdrantVectorStore(VectorStore):
    """Qdrant collection with a fixed vector dimension and cosine distance."""

    def __init__(
        self,
        url: str | None,
        vector_size: int,
        collection_name: str,
        api_key: str | None = None,
        payload_indexes: Sequence[PayloadIndexSpec] = (),
        client: AsyncQdrantClient | None = None,
    ):
        """Initialize Qdrant collection client.

        Args:
            url: Qdrant server URL (normalized, see ``normalize_qdrant_url``)
            vector_size: Dimension every vector in the collection must have
            collection_name: Name of Qdrant collection
            api_key: Optional API key for authentication
            payload_indexes: Payload fields to index after initialization
            client: Pre-built client (e.g. ``AsyncQdrantClient(location=":memory:")``)
        """
        if vector_size <= 0:
            raise ValueError(f"vector_size must be positive, got {vector_size}")

        self.url = normalize_qdrant_url(url)
        self.vector_size = vector_size
        self.collection_name = collection_name
        self.payload_indexes = tuple(payload_indexes)
        self.client = client or AsyncQdrantClient(api_key=api_key or None, **_client_kwargs(self.url))

    async def _existing_vector_size(self) -> int | None:
        info = await self.client.get_collection(collection_name=self.collection_name)
        vectors = info.config.params.vectors
        if isinstance(vectors, models.VectorParams):
            return vectors.size
        return None

    async def _create_collection(self) -> None:
        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=models.VectorParams(
                size=self.vector_size, distance=models.Distance.COSINE
            ),
        )

    async def initialize(self) -> bool:
        """Create the collection, or recreate it when its dimension is stale.

        Recreation drops every stored point: the dimension of a collection
        cannot change in place.

        Returns:
            True if the collection was created or recreated

        Raises:
            VectorStoreConnectionError: If Qdrant cannot be reached
        """
        try:
            created = False
            if not await self.client.collection_exists(collection_name=self.collection_name):
                await self._create_collection()
                logger.info(
                    f"Created collection {self.collection_name} "
                    f"(size={self.vector_size}, distance=Cosine)"
                )
                created = True
            else:
                existing_size = await self._existing_vector_size()
                if existing_size != self.vector_size:
                    logger.warning(
                        f"Collection {self.collection_name} exists with vector size "
                        f"{existing_size}, but expected {self.vector_size}. Recreating collection."
                    )
                    await self.client.delete_collection(collection_name=self.collection_name)
                    await self._create_collection()
                    created = True
        except Exception as e:
            logger.error(f"Failed to initialize Qdrant collection {self.collection_name!r}: {e}")
            raise VectorStoreConnectionError(
                f"Failed to connect to Qdrant at {self.url}: {e}"
            ) from e

        await self._create_payload_indexes()
        return created

    async def _create_payload_indexes(self) -> None:
        for field_name, schema in self.payload_indexes:
            try:
                await self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=field_name,
                    field_schema=schema,
                )
            except Exception as e:
                if "already exists" not in str(e).lower():
                    logger.warning(
                        f"Could not create payload index for {field_name} "
                        f"on {self.collection_name}: {e}"
                    )

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        """Insert or update records in Qdrant.

        Args:
            records: Records whose vectors match ``vector_size``

        Raises:
            ValueError: If a vector has the wrong dimension
        """
        if not records:
            return

        for record in records:
            if len(record.vector) != self.vector_size:
                raise ValueError(
                    f"Record {record.id} has {len(record.vector)} dimensions, "
                    f"collection {self.collection_name} expects {self.vector_size}"
                )

        await self.client.upsert(
            collection_name=self.collection_name,
            points=[
                models.PointStruct(id=record.id, vector=record.vector, payload=record.payload)
                for record in records
            ],
            wait=True,
        )

    async def search(
        self,
        vector: list[float],
        filters: Mapping[str, Any] | None = None,
        limit: int = 10,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        """Search Qdrant collection.

        Args:
            vector: Query embedding
            filters: Equality filters on payload keys (plus ``directory_prefix``)
            limit: Maximum number of hits
            min_score: Score threshold applied by Qdrant

        Returns:
            Hits ranked by similarity; an empty list is a valid outcome
        """
        response = await self.client.query_points(
            collection_name=self.collection_name,
            query=vector,
            query_filter=build_filter(filters),
            score_threshold=min_score,
            limit=limit,
            search_params=models.SearchParams(hnsw_ef=128, exact=False),
            with_payload=True,
        )

        results = []
        for point in response.points:
            # Clamp float noise such as 1.0000001
            score = min(1.0, max(0.0, point.score or 0.0))
            results.append(SearchResult(id=str(point.id), score=score, payload=point.payload or {}))
        return results

    async def get(self, record_id: str) -> StoredRecord | None:
        points = await self.client.retrieve(
            collection_name=self.collection_name, ids=[record_id], with_payload=True
        )
        if not points:
            return None
        point = points[0]
        return StoredRecord(id=str(point.id), payload=point.payload or {})

    async def delete(self, record_id: str) -> bool:
        try:
            await self.client.delete(
                collection_name=self.collection_name,
                points_selector=models.PointIdsList(points=[record_id]),
                wait=True,
            )
            return True
        except Exception as e:
            logger.error(f"Failed to delete point {record_id} from {self.collection_name}: {e}")
            return False

    async def list(
        self, filters: Mapping[str, Any] | None = None, limit: int = 100
    ) -> list[StoredRecord]:
        """Return up to ``limit`` records matching ``filters``.

        A single scroll page: callers needing more must narrow the filters.
        """
        points, _next_offset = await self.client.scroll(
            collection_name=self.collection_name,
            scroll_filter=build_filter(filters),
            limit=limit,
            with_payload=True,
        )
        return [StoredRecord(id=str(point.id), payload=point.payload or {}) for point in points]

    async def delete_by_file_paths(self, file_paths: Sequence[str]) -> None:
        if not file_paths:
            return

        await self.client.delete(
            collection_name=self.collection_name,
            points_selector=models.FilterSelector(
                filter=models.Filter(
                    should=[
                        models.FieldCondition(key="file_path", match=models.MatchValue(value=path))
                        for path in file_paths
                    ]
                )
            ),
            wait=True,
        )

    async def collection_exists(self) -> bool:
        return await self.client.collection_exists(collection_name=self.collection_name)

    async def delete_collection(self) -> None:
        if await self.collection_exists():
            await self.client.delete_collection(collection_name=self.collection_name)

    async def health_check(self) -> bool:
        try:
            await self.client.get_collections()
            return True
        except Exception as e:
            logger.error(f"Qdrant health check failed: {e}")
            return False
