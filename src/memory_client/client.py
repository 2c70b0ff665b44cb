"""Dual-mode memory client.

One API (search, store, get, delete, list, health) served either by the hosted
memory HTTP API or locally by an embedder plus a vector store. Per-call
failures never escape: they are logged, recorded on ``last_error`` and turned
into the call's sentinel (``None`` or ``False``). The only exception raised
from an operation is the hosted API-key pre-flight check.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import BaseModel

from memory_client.config import (
    REQUEST_TIMEOUT_SECONDS,
    apply_updates,
    base_url,
    is_enabled,
    is_valid_api_key,
    is_valid_configuration,
    request_headers,
)
from memory_client.errors import (
    ApiError,
    ConfigurationError,
    HostedModeError,
    InvalidApiKeyError,
    MemoryServiceError,
    NetworkError,
    NotInitializedError,
    format_error,
)
from reference_index.config import ConfigSnapshot, MemorySettings, Mode
from reference_index.embedding import EmbeddingClient
from reference_index.index import VectorStore
from reference_index.models import MemoryPayload, VectorRecord

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: Exception


Result = Ok[T] | Err


class ModeInfo(BaseModel):
    mode: Mode
    is_enabled: bool


def _message_text(message: Any) -> str:
    if isinstance(message, str):
        return message
    if isinstance(message, Mapping):
        return str(message.get("content") or json.dumps(message, default=str))
    return str(message)


def _memory_record(
    record_id: str, payload: Mapping[str, Any], score: float | None = None
) -> dict[str, Any]:
    record = {
        "id": record_id,
        "content": payload.get("content"),
        "user_id": payload.get("user_id"),
        "agent_id": payload.get("agent_id"),
        "metadata": payload.get("metadata") or {},
        "created_at": payload.get("created_at"),
        "updated_at": payload.get("updated_at"),
    }
    if score is not None:
        record["score"] = score
    return record


def _response_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class MemoryClient:
    """Memory API client that routes each call by the configured mode.

    Args:
        settings: Memory settings (usually ``ConfigSnapshot.memory``)
        embedder: Embedder used in local mode
        vector_store: Store used in local mode (memory payload indexes)
        http_client: Client used in hosted mode; a short-lived one is
            created per request when omitted

    Example:
        >>> client = MemoryClient.from_snapshot(snapshot, embedder=embedder, vector_store=store)
        >>> await client.store_memory(["prefers tabs"], user_id="u1", agent_id="a1")
        True
    """

    def __init__(
        self,
        settings: MemorySettings | None = None,
        *,
        embedder: EmbeddingClient | None = None,
        vector_store: VectorStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or MemorySettings()
        self.embedder = embedder
        self.vector_store = vector_store
        self._http_client = http_client
        self.last_error: Exception | None = None

    @classmethod
    def from_snapshot(
        cls,
        snapshot: ConfigSnapshot,
        *,
        embedder: EmbeddingClient | None = None,
        vector_store: VectorStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> MemoryClient:
        return cls(
            snapshot.memory,
            embedder=embedder,
            vector_store=vector_store,
            http_client=http_client,
        )

    @property
    def settings(self) -> MemorySettings:
        return self._settings

    def configure(self, **updates: Any) -> MemorySettings:
        """Merge ``updates`` into a new settings value and swap it in.

        Raises:
            InvalidApiKeyError: If the result is enabled, hosted and the key is invalid
        """
        new_settings = apply_updates(self._settings, updates)

        if new_settings.enabled and not is_valid_configuration(new_settings):
            if new_settings.mode is Mode.HOSTED and not is_valid_api_key(new_settings.api_key):
                raise InvalidApiKeyError(new_settings.api_key)

        self._settings = new_settings
        logger.debug(
            f"Memory client configured (mode={new_settings.mode.value}, "
            f"enabled={new_settings.enabled})"
        )
        return new_settings

    async def initialize(self) -> bool:
        """Prepare the local collection.

        Returns:
            True if the collection was created or recreated

        Raises:
            ConfigurationError: If local mode is enabled without a vector store
        """
        settings = self._settings
        if not settings.enabled or settings.mode is not Mode.LOCAL:
            return False
        if self.vector_store is None:
            raise ConfigurationError("Local mode requested but no vector store is configured")
        created = await self.vector_store.initialize()
        logger.info(f"Memory local mode initialized (collection={settings.collection})")
        return created

    def is_service_ready(self) -> bool:
        return is_enabled(self._settings)

    def get_mode(self) -> ModeInfo:
        return ModeInfo(mode=self._settings.mode, is_enabled=self.is_service_ready())

    def validate_api_key(self, api_key: str | None) -> bool:
        return is_valid_api_key(api_key)

    # -- boundary -----------------------------------------------------------

    @staticmethod
    def _preflight(settings: MemorySettings) -> None:
        if settings.mode is Mode.HOSTED and not is_valid_api_key(settings.api_key):
            raise HostedModeError()

    async def _run(self, call: Awaitable[Result[T]]) -> Result[T]:
        try:
            return await call
        except Exception as e:
            return Err(e)

    def _unwrap(self, result: Result[T], sentinel: T) -> T:
        if isinstance(result, Ok):
            self.last_error = None
            return result.value
        self.last_error = result.error
        logger.error(format_error(result.error))
        return sentinel

    # -- hosted path --------------------------------------------------------

    async def _request(
        self,
        settings: MemorySettings,
        method: str,
        path: str,
        *,
        body: Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Result[Any]:
        root = base_url(settings)
        if not root:
            return Err(ApiError("Base URL not configured"))

        url = f"{root}{path}"
        request_kwargs: dict[str, Any] = {
            "headers": request_headers(settings),
            "timeout": REQUEST_TIMEOUT_SECONDS,
        }
        if body is not None:
            request_kwargs["json"] = dict(body)
        if params is not None:
            request_kwargs["params"] = dict(params)

        try:
            if self._http_client is not None:
                response = await self._http_client.request(method, url, **request_kwargs)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(method, url, **request_kwargs)
        except httpx.RequestError as e:
            return Err(NetworkError(e))

        if response.status_code in (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN):
            return Err(InvalidApiKeyError())

        if response.is_error:
            return Err(
                ApiError(
                    f"API request failed: {method} {path} -> {response.status_code}",
                    response.status_code,
                    _response_body(response),
                )
            )

        logger.debug(f"{method} {url} -> {response.status_code}")
        return Ok(_response_body(response))

    # -- local path ---------------------------------------------------------

    async def _embed(self, text: str) -> Result[list[float]]:
        if self.embedder is None:
            return Err(NotInitializedError("Local mode not properly initialized: no embedder"))
        embeddings = await self.embedder.embed_batch([text])
        if not embeddings or not embeddings[0]:
            return Err(MemoryServiceError("Failed to create embedding for memory content"))
        return Ok(embeddings[0])

    def _store(self) -> Result[VectorStore]:
        if self.vector_store is None:
            return Err(NotInitializedError("Local mode not properly initialized: no vector store"))
        return Ok(self.vector_store)

    async def _search_local(
        self, settings: MemorySettings, query: str, user_id: str, agent_id: str
    ) -> Result[list[dict[str, Any]]]:
        store = self._store()
        if isinstance(store, Err):
            return store
        vector = await self._embed(query)
        if isinstance(vector, Err):
            return vector

        hits = await store.value.search(
            vector.value,
            filters={"user_id": user_id, "agent_id": agent_id},
            limit=settings.search_limit,
            min_score=settings.search_min_score,
        )
        return Ok([_memory_record(hit.id, hit.payload, hit.score) for hit in hits])

    async def _store_local(
        self,
        messages: Sequence[Any],
        user_id: str,
        agent_id: str,
        metadata: Mapping[str, Any] | None,
    ) -> Result[bool]:
        store = self._store()
        if isinstance(store, Err):
            return store
        content = " ".join(_message_text(message) for message in messages)
        vector = await self._embed(content)
        if isinstance(vector, Err):
            return vector

        payload = MemoryPayload(
            content=content, user_id=user_id, agent_id=agent_id, metadata=dict(metadata or {})
        )
        record = VectorRecord(id=str(uuid.uuid4()), vector=vector.value, payload=payload.model_dump())
        await store.value.upsert([record])
        return Ok(True)

    async def _get_local(self, memory_id: str) -> Result[dict[str, Any] | None]:
        store = self._store()
        if isinstance(store, Err):
            return store
        record = await store.value.get(memory_id)
        return Ok(_memory_record(record.id, record.payload) if record else None)

    async def _delete_local(self, memory_id: str) -> Result[bool]:
        store = self._store()
        if isinstance(store, Err):
            return store
        return Ok(await store.value.delete(memory_id))

    async def _list_local(
        self, settings: MemorySettings, user_id: str, agent_id: str, limit: int | None
    ) -> Result[list[dict[str, Any]]]:
        store = self._store()
        if isinstance(store, Err):
            return store
        records = await store.value.list(
            filters={"user_id": user_id, "agent_id": agent_id},
            limit=limit or settings.list_limit,
        )
        return Ok([_memory_record(record.id, record.payload) for record in records])

    async def _health_local(self) -> Result[bool]:
        store = self._store()
        if isinstance(store, Err):
            return store
        if not await store.value.health_check():
            return Err(MemoryServiceError("Vector store health check failed"))
        return Ok(True)

    # -- public operations --------------------------------------------------

    async def search_memories(
        self, query: str, user_id: str, agent_id: str
    ) -> list[dict[str, Any]] | None:
        """Search memories for ``(user_id, agent_id)``.

        Returns:
            Matching memories (best first), or None when disabled or on failure

        Raises:
            HostedModeError: If hosted mode is selected without a valid API key
        """
        settings = self._settings
        if not is_enabled(settings):
            return None
        self._preflight(settings)

        if settings.mode is Mode.HOSTED:
            result = await self._run(
                self._request(
                    settings,
                    "POST",
                    "/search",
                    body={"query": query, "user_id": user_id, "agent_id": agent_id},
                )
            )
            if isinstance(result, Ok) and not isinstance(result.value, list):
                result = Ok([])
        else:
            result = await self._run(self._search_local(settings, query, user_id, agent_id))
        return self._unwrap(result, None)

    async def store_memory(
        self,
        messages: Sequence[Any],
        user_id: str,
        agent_id: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        """Store conversation messages as one memory.

        ``metadata=None`` is left out of the hosted request body.
        """
        settings = self._settings
        if not is_enabled(settings):
            return False
        self._preflight(settings)

        if settings.mode is Mode.HOSTED:
            body: dict[str, Any] = {
                "messages": list(messages),
                "user_id": user_id,
                "agent_id": agent_id,
            }
            if metadata is not None:
                body["metadata"] = dict(metadata)
            result = await self._run(self._request(settings, "POST", "/memories", body=body))
            if isinstance(result, Ok):
                result = Ok(True)
        else:
            result = await self._run(self._store_local(messages, user_id, agent_id, metadata))
        return self._unwrap(result, False)

    async def get_memory(self, memory_id: str) -> dict[str, Any] | None:
        settings = self._settings
        if not is_enabled(settings):
            return None
        self._preflight(settings)

        if settings.mode is Mode.HOSTED:
            path = f"/memories/{quote(memory_id, safe='')}"
            result = await self._run(self._request(settings, "GET", path))
        else:
            result = await self._run(self._get_local(memory_id))
        return self._unwrap(result, None)

    async def delete_memory(self, memory_id: str) -> bool:
        settings = self._settings
        if not is_enabled(settings):
            return False
        self._preflight(settings)

        if settings.mode is Mode.HOSTED:
            path = f"/memories/{quote(memory_id, safe='')}"
            result = await self._run(self._request(settings, "DELETE", path))
            if isinstance(result, Ok):
                result = Ok(True)
        else:
            result = await self._run(self._delete_local(memory_id))
        return self._unwrap(result, False)

    async def list_memories(
        self, user_id: str, agent_id: str, limit: int | None = None
    ) -> list[dict[str, Any]] | None:
        """List memories for ``(user_id, agent_id)``.

        One page of at most ``limit`` records (``list_limit`` when omitted
        in local mode); there is no cursor.
        """
        settings = self._settings
        if not is_enabled(settings):
            return None
        self._preflight(settings)

        if settings.mode is Mode.HOSTED:
            params: dict[str, Any] = {"user_id": user_id, "agent_id": agent_id}
            if limit:
                params["limit"] = str(limit)
            result = await self._run(self._request(settings, "GET", "/memories", params=params))
            if isinstance(result, Ok) and not isinstance(result.value, list):
                result = Ok([])
        else:
            result = await self._run(self._list_local(settings, user_id, agent_id, limit))
        return self._unwrap(result, None)

    async def health_check(self) -> bool:
        settings = self._settings
        if not is_enabled(settings):
            return False
        self._preflight(settings)

        if settings.mode is Mode.HOSTED:
            result = await self._run(self._request(settings, "GET", "/health"))
            if isinstance(result, Ok):
                result = Ok(True)
        else:
            result = await self._run(self._health_local())
        return self._unwrap(result, False)
