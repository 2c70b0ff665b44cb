"""Pydantic models for records flowing through the vector store.

Two payload shapes share one record type: reference snippets (file path +
line range) and conversational memories (user/agent owner keys).
"""

import math
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class VectorRecord(BaseModel):
    """A single point ready for upsert.

    Attributes:
        id: Point identifier (UUID string)
        vector: Embedding; its length must match the collection dimension
        payload: Owner keys, content, timestamps and free-form metadata
    """

    id: str
    vector: list[float] = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("vector")
    @classmethod
    def validate_vector_values(cls, v: list[float]) -> list[float]:
        """Ensure vector contains valid finite floats."""
        for i, val in enumerate(v):
            if not math.isfinite(val):
                raise ValueError(f"Vector contains non-finite value at index {i}: {val}")
        return v


class StoredRecord(BaseModel):
    """A point read back from the store (no vector)."""

    id: str
    payload: dict[str, Any] = Field(default_factory=dict)


class SearchResult(BaseModel):
    """A single similarity hit.

    Attributes:
        id: Point identifier
        score: Cosine similarity (0.0-1.0, higher is better)
        payload: Stored payload
    """

    id: str
    score: float = Field(ge=0.0, le=1.0)
    payload: dict[str, Any] = Field(default_factory=dict)


class MemoryPayload(BaseModel):
    """Payload stored for one conversational memory."""

    content: str
    user_id: str
    agent_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())


class ReferencePayload(BaseModel):
    """Payload stored for one indexed reference snippet.

    ``path_segments`` maps segment position to directory/file name so a
    directory prefix can be expressed as equality conditions.
    """

    file_path: str
    code_chunk: str
    start_line: int = Field(ge=0)
    end_line: int = Field(ge=0)
    segment_hash: str
    path_segments: dict[str, str] = Field(default_factory=dict)
