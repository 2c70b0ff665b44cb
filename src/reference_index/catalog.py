"""Embedding provider catalog.

Static lookup of provider -> model -> vector dimension and score threshold.
Everything that needs to know how wide a provider's vectors are (collection
creation, restart diffing, search defaults) resolves it here.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Provider(str, Enum):
    """Supported embedding providers."""

    OPENAI = "openai"
    OLLAMA = "ollama"
    OPENAI_COMPATIBLE = "openai-compatible"
    GEMINI = "gemini"


class ModelProfile(BaseModel):
    """Catalog entry for one embedding model.

    Attributes:
        provider: Provider serving the model
        model_id: Provider-specific model identifier
        dimension: Length of the vectors the model produces
        score_threshold: Suggested minimum cosine similarity for search hits
    """

    model_config = ConfigDict(frozen=True)

    provider: Provider
    model_id: str
    dimension: int = Field(gt=0)
    score_threshold: float | None = Field(default=None, ge=0.0, le=1.0)


DEFAULT_SEARCH_MIN_SCORE = 0.4
DEFAULT_MAX_SEARCH_RESULTS = 50

# Gemini only exposes text-embedding-004 through the compatible endpoint
GEMINI_EMBEDDING_DIMENSION = 768


def _profiles(provider: Provider, *rows: tuple[str, int, float]) -> dict[str, ModelProfile]:
    return {
        model_id: ModelProfile(
            provider=provider, model_id=model_id, dimension=dimension, score_threshold=threshold
        )
        for model_id, dimension, threshold in rows
    }


MODEL_PROFILES: dict[Provider, dict[str, ModelProfile]] = {
    Provider.OPENAI: _profiles(
        Provider.OPENAI,
        ("text-embedding-3-small", 1536, 0.4),
        ("text-embedding-3-large", 3072, 0.4),
        ("text-embedding-ada-002", 1536, 0.4),
    ),
    Provider.OLLAMA: _profiles(
        Provider.OLLAMA,
        ("nomic-embed-text", 768, 0.4),
        ("nomic-embed-code", 3584, 0.15),
        ("mxbai-embed-large", 1024, 0.4),
        ("all-minilm", 384, 0.4),
    ),
    Provider.OPENAI_COMPATIBLE: _profiles(
        Provider.OPENAI_COMPATIBLE,
        ("text-embedding-3-small", 1536, 0.4),
        ("text-embedding-3-large", 3072, 0.4),
        ("text-embedding-ada-002", 1536, 0.4),
        ("nomic-embed-code", 3584, 0.15),
    ),
    Provider.GEMINI: _profiles(
        Provider.GEMINI,
        ("text-embedding-004", GEMINI_EMBEDDING_DIMENSION, 0.4),
    ),
}

DEFAULT_MODEL_IDS: dict[Provider, str] = {
    Provider.OPENAI: "text-embedding-3-small",
    Provider.OLLAMA: "nomic-embed-text",
    Provider.OPENAI_COMPATIBLE: "text-embedding-3-small",
    Provider.GEMINI: "text-embedding-004",
}


def normalize_provider(raw: object) -> Provider:
    """Map a persisted provider name onto a supported provider.

    Unrecognized or empty values fall back to OpenAI.

    Example:
        >>> normalize_provider("ollama")
        <Provider.OLLAMA: 'ollama'>
        >>> normalize_provider("cohere")
        <Provider.OPENAI: 'openai'>
    """
    if isinstance(raw, Provider):
        return raw
    try:
        return Provider(str(raw).strip().lower())
    except ValueError:
        return Provider.OPENAI


def get_default_model_id(provider: Provider | str) -> str | None:
    """Return the default model for a provider, or None for unknown providers."""
    try:
        return DEFAULT_MODEL_IDS[Provider(provider)]
    except ValueError:
        return None


def get_model_profile(provider: Provider | str, model_id: str | None) -> ModelProfile | None:
    """Look up the catalog entry for ``(provider, model_id)``."""
    if not model_id:
        return None
    try:
        return MODEL_PROFILES[Provider(provider)].get(model_id)
    except ValueError:
        return None


def get_model_dimension(provider: Provider | str, model_id: str | None) -> int | None:
    """Return the vector dimension for a model, or None when it is not catalogued."""
    profile = get_model_profile(provider, model_id)
    return profile.dimension if profile else None


def get_model_score_threshold(provider: Provider | str, model_id: str | None) -> float | None:
    profile = get_model_profile(provider, model_id)
    return profile.score_threshold if profile else None
