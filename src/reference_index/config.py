"""Configuration loading, validation and restart decisions for the reference index.

Persisted settings (non-secret YAML + a separate secrets file) are merged with
environment overrides into an immutable ``ConfigSnapshot``. Every reload builds
a complete new snapshot before it is published, and ``requires_restart`` decides
from a before/after pair whether the embedder/vector-store pipeline has to be
rebuilt.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger
from omegaconf import OmegaConf
from pydantic import BaseModel, ConfigDict, Field

from reference_index.catalog import (
    DEFAULT_MAX_SEARCH_RESULTS,
    DEFAULT_SEARCH_MIN_SCORE,
    Provider,
    get_default_model_id,
    get_model_dimension,
    get_model_score_threshold,
    normalize_provider,
)

DEFAULT_QDRANT_URL = "http://localhost:6333"
DEFAULT_MEMORY_BASE_URL = "http://localhost:4321"
DEFAULT_MEMORY_COLLECTION = "mem0_memories"

ENV_MEM0_API_KEY = "MEM0_API_KEY"
ENV_MEM0_BASE_URL = "MEM0_BASE_URL"
ENV_MEM0_MODE = "MEM0_MODE"

INDEX_SECTION = "reference_index"
MEMORY_SECTION = "memory"

SECRET_OPENAI_KEY = "CODE_INDEX_OPENAI_KEY"
SECRET_QDRANT_API_KEY = "CODE_INDEX_QDRANT_API_KEY"
SECRET_OPENAI_COMPATIBLE_KEY = "OPENAI_COMPATIBLE_API_KEY"
SECRET_GEMINI_KEY = "GEMINI_API_KEY"
SECRET_MEM0_KEY = "MEM0_API_KEY"


class Mode(str, Enum):
    """Request path of the memory client."""

    LOCAL = "local"
    HOSTED = "hosted"


class OpenAIOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str = ""


class OllamaOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_url: str = ""


class OpenAICompatibleOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_url: str = ""
    api_key: str = ""
    model_dimension: int | None = None


class GeminiOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str = ""


class MemorySettings(BaseModel):
    """Settings consumed by the dual-mode memory client.

    Attributes:
        enabled: Whether the memory feature is switched on
        mode: Hosted HTTP API or local vector store
        base_url: Hosted memory API base URL
        api_key: Hosted memory API key (``mem0-`` + 52 alphanumerics)
        collection: Vector-store collection used in local mode
        vector_store_url: Vector store used in local mode
        vector_store_api_key: API key for that vector store
        search_limit: Maximum hits returned by a local search
        search_min_score: Minimum similarity for a local search hit
        list_limit: Default page size for local listing
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    mode: Mode = Mode.LOCAL
    base_url: str | None = DEFAULT_MEMORY_BASE_URL
    api_key: str | None = None
    collection: str = DEFAULT_MEMORY_COLLECTION
    vector_store_url: str | None = None
    vector_store_api_key: str | None = None
    search_limit: int = Field(default=10, ge=1)
    search_min_score: float = Field(default=0.7, ge=0.0, le=1.0)
    list_limit: int = Field(default=100, ge=1)


class ConfigSnapshot(BaseModel):
    """Fully resolved configuration produced by one load cycle.

    Snapshots are frozen; a reload replaces the whole value.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    provider: Provider = Provider.OPENAI
    model_id: str | None = None
    openai: OpenAIOptions = Field(default_factory=OpenAIOptions)
    ollama: OllamaOptions = Field(default_factory=OllamaOptions)
    openai_compatible: OpenAICompatibleOptions = Field(default_factory=OpenAICompatibleOptions)
    gemini: GeminiOptions = Field(default_factory=GeminiOptions)
    vector_store_url: str | None = DEFAULT_QDRANT_URL
    vector_store_api_key: str | None = None
    search_min_score: float | None = None
    search_max_results: int | None = None
    root_path: str | None = None
    memory: MemorySettings = Field(default_factory=MemorySettings)

    @property
    def mode(self) -> Mode:
        return self.memory.mode

    @property
    def effective_model_id(self) -> str | None:
        """Explicit model id, else the provider default."""
        return self.model_id or get_default_model_id(self.provider)

    @property
    def effective_search_min_score(self) -> float:
        """User setting, then the model's catalog threshold, then the global default."""
        if self.search_min_score is not None:
            return self.search_min_score
        threshold = get_model_score_threshold(self.provider, self.effective_model_id)
        return threshold if threshold is not None else DEFAULT_SEARCH_MIN_SCORE

    @property
    def effective_search_max_results(self) -> int:
        if self.search_max_results is not None:
            return self.search_max_results
        return DEFAULT_MAX_SEARCH_RESULTS

    def to_previous(self) -> PreviousConfigSnapshot:
        """Project this snapshot into the flattened form kept for diffing."""
        return PreviousConfigSnapshot(
            enabled=self.enabled,
            configured=is_configured(self),
            provider=str(getattr(self.provider, "value", self.provider)),
            model_id=self.model_id,
            openai_key=self.openai.api_key or "",
            ollama_base_url=self.ollama.base_url or "",
            openai_compatible_base_url=self.openai_compatible.base_url or "",
            openai_compatible_api_key=self.openai_compatible.api_key or "",
            openai_compatible_model_dimension=self.openai_compatible.model_dimension,
            gemini_api_key=self.gemini.api_key or "",
            vector_store_url=self.vector_store_url or "",
            vector_store_api_key=self.vector_store_api_key or "",
            root_path=self.root_path or "",
        )


class PreviousConfigSnapshot(BaseModel):
    """Flattened projection of the prior snapshot, kept only for diffing.

    Every field has an empty/False default so a comparison never has to
    decide what a missing value means.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    configured: bool = False
    provider: str = Provider.OPENAI.value
    model_id: str | None = None
    openai_key: str = ""
    ollama_base_url: str = ""
    openai_compatible_base_url: str = ""
    openai_compatible_api_key: str = ""
    openai_compatible_model_dimension: int | None = None
    gemini_api_key: str = ""
    vector_store_url: str = ""
    vector_store_api_key: str = ""
    root_path: str = ""


class SettingsStore:
    """Persisted settings plus separately stored secrets.

    Either backed by YAML files (``settings.yaml`` / ``secrets.yaml``) or by
    in-memory mappings. Secret keys are normalized to upper case.
    """

    def __init__(
        self,
        settings_path: Path | str | None = None,
        secrets_path: Path | str | None = None,
        *,
        settings: Mapping[str, Any] | None = None,
        secrets: Mapping[str, Any] | None = None,
    ) -> None:
        self.settings_path = Path(settings_path).expanduser() if settings_path else None
        self.secrets_path = Path(secrets_path).expanduser() if secrets_path else None
        self._settings: dict[str, Any] = {
            str(k): dict(v) if isinstance(v, Mapping) else v for k, v in (settings or {}).items()
        }
        self._secrets: dict[str, Any] = {str(k).upper(): v for k, v in (secrets or {}).items()}
        self.refresh()

    @staticmethod
    def _load_yaml(path: Path) -> dict[str, Any]:
        raw_config = OmegaConf.load(path)
        data = OmegaConf.to_container(raw_config, resolve=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file must contain a mapping: {path}")
        return {str(key): value for key, value in data.items()}

    def refresh(self) -> None:
        """Re-read file-backed settings and secrets."""
        if self.settings_path is not None and self.settings_path.exists():
            self._settings = self._load_yaml(self.settings_path)
        if self.secrets_path is not None and self.secrets_path.exists():
            self._secrets = {
                key.upper(): value for key, value in self._load_yaml(self.secrets_path).items()
            }

    def section(self, name: str) -> dict[str, Any]:
        value = self._settings.get(name)
        return dict(value) if isinstance(value, Mapping) else {}

    def secret(self, key: str) -> str:
        value = self._secrets.get(key.upper())
        return str(value) if value else ""

    def update_section(self, name: str, **values: Any) -> None:
        """Merge values into a settings section and persist it."""
        section = self.section(name)
        section.update(values)
        self._settings[name] = section
        if self.settings_path is not None:
            self._save(self.settings_path, self._settings)

    def set_secret(self, key: str, value: str | None) -> None:
        if value:
            self._secrets[key.upper()] = value
        else:
            self._secrets.pop(key.upper(), None)
        if self.secrets_path is not None:
            self._save(self.secrets_path, self._secrets)

    @staticmethod
    def _save(path: Path, data: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        OmegaConf.save(OmegaConf.create(data), path)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _optional_float(name: str, value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric setting {name}={value!r}")
        return None


def _optional_positive_int(name: str, value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-integer setting {name}={value!r}")
        return None
    return number if number > 0 else None


def _resolve_mode(raw: Any, api_key: str | None) -> Mode:
    if isinstance(raw, str) and raw.strip().lower() in (Mode.LOCAL.value, Mode.HOSTED.value):
        return Mode(raw.strip().lower())
    return Mode.HOSTED if api_key else Mode.LOCAL


def _load_memory_settings(
    store: SettingsStore,
    env: Mapping[str, str],
    vector_store_url: str | None,
    vector_store_api_key: str | None,
) -> MemorySettings:
    section = store.section(MEMORY_SECTION)

    api_key = store.secret(SECRET_MEM0_KEY) or None
    base_url = _optional_str(section.get("base_url")) or DEFAULT_MEMORY_BASE_URL
    mode = _resolve_mode(section.get("mode"), api_key)

    env_api_key = env.get(ENV_MEM0_API_KEY)
    env_base_url = env.get(ENV_MEM0_BASE_URL)
    env_mode = env.get(ENV_MEM0_MODE)

    if env_api_key:
        api_key = env_api_key
        mode = Mode.HOSTED
    if env_base_url:
        base_url = env_base_url
    if env_mode in (Mode.LOCAL.value, Mode.HOSTED.value):
        mode = Mode(env_mode)

    defaults = MemorySettings()
    search_limit = _optional_positive_int("memory.search_limit", section.get("search_limit"))
    search_min_score = _optional_float("memory.search_min_score", section.get("search_min_score"))
    list_limit = _optional_positive_int("memory.list_limit", section.get("list_limit"))

    return MemorySettings(
        enabled=_as_bool(section.get("enabled", False)),
        mode=mode,
        base_url=base_url,
        api_key=api_key,
        collection=_optional_str(section.get("collection")) or DEFAULT_MEMORY_COLLECTION,
        vector_store_url=vector_store_url,
        vector_store_api_key=vector_store_api_key,
        search_limit=search_limit or defaults.search_limit,
        search_min_score=(
            search_min_score if search_min_score is not None else defaults.search_min_score
        ),
        list_limit=list_limit or defaults.list_limit,
    )


def load_snapshot(store: SettingsStore, env: Mapping[str, str] | None = None) -> ConfigSnapshot:
    """Build a ConfigSnapshot from persisted settings and environment overrides.

    Args:
        store: Persisted settings and secrets
        env: Environment overrides (defaults to ``os.environ``)

    Returns:
        A new, fully populated snapshot
    """
    env = os.environ if env is None else env
    section = store.section(INDEX_SECTION)

    vector_store_url = (
        _optional_str(section["qdrant_url"]) if "qdrant_url" in section else DEFAULT_QDRANT_URL
    )
    vector_store_api_key = store.secret(SECRET_QDRANT_API_KEY) or None

    return ConfigSnapshot(
        enabled=_as_bool(section.get("enabled", False)),
        provider=normalize_provider(section.get("embedder_provider")),
        model_id=_optional_str(section.get("embedder_model_id")),
        openai=OpenAIOptions(api_key=store.secret(SECRET_OPENAI_KEY)),
        ollama=OllamaOptions(base_url=_optional_str(section.get("embedder_base_url")) or ""),
        openai_compatible=OpenAICompatibleOptions(
            base_url=_optional_str(section.get("openai_compatible_base_url")) or "",
            api_key=store.secret(SECRET_OPENAI_COMPATIBLE_KEY),
            model_dimension=_optional_positive_int(
                "openai_compatible_model_dimension",
                section.get("openai_compatible_model_dimension"),
            ),
        ),
        gemini=GeminiOptions(api_key=store.secret(SECRET_GEMINI_KEY)),
        vector_store_url=vector_store_url,
        vector_store_api_key=vector_store_api_key,
        search_min_score=_optional_float("search_min_score", section.get("search_min_score")),
        search_max_results=_optional_positive_int(
            "search_max_results", section.get("search_max_results")
        ),
        root_path=_optional_str(section.get("root_path")),
        memory=_load_memory_settings(store, env, vector_store_url, vector_store_api_key),
    )


def is_configured(snapshot: ConfigSnapshot) -> bool:
    """Return True when the snapshot carries everything its provider needs."""
    vector_store_url = snapshot.vector_store_url
    match snapshot.provider:
        case Provider.OPENAI:
            return bool(snapshot.openai.api_key and vector_store_url)
        case Provider.OLLAMA:
            return bool(snapshot.ollama.base_url and vector_store_url)
        case Provider.OPENAI_COMPATIBLE:
            options = snapshot.openai_compatible
            return bool(options.base_url and options.api_key and vector_store_url)
        case Provider.GEMINI:
            return bool(snapshot.gemini.api_key and vector_store_url)
        case _:
            return False


def _has_vector_dimension_changed(prev: PreviousConfigSnapshot, current: ConfigSnapshot) -> bool:
    current_provider = str(getattr(current.provider, "value", current.provider))
    current_model_id = current.model_id or get_default_model_id(current_provider)
    prev_model_id = prev.model_id or get_default_model_id(prev.provider)

    # Same (provider, model) pair cannot change width
    if prev.provider == current_provider and prev_model_id == current_model_id:
        return False

    prev_dimension = get_model_dimension(prev.provider, prev_model_id)
    current_dimension = get_model_dimension(current_provider, current_model_id)

    if prev_dimension is None or current_dimension is None:
        return True

    return prev_dimension != current_dimension


def requires_restart(
    prev: PreviousConfigSnapshot | ConfigSnapshot, current: ConfigSnapshot
) -> bool:
    """Decide whether moving from ``prev`` to ``current`` needs a pipeline rebuild.

    Only functional changes count: provider, credentials and connection
    endpoints, and the vector dimension. Search thresholds, result limits and
    other cosmetic settings never trigger a restart.

    Args:
        prev: Previous snapshot (full or already flattened)
        current: Newly loaded snapshot

    Returns:
        True when the embedder/vector-store pipeline must be rebuilt
    """
    if isinstance(prev, ConfigSnapshot):
        prev = prev.to_previous()

    now_enabled = current.enabled
    now_configured = is_configured(current)

    # Cold start
    if (not prev.enabled or not prev.configured) and now_enabled and now_configured:
        return True

    if not prev.enabled and not now_enabled:
        return False

    if not prev.configured and not now_configured:
        return False

    current_provider = str(getattr(current.provider, "value", current.provider))
    if prev.provider != current_provider:
        return True

    if prev.openai_key != (current.openai.api_key or ""):
        return True

    if prev.ollama_base_url != (current.ollama.base_url or ""):
        return True

    compatible = current.openai_compatible
    if (
        prev.openai_compatible_base_url != (compatible.base_url or "")
        or prev.openai_compatible_api_key != (compatible.api_key or "")
    ):
        return True

    if Provider.OPENAI_COMPATIBLE.value in (prev.provider, current_provider):
        if prev.openai_compatible_model_dimension != compatible.model_dimension:
            return True

    if prev.gemini_api_key != (current.gemini.api_key or ""):
        return True

    if prev.vector_store_url != (current.vector_store_url or "") or prev.vector_store_api_key != (
        current.vector_store_api_key or ""
    ):
        return True

    return _has_vector_dimension_changed(prev, current)


class ConfigLoadResult(BaseModel):
    """Outcome of one reload: the prior projection, the new snapshot, the verdict."""

    model_config = ConfigDict(frozen=True)

    previous: PreviousConfigSnapshot
    current: ConfigSnapshot
    requires_restart: bool


class ConfigManager:
    """Holds the current snapshot and reloads it from the settings store.

    The current snapshot is replaced with a single assignment, so readers see
    either the old or the new value.
    """

    def __init__(self, store: SettingsStore, env: Mapping[str, str] | None = None) -> None:
        self.store = store
        self._env = env
        # Start from what is persisted so the first reload is not a false cold start
        self._snapshot: ConfigSnapshot = self.load()

    @property
    def snapshot(self) -> ConfigSnapshot:
        return self._snapshot

    def load(self) -> ConfigSnapshot:
        """Read persisted state plus environment overrides into a new snapshot."""
        return load_snapshot(self.store, self._env)

    def is_configured(self, snapshot: ConfigSnapshot | None = None) -> bool:
        return is_configured(snapshot or self._snapshot)

    def requires_restart(
        self, prev: PreviousConfigSnapshot | ConfigSnapshot, current: ConfigSnapshot
    ) -> bool:
        return requires_restart(prev, current)

    def load_configuration(self) -> ConfigLoadResult:
        """Refresh the store, publish a new snapshot and report whether to restart."""
        previous = self._snapshot.to_previous()

        self.store.refresh()
        current = self.load()
        restart = requires_restart(previous, current)

        self._snapshot = current
        logger.debug(
            f"Configuration reloaded (provider={current.provider.value}, "
            f"enabled={current.enabled}, restart={restart})"
        )
        return ConfigLoadResult(previous=previous, current=current, requires_restart=restart)
