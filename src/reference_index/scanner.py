"""Directory scanning, incremental indexing and change polling.

A scan walks the reference root, skips files whose content hash is already in
the cache, parses the rest into blocks, embeds them in batches and upserts
them. Points belonging to changed or deleted files are removed first so a
file never has blocks from two versions in the store.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import uuid
from pathlib import Path, PurePosixPath

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from reference_index.embedding import EmbeddingClient
from reference_index.index import VectorStore
from reference_index.models import ReferencePayload, VectorRecord
from reference_index.parsing import CodeBlock, CodeParser, content_hash

MAX_FILE_SIZE_BYTES = 1 * 1024 * 1024
BATCH_SEGMENT_THRESHOLD = 60
DEFAULT_POLL_INTERVAL_SECONDS = 2.0

IGNORED_DIRECTORIES = frozenset(
    {".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv", ".tox", "dist", "build"}
)

# Stable namespace so the same segment hash always maps to the same point id
SEGMENT_NAMESPACE = uuid.UUID("5d2b1f3c-8f61-4d0e-9a57-7c1f2e6b4a90")


def segment_point_id(segment_hash: str) -> str:
    return str(uuid.uuid5(SEGMENT_NAMESPACE, segment_hash))


def path_segments(file_path: str) -> dict[str, str]:
    """Map segment position to name, e.g. ``{"0": "src", "1": "app.py"}``."""
    parts = PurePosixPath(file_path).parts
    return {str(i): part for i, part in enumerate(parts)}


class HashCacheRecord(BaseModel):
    hashes: dict[str, str] = Field(default_factory=dict)


class FileHashCache:
    """Relative path -> content hash of the last indexed version.

    Persisted as JSON. A missing or unreadable file starts an empty cache.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.hashes: dict[str, str] = {}

    def load(self) -> None:
        if not self.path.exists():
            self.hashes = {}
            return
        try:
            record = HashCacheRecord.model_validate(json.loads(self.path.read_text()))
            self.hashes = dict(record.hashes)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Discarding unreadable hash cache {self.path}: {e}")
            self.hashes = {}

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(HashCacheRecord(hashes=self.hashes).model_dump_json(indent=2))

    def get(self, file_path: str) -> str | None:
        return self.hashes.get(file_path)

    def update(self, file_path: str, file_hash: str) -> None:
        self.hashes[file_path] = file_hash

    def delete(self, file_path: str) -> None:
        self.hashes.pop(file_path, None)

    def clear(self) -> None:
        """Forget every hash, e.g. after the collection was recreated."""
        self.hashes = {}
        self.save()


class ScanStats(BaseModel):
    """Counters reported by one scan."""

    processed_files: int = 0
    skipped_files: int = 0
    indexed_blocks: int = 0
    deleted_files: int = 0


class DirectoryScanner:
    """Indexes supported files under a root into the vector store."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        vector_store: VectorStore,
        parser: CodeParser,
        cache: FileHashCache,
        batch_size: int = BATCH_SEGMENT_THRESHOLD,
        max_file_size: int = MAX_FILE_SIZE_BYTES,
    ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.parser = parser
        self.cache = cache
        self.batch_size = batch_size
        self.max_file_size = max_file_size

    def supports(self, path: Path) -> bool:
        return path.suffix.lower() in self.parser.extensions

    def list_files(self, root: Path) -> list[Path]:
        """Return supported files under ``root`` in a stable order."""
        files: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(
                d for d in dirnames if d not in IGNORED_DIRECTORIES and not d.startswith(".")
            )
            for name in sorted(filenames):
                path = Path(dirpath) / name
                if self.supports(path):
                    files.append(path)
        return files

    async def scan_directory(self, root: Path | str) -> ScanStats:
        """Index new and changed files under ``root`` and purge deleted ones.

        Args:
            root: Directory to scan

        Returns:
            ScanStats for this pass
        """
        root = Path(root)
        stats = ScanStats()
        self.cache.load()

        files = await asyncio.to_thread(self.list_files, root)
        seen: set[str] = set()
        pending: list[CodeBlock] = []
        pending_hashes: dict[str, str] = {}

        for path in files:
            relative = path.relative_to(root).as_posix()
            seen.add(relative)

            try:
                if path.stat().st_size > self.max_file_size:
                    logger.debug(f"Skipping {relative}: larger than {self.max_file_size} bytes")
                    await self._forget(relative)
                    stats.skipped_files += 1
                    continue
                content = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not read {relative}: {e}")
                await self._forget(relative)
                stats.skipped_files += 1
                continue

            file_hash = content_hash(content)
            if self.cache.get(relative) == file_hash:
                stats.skipped_files += 1
                continue

            if self.cache.get(relative) is not None:
                await self.vector_store.delete_by_file_paths([relative])

            blocks = self.parser.parse(relative, content)
            pending.extend(blocks)
            pending_hashes[relative] = file_hash
            stats.processed_files += 1

            if len(pending) >= self.batch_size:
                stats.indexed_blocks += await self._flush(pending, pending_hashes)
                pending, pending_hashes = [], {}

        if pending_hashes:
            stats.indexed_blocks += await self._flush(pending, pending_hashes)

        removed = sorted(set(self.cache.hashes) - seen)
        if removed:
            await self.vector_store.delete_by_file_paths(removed)
            for relative in removed:
                self.cache.delete(relative)
            stats.deleted_files = len(removed)

        self.cache.save()
        logger.info(
            f"Scanned {root}: {stats.processed_files} indexed, {stats.skipped_files} unchanged "
            f"or skipped, {stats.deleted_files} removed ({stats.indexed_blocks} blocks)"
        )
        return stats

    async def _forget(self, relative: str) -> None:
        """Drop the points and cache entry of a previously indexed file."""
        if self.cache.get(relative) is None:
            return
        await self.vector_store.delete_by_file_paths([relative])
        self.cache.delete(relative)

    async def _flush(self, blocks: list[CodeBlock], file_hashes: dict[str, str]) -> int:
        """Embed and upsert ``blocks``, then record the hashes of their files."""
        for start in range(0, len(blocks), self.batch_size):
            batch = blocks[start : start + self.batch_size]
            vectors = await self.embedder.embed_batch([block.content for block in batch])
            records = [
                VectorRecord(
                    id=segment_point_id(block.segment_hash),
                    vector=vector,
                    payload=ReferencePayload(
                        file_path=block.file_path,
                        code_chunk=block.content,
                        start_line=block.start_line,
                        end_line=block.end_line,
                        segment_hash=block.segment_hash,
                        path_segments=path_segments(block.file_path),
                    ).model_dump(),
                )
                for block, vector in zip(batch, vectors, strict=True)
            ]
            await self.vector_store.upsert(records)

        for relative, file_hash in file_hashes.items():
            self.cache.update(relative, file_hash)
        return len(blocks)


class FileWatcher:
    """Polls the reference root and re-runs the incremental scan.

    Only files whose hash changed are re-embedded; files that disappeared
    are purged from the store.
    """

    def __init__(
        self,
        root: Path | str,
        scanner: DirectoryScanner,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ):
        self.root = Path(root)
        self.scanner = scanner
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> ScanStats:
        return await self.scanner.scan_directory(self.root)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug(f"Watching {self.root} every {self.interval_seconds}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Error polling {self.root}: {e}")
