"""File parsers that turn reference files into indexable blocks.

Plain-text and source files are grouped into line-aligned blocks; Jupyter
notebooks are split per cell. All parsing is deterministic: same path and
content produce the same blocks and hashes.
"""

import hashlib
import json
from dataclasses import dataclass
from pathlib import PurePath
from typing import Protocol

from loguru import logger

MIN_BLOCK_CHARS = 50
MAX_BLOCK_CHARS = 1000

TEXT_EXTENSIONS = frozenset(
    {
        ".py", ".pyi", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".java", ".kt",
        ".go", ".rs", ".rb", ".php", ".c", ".h", ".cc", ".cpp", ".hpp", ".cs",
        ".swift", ".scala", ".sh", ".sql", ".r", ".jl", ".lua", ".md", ".rst",
        ".txt", ".toml", ".yaml", ".yml", ".json", ".html", ".css",
    }
)  # fmt: skip
NOTEBOOK_EXTENSIONS = frozenset({".ipynb"})


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CodeBlock:
    """A single indexable block with position information.

    Attributes:
        file_path: Path of the source file (relative to the scan root)
        identifier: Human-readable locator (``lines-3-20``, ``cell-4``)
        block_type: ``lines`` for text files, the cell type for notebooks
        start_line: First line of the block (1-indexed)
        end_line: Last line of the block (inclusive)
        content: Block text
        file_hash: SHA-256 of the whole file
        segment_hash: SHA-256 identifying this block
    """

    file_path: str
    identifier: str
    block_type: str
    start_line: int
    end_line: int
    content: str
    file_hash: str
    segment_hash: str

    def __post_init__(self) -> None:
        if not self.content:
            raise ValueError("Block content cannot be empty")
        if self.start_line < 1 or self.end_line < self.start_line:
            raise ValueError(f"Invalid line range: start={self.start_line}, end={self.end_line}")


class CodeParser(Protocol):
    """Protocol for file parser implementations."""

    extensions: frozenset[str]

    def parse(self, file_path: str, content: str) -> list[CodeBlock]:
        """Split a file into blocks.

        Args:
            file_path: Path used for hashing and payloads
            content: Full file text

        Returns:
            Blocks in file order; empty when the parser does not handle the file
        """
        ...


def _segment_hash(file_path: str, start_line: int, end_line: int, content: str) -> str:
    return content_hash(f"{file_path}-{start_line}-{end_line}-{content}")


class LineBlockParser:
    """Groups consecutive lines into blocks of at most ``max_chars`` characters.

    Lines longer than ``max_chars`` are split into their own blocks. Blocks
    shorter than ``min_chars`` (after stripping) are dropped.
    """

    extensions = TEXT_EXTENSIONS

    def __init__(self, min_chars: int = MIN_BLOCK_CHARS, max_chars: int = MAX_BLOCK_CHARS):
        if min_chars < 0 or max_chars <= min_chars:
            raise ValueError(f"Invalid block bounds: min={min_chars}, max={max_chars}")
        self.min_chars = min_chars
        self.max_chars = max_chars

    def parse(self, file_path: str, content: str) -> list[CodeBlock]:
        if PurePath(file_path).suffix.lower() not in self.extensions:
            return []

        file_hash = content_hash(content)
        blocks: list[CodeBlock] = []
        current: list[str] = []
        current_len = 0
        start_line = 1

        def flush(end_line: int) -> None:
            text = "\n".join(current)
            if len(text.strip()) >= self.min_chars:
                blocks.append(self._block(file_path, file_hash, start_line, end_line, text))

        for line_no, line in enumerate(content.splitlines(), start=1):
            if len(line) > self.max_chars:
                if current:
                    flush(line_no - 1)
                for offset in range(0, len(line), self.max_chars):
                    piece = line[offset : offset + self.max_chars]
                    if len(piece.strip()) >= self.min_chars:
                        blocks.append(self._block(file_path, file_hash, line_no, line_no, piece))
                current, current_len, start_line = [], 0, line_no + 1
                continue

            if current and current_len + len(line) + 1 > self.max_chars:
                flush(line_no - 1)
                current, current_len, start_line = [], 0, line_no

            current.append(line)
            current_len += len(line) + 1

        if current:
            flush(start_line + len(current) - 1)

        return blocks

    @staticmethod
    def _block(
        file_path: str, file_hash: str, start_line: int, end_line: int, text: str
    ) -> CodeBlock:
        return CodeBlock(
            file_path=file_path,
            identifier=f"lines-{start_line}-{end_line}",
            block_type="lines",
            start_line=start_line,
            end_line=end_line,
            content=text,
            file_hash=file_hash,
            segment_hash=_segment_hash(file_path, start_line, end_line, text),
        )


class NotebookParser:
    """Splits Jupyter notebooks into per-cell blocks.

    Cells longer than ``max_chars`` are cut into consecutive chunks; line
    numbers are relative to the cell.
    """

    extensions = NOTEBOOK_EXTENSIONS

    def __init__(self, min_chars: int = MIN_BLOCK_CHARS, max_chars: int = MAX_BLOCK_CHARS):
        self.min_chars = min_chars
        self.max_chars = max_chars

    def parse(self, file_path: str, content: str) -> list[CodeBlock]:
        if PurePath(file_path).suffix.lower() not in self.extensions:
            return []

        try:
            notebook = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing notebook {file_path}: {e}")
            return []

        cells = notebook.get("cells") if isinstance(notebook, dict) else None
        if not isinstance(cells, list):
            logger.warning(f"Skipping notebook {file_path}: no cell list")
            return []

        file_hash = content_hash(content)
        blocks: list[CodeBlock] = []

        for cell_index, cell in enumerate(cells):
            if not isinstance(cell, dict):
                continue
            source = cell.get("source", "")
            cell_text = "".join(map(str, source)) if isinstance(source, list) else str(source)
            if len(cell_text) < self.min_chars:
                continue

            cell_type = str(cell.get("cell_type", "code"))
            for start in range(0, len(cell_text), self.max_chars):
                chunk = cell_text[start : start + self.max_chars]
                start_line = cell_text.count("\n", 0, start) + 1
                end_line = start_line + chunk.count("\n")
                blocks.append(
                    CodeBlock(
                        file_path=file_path,
                        identifier=f"cell-{cell_index}",
                        block_type=cell_type,
                        start_line=start_line,
                        end_line=end_line,
                        content=chunk,
                        file_hash=file_hash,
                        segment_hash=content_hash(
                            f"{file_path}-{cell_index}-{start}-{chunk}"
                        ),
                    )
                )

        return blocks


class CompositeParser:
    """Tries each parser in order; the first one returning blocks wins."""

    def __init__(self, parsers: list[CodeParser]):
        self.parsers = parsers
        self.extensions = frozenset().union(*(parser.extensions for parser in parsers))

    def parse(self, file_path: str, content: str) -> list[CodeBlock]:
        for parser in self.parsers:
            blocks = parser.parse(file_path, content)
            if blocks:
                return blocks
        return []
