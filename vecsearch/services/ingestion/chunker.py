"""Character-window text chunking with overlap.

Splits source text into :class:`~vecsearch.models.ingestion.TextChunk`
windows of at most ``chunk_size`` characters.  Consecutive windows start
``chunk_size - overlap`` characters apart, so each pair shares ``overlap``
characters of context and a phrase straddling a boundary is whole in at
least one chunk.

Windowing stops as soon as a window reaches the end of the text; the final
window may be shorter than ``chunk_size``.  Empty text produces no chunks.

Chunk ids are derived from the source id and the chunk index
(``"{source_id}#{index}"``) so re-ingesting a source addresses the same
documents again.
"""

from __future__ import annotations

import structlog

from vecsearch.models.ingestion import TextChunk
from vecsearch.utils.errors import InvalidArgumentError

logger = structlog.get_logger(logger_name=__name__)

CHUNK_ID_SEPARATOR = "#"


def make_chunk_id(source_id: str, index: int) -> str:
    return f"{source_id}{CHUNK_ID_SEPARATOR}{index}"


def parse_chunk_id(chunk_id: str) -> tuple[str, int] | None:
    """Split a chunk id into ``(source_id, index)``; ``None`` if it is not one."""
    source_id, sep, index = chunk_id.rpartition(CHUNK_ID_SEPARATOR)
    if not sep or not source_id or not index.isdigit():
        return None
    return source_id, int(index)


def _check_window(chunk_size: int, overlap: int) -> None:
    if chunk_size < 1:
        raise InvalidArgumentError(f"chunk_size must be >= 1, got {chunk_size}")
    if overlap < 0:
        raise InvalidArgumentError(f"overlap must be >= 0, got {overlap}")
    if overlap >= chunk_size:
        raise InvalidArgumentError(
            f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
        )


def chunk_text(content: str, chunk_size: int, overlap: int) -> list[TextChunk]:
    """Split *content* into overlapping windows.

    Raises
    ------
    InvalidArgumentError
        If ``chunk_size < 1``, ``overlap < 0`` or ``overlap >= chunk_size``.
    """
    _check_window(chunk_size, overlap)
    stride = chunk_size - overlap
    chunks: list[TextChunk] = []
    start = 0
    length = len(content)
    while start < length:
        end = min(start + chunk_size, length)
        chunks.append(TextChunk(index=len(chunks), text=content[start:end], start=start, end=end))
        if end == length:
            break
        start += stride
    return chunks


class TextChunker:
    """Chunker bound to default window settings.

    Parameters
    ----------
    chunk_size:
        Maximum characters per chunk (default 500).
    overlap:
        Characters shared by consecutive chunks (default 50).
    """

    def __init__(self, chunk_size: int = 500, overlap: int = 50) -> None:
        _check_window(chunk_size, overlap)
        self._chunk_size = chunk_size
        self._overlap = overlap

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    def chunk(
        self,
        content: str,
        chunk_size: int | None = None,
        overlap: int | None = None,
    ) -> list[TextChunk]:
        """Split *content*, optionally overriding the window for this call."""
        size = self._chunk_size if chunk_size is None else chunk_size
        lap = self._overlap if overlap is None else overlap
        chunks = chunk_text(content, size, lap)
        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            characters=len(content),
            chunk_size=size,
            overlap=lap,
        )
        return chunks

    def split(self, content: str) -> list[str]:
        """Just the chunk texts."""
        return [chunk.text for chunk in self.chunk(content)]
