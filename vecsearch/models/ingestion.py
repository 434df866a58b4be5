"""Ingestion data models: source documents, chunks and ingestion results.

A *source* (a book, an article, a transcript) is split into overlapping
character windows by :mod:`vecsearch.services.ingestion.chunker`.  Every
window becomes one :class:`~vecsearch.models.document.Document` whose id is
``"{source_id}#{chunk_index}"`` so that re-ingesting the same source updates
its chunks in place instead of duplicating them.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from vecsearch.models.document import MetadataValue


# ---------------------------------------------------------------------------
# SourceDocument -- one unit of ingestion input.
# ---------------------------------------------------------------------------
class SourceDocument(BaseModel):
    """A raw source handed to the ingestion pipeline."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(min_length=1, description="Stable identifier of the source.")
    content: str = Field(description="Full source text.")
    metadata: dict[str, MetadataValue] = Field(
        default_factory=dict,
        description="Metadata copied onto every chunk of this source.",
    )
    chunk_size: int | None = Field(default=None, description="Overrides the pipeline default.")
    overlap: int | None = Field(default=None, description="Overrides the pipeline default.")


class TextChunk(BaseModel):
    """A character window of a source, with its position in the source text."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    text: str
    start: int = Field(ge=0, description="Offset of the first character in the source.")
    end: int = Field(ge=0, description="Offset one past the last character.")


# ---------------------------------------------------------------------------
# IngestionResult -- output of the ingestion pipeline for one source.
# ---------------------------------------------------------------------------
class IngestionResult(BaseModel):
    """Summary of a single source ingestion run.

    Returned by the ingestion pipeline after chunking, embedding and storing
    a source.  ``error`` is populated (and every count left at zero) when
    the source failed inside :meth:`IngestionPipeline.ingest_many`.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(description="Identifier of the ingested source.")
    chunk_ids: list[str] = Field(default_factory=list, description="Ids of the current chunks.")
    chunks_created: int = Field(default=0, ge=0)
    chunks_updated: int = Field(default=0, ge=0)
    chunks_unchanged: int = Field(
        default=0, ge=0, description="Chunks whose text and metadata were already stored."
    )
    chunks_deleted: int = Field(
        default=0, ge=0, description="Stale chunks removed after the source shrank."
    )
    total_characters: int = Field(default=0, ge=0)
    ingestion_time: float = Field(default=0.0, ge=0.0, description="Wall time in seconds.")
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None
