"""Document data models for the vecsearch store.

Defines Pydantic v2 models for stored documents, partial updates, store
change events, and store statistics.  All models use frozen config so a
document handed to a reader can never change underneath it; updates
always produce a new instance via ``model_copy``.

A **Document** is the unit the engine stores and retrieves:

    id          unique string identifier (chunk ids look like ``"book-1#3"``)
    content     the text the embedding was computed from
    embedding   fixed-length float vector (length = store dimension)
    metadata    key -> scalar | number | tag set, queried by filter predicates
    created_at  when the document was first inserted
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

# Metadata values are scalars, numbers, or tag sets.  Tag sets are
# stored as lists of strings and matched by the TagsAny / TagsAll
# predicates in vecsearch.models.filters.
MetadataValue = Union[str, bool, int, float, list[str]]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# Document -- the fundamental unit of the vector store.
# ---------------------------------------------------------------------------
class Document(BaseModel):
    """A stored document: content, its embedding, and filterable metadata.

    Owned exclusively by :class:`~vecsearch.services.vector_store.VectorStore`.
    Mutated only through the store's ``update`` operation and removed only
    through its ``delete`` operation.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Unique document identifier.")
    content: str = Field(default="", description="Text the embedding was computed from.")
    embedding: tuple[float, ...] = Field(
        description="Embedding vector; length must equal the store dimension."
    )
    metadata: dict[str, MetadataValue] = Field(
        default_factory=dict,
        description="Filterable key/value metadata (scalars, numbers, tag sets).",
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime | None = None


class DocumentPatch(BaseModel):
    """A partial update for an existing document.

    Any subset of ``content``, ``embedding`` and ``metadata`` may be set.
    Metadata is merged key-by-key into the existing metadata unless
    ``replace_metadata`` is ``True``, in which case it replaces it.
    """

    model_config = ConfigDict(frozen=True)

    content: str | None = None
    embedding: tuple[float, ...] | None = None
    metadata: dict[str, MetadataValue] | None = None
    replace_metadata: bool = False

    def is_empty(self) -> bool:
        """Return ``True`` if the patch would change nothing."""
        return self.content is None and self.embedding is None and self.metadata is None


# ---------------------------------------------------------------------------
# Store change events -- consumed by IndexManager (observer pattern).
# ---------------------------------------------------------------------------
class ChangeOp(str, Enum):
    """Kind of mutation applied to the store."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class StoreChange(BaseModel):
    """A committed store mutation, broadcast to registered listeners.

    ``embedding`` carries the new vector for inserts and for updates that
    touched the embedding; it is ``None`` for deletes and metadata-only
    updates.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    op: ChangeOp
    doc_id: str
    embedding: Any = None
    version: int = 0

    @property
    def embedding_changed(self) -> bool:
        return self.embedding is not None


class StoreStats(BaseModel):
    """Aggregate statistics for a vector store."""

    model_config = ConfigDict(frozen=True)

    document_count: int = Field(default=0, ge=0)
    dimension: int = Field(ge=1)
    version: int = Field(default=0, ge=0)
    metadata_keys: list[str] = Field(
        default_factory=list,
        description="Sorted list of distinct metadata keys across all documents.",
    )
    persistent: bool = Field(
        default=False, description="True when writes go through to a persistence backend."
    )
